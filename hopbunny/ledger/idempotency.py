"""Short-lived memory of already-applied referral increments.

Process-local and lost on restart. The durable de-duplication witness is the
referral record in the store; this only filters client retries quickly.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def request_key(user_id: str, unique_request_id: str | None, now_ms: float | None = None) -> str:
    """`{userId}_{requestId}`, or `{userId}_{timestamp}` without a request id.

    The timestamp fallback is unique per call, so it never matches a retry.
    """
    if unique_request_id:
        return f"{user_id}_{unique_request_id}"
    if now_ms is None:
        now_ms = time.time() * 1000.0
    return f"{user_id}_{int(now_ms)}"


class IdempotencyGuard:
    def __init__(
        self,
        ttl_ms: int = 3_600_000,
        max_keys: int = 100_000,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.ttl_ms = int(ttl_ms)
        self.max_keys = max(1, int(max_keys))
        self._clock = clock
        self._marked_at: OrderedDict[str, float] = OrderedDict()

    def now_ms(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        self._purge(self._clock())
        return len(self._marked_at)

    def _expired(self, marked_at: float, now: float) -> bool:
        return now - marked_at >= self.ttl_ms

    def _purge(self, now: float) -> None:
        # Insertion order is expiry order, so stop at the first live entry.
        while self._marked_at:
            key, marked_at = next(iter(self._marked_at.items()))
            if not self._expired(marked_at, now):
                break
            self._marked_at.popitem(last=False)

    def seen(self, key: str) -> bool:
        now = self._clock()
        self._purge(now)
        return key in self._marked_at

    def mark(self, key: str) -> None:
        now = self._clock()
        self._purge(now)
        self._marked_at.pop(key, None)
        self._marked_at[key] = now
        while len(self._marked_at) > self.max_keys:
            self._marked_at.popitem(last=False)

    def check_and_mark(self, key: str) -> bool:
        """Mark `key`; return False if it was already marked."""
        if self.seen(key):
            return False
        self.mark(key)
        return True

    def release(self, key: str) -> None:
        self._marked_at.pop(key, None)

    def clear(self) -> None:
        self._marked_at.clear()

"""Document store contract shared by the memory and SQLite backends."""

from __future__ import annotations

import re
from typing import Any

from hopbunny.ledger.errors import ValidationError

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_field(name: str) -> str:
    if not isinstance(name, str) or not _FIELD_RE.match(name):
        raise ValidationError(f"invalid field name: {name!r}")
    return name


def sort_key(value: Any) -> tuple:
    # Missing < numbers < strings, the same order SQLite gives NULL/INTEGER/TEXT.
    if value is None:
        return (0, 0)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    return (2, str(value))


class DocumentStore:
    """Async document store keyed by (collection, id).

    Documents are plain dicts; reads return a copy with the id under `"id"`.
    """

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def create_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Insert a new document. Raises ConflictError if the id is taken."""
        raise NotImplementedError

    async def update_document(self, collection: str, doc_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Merge `patch` into an existing document. Raises NotFoundError if absent."""
        raise NotImplementedError

    async def list_documents(
        self,
        collection: str,
        *,
        where: dict[str, Any] | None = None,
        search: tuple[str, str] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """Return one page of matching documents and the total match count."""
        raise NotImplementedError

    def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

"""Bearer-token identities for the few routes that need one.

Tokens are `<userId>.<hex HMAC-SHA256(secret, userId)>`.
"""

from __future__ import annotations

import hashlib
import hmac

from aiohttp import web

from hopbunny.ledger.errors import ForbiddenError, UnauthorizedError


class TokenVerifier:
    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def _sign(self, user_id: str) -> str:
        return hmac.new(self._secret, user_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, user_id: str) -> str:
        return f"{user_id}.{self._sign(user_id)}"

    def verify(self, token: str) -> str | None:
        user_id, sep, sig = token.rpartition(".")
        if not sep or not user_id:
            return None
        if not hmac.compare_digest(sig, self._sign(user_id)):
            return None
        return user_id

    def authenticate(self, request: web.Request) -> str:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            raise UnauthorizedError("Unauthorized: No token provided")
        user_id = self.verify(header[len("Bearer "):].strip())
        if user_id is None:
            raise UnauthorizedError("Unauthorized: Invalid token")
        return user_id

    def require_user(self, request: web.Request, user_id: str) -> str:
        caller = self.authenticate(request)
        if caller != user_id:
            raise ForbiddenError("Forbidden: Cannot update other user data")
        return caller

"""Error taxonomy shared by the ledger and the HTTP layer."""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class. `status` is the HTTP status the API answers with."""

    status = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message, **self.details}


class ValidationError(LedgerError):
    status = 400


class InvalidScore(ValidationError):
    pass


class UnauthorizedError(LedgerError):
    status = 401


class ForbiddenError(LedgerError):
    status = 403


class NotFoundError(LedgerError):
    status = 404


class UserNotFound(NotFoundError):
    def __init__(self, user_id: str, message: str = "User not found"):
        super().__init__(message, {"userId": user_id})
        self.user_id = user_id


class ConflictError(LedgerError):
    status = 409


class UpstreamError(LedgerError):
    status = 500

    def to_payload(self) -> dict[str, Any]:
        cause = self.__cause__
        return {"message": self.message, "error": str(cause) if cause else self.message, **self.details}


class StoreUnavailable(UpstreamError):
    pass

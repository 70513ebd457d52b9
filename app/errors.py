"""Error taxonomy shared by the storage layer, the coin ledger and the routes."""
from __future__ import annotations

from sqlalchemy.exc import OperationalError, SQLAlchemyError


class LedgerError(Exception):
    """Base class for rejected operations. ``kind`` names the failure."""

    kind = "error"
    code = "server_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "kind": self.kind, "message": self.message}


class NotFound(LedgerError):
    kind = "NotFound"
    code = "not_found"
    status_code = 404


class ValidationFailed(LedgerError):
    kind = "ValidationFailed"
    code = "invalid_payload"
    status_code = 400


class InsufficientFunds(LedgerError):
    kind = "InsufficientFunds"
    code = "insufficient_coins"
    status_code = 400

    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(f"insufficient coins: balance {balance}, requested {requested}")
        self.balance = balance
        self.requested = requested


class StorageError(LedgerError):
    kind = "StorageError"
    code = "database_error"

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient

    @classmethod
    def from_exception(cls, exc: SQLAlchemyError) -> "StorageError":
        # Keep the driver's message, not SQLAlchemy's wrapper with the statement.
        orig = getattr(exc, "orig", None)
        message = str(orig) if orig is not None else str(exc)
        return cls(message, transient=isinstance(exc, OperationalError))

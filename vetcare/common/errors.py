"""
Errors raised by the pure ledger functions.

Services translate these into HTTP 400 responses; nothing here is fatal
and nothing is retried.
"""
from typing import Optional


class LedgerValidationError(ValueError):
    """Input rejected by a ledger rule (empty charge, bad quantity, insufficient stock...)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_detail(self) -> dict:
        detail = {"message": self.message}
        if self.field:
            detail["field"] = self.field
        return detail


class InsufficientStockError(LedgerValidationError):
    def __init__(self, requested, available):
        super().__init__(
            f"Cannot use more than available stock ({available}). Requested: {requested}",
            field="quantity",
        )
        self.requested = requested
        self.available = available

"""
Stock ledger: applies signed stock transactions to an item's counters and
derives its status and low-stock advisory.

Everything here is pure. The service persists what ``apply_transaction``
returns and then marks the posting committed.
"""

from typing import Optional

from pydantic import BaseModel

from vetcare.common.errors import InsufficientStockError, LedgerValidationError
from vetcare.modules.inventory.schemas import (
    AlertSeverity, AlertType, StockAlertDraft, StockChange, StockLevel,
    StockStatus, TransactionState, TransactionType
)

DECREASING_TYPES = frozenset({
    TransactionType.USED,
    TransactionType.EXPIRED,
    TransactionType.DAMAGED,
})


def is_decreasing(transaction_type: TransactionType) -> bool:
    return transaction_type in DECREASING_TYPES


def signed_quantity(transaction_type: TransactionType, quantity: int) -> int:
    return -quantity if is_decreasing(transaction_type) else quantity


def derive_stock_status(current_stock: int, reorder_point: int) -> StockStatus:
    # The low boundary is inclusive: current == reorder_point is low stock
    if current_stock == 0:
        return StockStatus.OUT_OF_STOCK
    if current_stock <= reorder_point:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def derive_stock_alert(current_stock: int, reorder_point: int) -> Optional[StockAlertDraft]:
    """Low-stock advisory for a post-transaction stock value, or None."""
    if current_stock > reorder_point:
        return None

    if current_stock == 0:
        severity = AlertSeverity.CRITICAL
    elif current_stock <= reorder_point * 0.5:
        severity = AlertSeverity.HIGH
    else:
        severity = AlertSeverity.MEDIUM

    return StockAlertDraft(
        alert_type=AlertType.OUT_OF_STOCK if current_stock == 0 else AlertType.LOW_STOCK,
        severity=severity,
        current_value=current_stock,
        threshold_value=reorder_point
    )


class StockPosting(BaseModel):
    """Result of applying one transaction: proposed -> validated -> committed."""

    change: StockChange
    level: StockLevel
    quantity_change: int
    stock_before: int
    stock_after: int
    alert: Optional[StockAlertDraft] = None
    state: TransactionState = TransactionState.VALIDATED

    @property
    def status(self) -> StockStatus:
        return derive_stock_status(self.stock_after, self.level.reorder_point)

    def commit(self) -> "StockPosting":
        if self.state != TransactionState.VALIDATED:
            raise LedgerValidationError(
                f"Cannot commit a stock transaction in state '{self.state.value}'"
            )
        self.state = TransactionState.COMMITTED
        return self


def apply_transaction(level: StockLevel, change: StockChange) -> StockPosting:
    """
    Apply a stock transaction to the given stock level.

    used / expired / damaged subtract the quantity, purchase / adjustment add it.
    A decreasing transaction larger than the available stock is rejected and
    the level is left untouched. The low-stock advisory does not block.
    """
    if change.quantity <= 0:
        raise LedgerValidationError("Quantity must be greater than 0", field="quantity")

    if is_decreasing(change.transaction_type) and change.quantity > level.available_stock:
        raise InsufficientStockError(change.quantity, level.available_stock)

    delta = signed_quantity(change.transaction_type, change.quantity)
    stock_after = level.current_stock + delta

    return StockPosting(
        change=change,
        level=level.model_copy(update={"current_stock": stock_after}),
        quantity_change=delta,
        stock_before=level.current_stock,
        stock_after=stock_after,
        alert=derive_stock_alert(stock_after, level.reorder_point)
    )

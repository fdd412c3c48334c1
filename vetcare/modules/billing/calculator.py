"""
Invoice and payment ledger arithmetic.

Pure functions over Decimal amounts: no database, no clock except the
optional ``today`` default of the status rule. Amounts are kept in full
precision; rounding is left to display code (see ``vetcare.common.money``).
"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from vetcare.common.money import ZERO, to_decimal
from vetcare.modules.billing.schemas import InvoiceBalance, InvoiceStatus, InvoiceTotals

HUNDRED = Decimal('100')


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def _amount(value: Any) -> Optional[Decimal]:
    """Decimal for numeric input, None for anything else (text, NaN, infinity)."""
    try:
        amount = to_decimal(value)
    except ValueError:
        return None
    return amount if amount.is_finite() else None


def _description(item: Any) -> str:
    value = _field(item, "description")
    return str(value).strip() if value is not None else ""


def line_total(quantity: Any, unit_price: Any) -> Decimal:
    """quantity × unit_price, unrounded"""
    return to_decimal(quantity) * to_decimal(unit_price)


def billable_items(line_items: Optional[Iterable[Any]]) -> List[Any]:
    """
    Drop line items that are not valid charges: no description, or a
    quantity / unit price that is not a number.
    """
    return [
        item for item in (line_items or [])
        if _description(item)
        and _amount(_field(item, "quantity", 0)) is not None
        and _amount(_field(item, "unit_price", 0)) is not None
    ]


def compute_invoice(
    line_items: Iterable[Any],
    tax_rate: Any = ZERO,
    discount_amount: Any = ZERO
) -> InvoiceTotals:
    """
    Compute invoice totals. The discount is applied before tax.

    Args:
        line_items: objects or dicts with description, quantity and unit_price
        tax_rate: tax rate in percent (12 means 12%)
        discount_amount: flat discount subtracted from the subtotal

    Returns:
        InvoiceTotals. A discount larger than the subtotal yields a negative
        taxable base and is returned as is; rejecting it is up to the caller.
        Never raises: items with non-numeric amounts are dropped like blank
        ones, and a non-numeric tax rate or discount counts as zero.
    """
    items = billable_items(line_items)

    subtotal = ZERO
    for item in items:
        subtotal += line_total(_field(item, "quantity", 0), _field(item, "unit_price", 0))

    discount = _amount(discount_amount) or ZERO
    taxable_base = subtotal - discount
    tax_amount = taxable_base * (_amount(tax_rate) or ZERO) / HUNDRED

    return InvoiceTotals(
        subtotal=subtotal,
        discount_amount=discount,
        taxable_base=taxable_base,
        tax_amount=tax_amount,
        total_amount=taxable_base + tax_amount,
        item_count=len(items)
    )


def derive_invoice_status(
    balance_due: Any,
    due_date: Optional[date],
    today: Optional[date] = None
) -> InvoiceStatus:
    today = today or date.today()
    if to_decimal(balance_due) <= ZERO:
        return InvoiceStatus.PAID
    if due_date is not None and due_date < today:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PENDING


def rebalance(total_amount: Any, paid_amount: Any) -> InvoiceBalance:
    total = to_decimal(total_amount)
    paid = to_decimal(paid_amount)
    return InvoiceBalance(total_amount=total, paid_amount=paid, balance_due=total - paid)


def apply_payment(balance: InvoiceBalance, amount: Any) -> InvoiceBalance:
    """Overpayment is representable: balance_due just goes negative."""
    return rebalance(balance.total_amount, balance.paid_amount + to_decimal(amount))


def reverse_payment(balance: InvoiceBalance, amount: Any) -> InvoiceBalance:
    return rebalance(balance.total_amount, balance.paid_amount - to_decimal(amount))

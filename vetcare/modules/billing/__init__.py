"""
Billing module - VetCare

Invoices for clinic services and the payments made against them:

- Line items (quantity × unit price, kept in full precision)
- Invoice totals: discount applied before tax
- Payment ledger: paid amount and balance due, reversible on payment deletion
- Derived status (pending / paid / overdue), recomputed on every read

Tables:
- invoices: invoice header and calculated totals
- invoice_items: line items
- payments: payments per invoice
- invoice_sequences: invoice numbering per branch
"""

from .models import Invoice, InvoiceItem, Payment, InvoiceSequence
from .schemas import (
    InvoiceCreate, InvoiceOut, InvoiceDetail,
    PaymentCreate, PaymentOut
)
from .service import InvoiceService
from .router import router

__all__ = [
    "Invoice", "InvoiceItem", "Payment", "InvoiceSequence",
    "InvoiceCreate", "InvoiceOut", "InvoiceDetail",
    "PaymentCreate", "PaymentOut",
    "InvoiceService",
    "router"
]

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import and_, or_, desc
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from datetime import date, timedelta
import logging

from vetcare.core.config import settings
from vetcare.common.context import ClinicContext
from vetcare.common.errors import LedgerValidationError
from vetcare.common.money import ZERO, format_currency
from vetcare.modules.audit.models import AuditAction, AuditEntityType
from vetcare.modules.audit.service import AuditService
from vetcare.modules.billing.calculator import (
    compute_invoice, derive_invoice_status, line_total,
    apply_payment, reverse_payment, rebalance
)
from vetcare.modules.billing.models import Invoice, InvoiceItem, Payment, InvoiceSequence
from vetcare.modules.billing.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoicePreviewRequest, InvoiceFilters,
    InvoiceTotals, InvoiceBalance, InvoiceStatus, InvoiceStatusCount,
    BillingSummary, PaymentCreate, LineItemCreate
)

logger = logging.getLogger(__name__)


def validate_totals(totals: InvoiceTotals) -> None:
    """Boundary checks the pure aggregator leaves to its caller."""
    if totals.item_count == 0:
        raise LedgerValidationError(
            "Please add at least one invoice item with a description", field="items"
        )
    if totals.taxable_base < ZERO:
        raise LedgerValidationError(
            f"Discount ({totals.discount_amount}) cannot exceed the subtotal ({totals.subtotal})",
            field="discount_amount"
        )


def status_condition(invoice_status: InvoiceStatus, today: date):
    """SQL form of derive_invoice_status, for filtering."""
    if invoice_status == InvoiceStatus.PAID:
        return Invoice.balance_due <= 0
    overdue = and_(Invoice.due_date.is_not(None), Invoice.due_date < today)
    if invoice_status == InvoiceStatus.OVERDUE:
        return and_(Invoice.balance_due > 0, overdue)
    return and_(Invoice.balance_due > 0, or_(Invoice.due_date.is_(None), Invoice.due_date >= today))


def _invoice_values(invoice: Invoice) -> dict:
    return {
        "invoice_number": invoice.invoice_number,
        "tax_rate": invoice.tax_rate,
        "discount_amount": invoice.discount_amount,
        "subtotal": invoice.subtotal,
        "tax_amount": invoice.tax_amount,
        "total_amount": invoice.total_amount,
        "paid_amount": invoice.paid_amount,
        "balance_due": invoice.balance_due,
        "due_date": invoice.due_date,
        "items": [
            {
                "description": item.description,
                "service_type": item.service_type,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
            }
            for item in invoice.items
        ],
    }


class InvoiceService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    def preview_totals(self, data: InvoicePreviewRequest) -> InvoiceTotals:
        """Totals for a form that has not been submitted yet; nothing is persisted."""
        return compute_invoice(data.items, data.tax_rate, data.discount_amount)

    def generate_invoice_number(self, branch_id: UUID) -> str:
        """Sequential invoice number per branch"""
        sequence = self.db.query(InvoiceSequence).filter(
            InvoiceSequence.branch_id == branch_id
        ).first()

        if not sequence:
            sequence = InvoiceSequence(
                branch_id=branch_id,
                current_number=0,
                prefix=settings.INVOICE_NUMBER_PREFIX
            )
            self.db.add(sequence)
            self.db.flush()

        sequence.current_number += 1
        return f"{sequence.prefix or settings.INVOICE_NUMBER_PREFIX}{sequence.current_number:06d}"

    def _build_items(self, items: List[LineItemCreate]) -> List[InvoiceItem]:
        rows = []
        for position, item in enumerate(i for i in items if i.description):
            rows.append(InvoiceItem(
                position=position,
                description=item.description,
                service_type=item.service_type.value,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=line_total(item.quantity, item.unit_price)
            ))
        return rows

    def create_invoice(self, invoice_data: InvoiceCreate, ctx: ClinicContext) -> Invoice:
        """Create an invoice from raw line items; totals are computed here."""
        try:
            totals = compute_invoice(invoice_data.items, invoice_data.tax_rate, invoice_data.discount_amount)
            validate_totals(totals)

            due_date = invoice_data.due_date or (
                invoice_data.invoice_date + timedelta(days=settings.DEFAULT_PAYMENT_TERMS_DAYS)
            )
            balance = rebalance(totals.total_amount, ZERO)

            invoice = Invoice(
                branch_id=ctx.branch_id,
                created_by=ctx.user_id,
                invoice_number=self.generate_invoice_number(ctx.branch_id),
                pet_id=invoice_data.pet_id,
                appointment_id=invoice_data.appointment_id,
                invoice_date=invoice_data.invoice_date,
                due_date=due_date,
                payment_terms=invoice_data.payment_terms,
                notes=invoice_data.notes,
                currency=settings.CURRENCY_CODE,
                tax_rate=invoice_data.tax_rate,
                discount_amount=totals.discount_amount,
                subtotal=totals.subtotal,
                tax_amount=totals.tax_amount,
                total_amount=totals.total_amount,
                paid_amount=balance.paid_amount,
                balance_due=balance.balance_due
            )
            invoice.items = self._build_items(invoice_data.items)

            self.db.add(invoice)
            self.db.flush()

            self.audit.log_action(
                ctx, AuditAction.CREATE, AuditEntityType.INVOICE, invoice.id,
                f"Created invoice #{invoice.invoice_number}",
                new_values=_invoice_values(invoice)
            )

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(
                f"Invoice {invoice.invoice_number} created for branch {ctx.branch_id}: "
                f"total {format_currency(invoice.total_amount)}"
            )
            return invoice

        except LedgerValidationError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating invoice: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error creating invoice: {str(e)}"
            )

    def update_invoice(self, invoice_id: UUID, invoice_update: InvoiceUpdate, ctx: ClinicContext) -> Invoice:
        """
        Update invoice data. When items, tax rate or discount change the totals
        are recomputed and the balance keeps the amount already paid.
        """
        try:
            invoice = self.get_invoice_by_id(invoice_id, ctx)
            old_values = _invoice_values(invoice)
            changes = invoice_update.model_dump(exclude_unset=True, exclude={"items"})

            invoice_date = changes.get("invoice_date", invoice.invoice_date)
            due_date = changes.get("due_date", invoice.due_date)
            if due_date and invoice_date and due_date < invoice_date:
                raise LedgerValidationError("Due date cannot be before the invoice date", field="due_date")

            for field in ("pet_id", "appointment_id", "invoice_date", "due_date", "payment_terms", "notes"):
                if field in changes:
                    setattr(invoice, field, changes[field])

            recompute = (
                invoice_update.items is not None
                or "tax_rate" in changes
                or "discount_amount" in changes
            )
            if recompute:
                if invoice_update.items is not None:
                    items = invoice_update.items
                else:
                    items = [
                        {"description": i.description, "quantity": i.quantity, "unit_price": i.unit_price}
                        for i in invoice.items
                    ]
                tax_rate = changes.get("tax_rate", invoice.tax_rate)
                discount = changes.get("discount_amount", invoice.discount_amount)

                totals = compute_invoice(items, tax_rate, discount)
                validate_totals(totals)
                if totals.total_amount < invoice.paid_amount:
                    raise LedgerValidationError(
                        f"New total ({format_currency(totals.total_amount)}) cannot be less than "
                        f"the amount already paid ({format_currency(invoice.paid_amount)})",
                        field="items"
                    )
                balance = rebalance(totals.total_amount, invoice.paid_amount)

                if invoice_update.items is not None:
                    invoice.items = self._build_items(invoice_update.items)
                invoice.tax_rate = tax_rate
                invoice.discount_amount = totals.discount_amount
                invoice.subtotal = totals.subtotal
                invoice.tax_amount = totals.tax_amount
                invoice.total_amount = totals.total_amount
                invoice.balance_due = balance.balance_due

            self.db.flush()
            self.audit.log_action(
                ctx, AuditAction.UPDATE, AuditEntityType.INVOICE, invoice.id,
                f"Updated invoice #{invoice.invoice_number}",
                old_values=old_values,
                new_values=_invoice_values(invoice)
            )

            self.db.commit()
            self.db.refresh(invoice)
            logger.info(f"Invoice {invoice.invoice_number} updated (recomputed totals: {recompute})")
            return invoice

        except LedgerValidationError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error updating invoice {invoice_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error updating invoice: {str(e)}"
            )

    def get_invoice_by_id(self, invoice_id: UUID, ctx: ClinicContext) -> Invoice:
        """Get an invoice with its items and payments"""
        invoice = self.db.query(Invoice).options(
            selectinload(Invoice.items),
            selectinload(Invoice.payments)
        ).filter(
            Invoice.id == invoice_id,
            Invoice.branch_id == ctx.branch_id
        ).first()

        if not invoice:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Invoice not found"
            )

        return invoice

    def get_invoices(
        self,
        ctx: ClinicContext,
        filters: InvoiceFilters,
        limit: int = 100,
        offset: int = 0,
        today: Optional[date] = None
    ) -> dict:
        """List invoices; status filtering uses the same rule as the derived status."""
        today = today or date.today()
        try:
            base = self.db.query(Invoice).filter(Invoice.branch_id == ctx.branch_id)

            if filters.pet_id:
                base = base.filter(Invoice.pet_id == filters.pet_id)
            if filters.date_from:
                base = base.filter(Invoice.invoice_date >= filters.date_from)
            if filters.date_to:
                base = base.filter(Invoice.invoice_date <= filters.date_to)
            if filters.search:
                term = f"%{filters.search.strip()}%"
                base = base.filter(or_(
                    Invoice.invoice_number.ilike(term),
                    Invoice.notes.ilike(term)
                ))

            # Counts per derived status ignore the status filter itself
            counts = {s: 0 for s in InvoiceStatus}
            for balance_due, due_date in base.with_entities(Invoice.balance_due, Invoice.due_date).all():
                counts[derive_invoice_status(balance_due, due_date, today)] += 1

            query = base
            if filters.status:
                query = query.filter(status_condition(filters.status, today))

            total = query.count()
            invoices = query.order_by(
                desc(Invoice.invoice_date), desc(Invoice.invoice_number)
            ).offset(offset).limit(limit).all()

            return {
                "invoices": invoices,
                "total": total,
                "limit": limit,
                "offset": offset,
                "applied_filters": filters,
                "counts_by_status": [
                    InvoiceStatusCount(status=s, count=c) for s, c in counts.items()
                ],
            }

        except Exception as e:
            logger.error(f"Error listing invoices: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error listing invoices: {str(e)}"
            )

    def get_billing_summary(self, ctx: ClinicContext, today: Optional[date] = None) -> BillingSummary:
        """Dashboard figures: counts per derived status and outstanding amounts"""
        today = today or date.today()
        rows = self.db.query(
            Invoice.total_amount, Invoice.paid_amount, Invoice.balance_due, Invoice.due_date
        ).filter(Invoice.branch_id == ctx.branch_id).all()

        counts = {s: 0 for s in InvoiceStatus}
        total_billed = collected = outstanding = overdue_balance = ZERO
        for total_amount, paid_amount, balance_due, due_date in rows:
            invoice_status = derive_invoice_status(balance_due, due_date, today)
            counts[invoice_status] += 1
            total_billed += total_amount
            collected += paid_amount
            if balance_due > 0:
                outstanding += balance_due
            if invoice_status == InvoiceStatus.OVERDUE:
                overdue_balance += balance_due

        return BillingSummary(
            total_invoices=len(rows),
            pending_count=counts[InvoiceStatus.PENDING],
            overdue_count=counts[InvoiceStatus.OVERDUE],
            paid_count=counts[InvoiceStatus.PAID],
            total_billed=total_billed,
            collected_amount=collected,
            outstanding_balance=outstanding,
            overdue_balance=overdue_balance
        )

    def add_payment(self, invoice_id: UUID, payment_data: PaymentCreate, ctx: ClinicContext):
        """Record a payment and move it through the payment ledger."""
        try:
            invoice = self.get_invoice_by_id(invoice_id, ctx)
            current = InvoiceBalance(
                total_amount=invoice.total_amount,
                paid_amount=invoice.paid_amount,
                balance_due=invoice.balance_due
            )

            # Overpayment is representable in the ledger but not accepted here
            if payment_data.amount > current.balance_due:
                raise LedgerValidationError(
                    f"Payment of {format_currency(payment_data.amount)} exceeds the balance due "
                    f"of {format_currency(current.balance_due)}",
                    field="amount"
                )

            updated = apply_payment(current, payment_data.amount)

            payment = Payment(
                invoice_id=invoice.id,
                branch_id=ctx.branch_id,
                created_by=ctx.user_id,
                amount=payment_data.amount,
                method=payment_data.method.value,
                payment_date=payment_data.payment_date,
                reference_number=payment_data.reference_number,
                notes=payment_data.notes
            )
            self.db.add(payment)

            invoice.paid_amount = updated.paid_amount
            invoice.balance_due = updated.balance_due
            self.db.flush()

            self.audit.log_action(
                ctx, AuditAction.CREATE, AuditEntityType.PAYMENT, payment.id,
                f"Recorded payment of {format_currency(payment_data.amount)} for invoice #{invoice.invoice_number}",
                new_values=payment_data
            )

            self.db.commit()
            self.db.refresh(payment)
            self.db.refresh(invoice)

            logger.info(
                f"Payment {payment.id} on invoice {invoice.invoice_number}: "
                f"balance {current.balance_due} -> {updated.balance_due}"
            )
            return payment, invoice

        except LedgerValidationError as e:
            self.db.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail())
        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error adding payment to invoice {invoice_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error adding payment: {str(e)}"
            )

    def get_invoice_payments(self, invoice_id: UUID, ctx: ClinicContext) -> List[Payment]:
        invoice = self.get_invoice_by_id(invoice_id, ctx)
        return list(invoice.payments)

    def delete_payment(self, invoice_id: UUID, payment_id: UUID, ctx: ClinicContext) -> Invoice:
        """Delete a payment and reverse it on the invoice balance."""
        try:
            invoice = self.get_invoice_by_id(invoice_id, ctx)
            payment = next((p for p in invoice.payments if p.id == payment_id), None)
            if not payment:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Payment not found"
                )

            current = InvoiceBalance(
                total_amount=invoice.total_amount,
                paid_amount=invoice.paid_amount,
                balance_due=invoice.balance_due
            )
            updated = reverse_payment(current, payment.amount)

            self.audit.log_action(
                ctx, AuditAction.DELETE, AuditEntityType.PAYMENT, payment.id,
                f"Deleted payment of {format_currency(payment.amount)} from invoice #{invoice.invoice_number}",
                old_values={
                    "amount": payment.amount,
                    "method": payment.method,
                    "payment_date": payment.payment_date,
                    "reference_number": payment.reference_number,
                }
            )

            invoice.payments.remove(payment)
            invoice.paid_amount = updated.paid_amount
            invoice.balance_due = updated.balance_due

            self.db.commit()
            self.db.refresh(invoice)

            logger.info(
                f"Payment {payment_id} removed from invoice {invoice.invoice_number}: "
                f"balance {current.balance_due} -> {updated.balance_due}"
            )
            return invoice

        except HTTPException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error deleting payment {payment_id}: {str(e)}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Error deleting payment: {str(e)}"
            )

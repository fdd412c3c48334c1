from fastapi import APIRouter, Query, status
from typing import List, Optional
from uuid import UUID
from datetime import date

from vetcare.core.config import settings
from vetcare.dependencies.dbDependencies import db_dependency
from vetcare.dependencies.clinicDependencies import ClinicContextDep
from vetcare.modules.billing.service import InvoiceService
from vetcare.modules.billing.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceOut, InvoiceDetail, InvoiceList,
    InvoicePreviewRequest, InvoiceTotals, InvoiceFilters, InvoiceStatus,
    BillingSummary, PaymentCreate, PaymentOut, PaymentReceipt
)

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("/preview", response_model=InvoiceTotals)
def preview_invoice(data: InvoicePreviewRequest, db: db_dependency, ctx: ClinicContextDep):
    """
    Compute subtotal, tax and total for a draft invoice without saving it.
    Items without a description are ignored.
    """
    service = InvoiceService(db)
    return service.preview_totals(data)


@router.post("/", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(invoice_data: InvoiceCreate, db: db_dependency, ctx: ClinicContextDep):
    """
    Create an invoice

    Totals are computed from the line items: the discount is applied before tax.
    """
    service = InvoiceService(db)
    return service.create_invoice(invoice_data, ctx)


@router.get("/", response_model=InvoiceList)
def list_invoices(
    db: db_dependency,
    ctx: ClinicContextDep,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    start_date: Optional[date] = Query(None, description="Start date (YYYY-MM-DD)"),
    end_date: Optional[date] = Query(None, description="End date (YYYY-MM-DD)"),
    pet_id: Optional[UUID] = Query(None, description="Filter by pet"),
    status: Optional[InvoiceStatus] = Query(None, description="pending, paid or overdue"),
    search: Optional[str] = Query(None, description="Search by number or notes")
):
    """List invoices of the branch with filters."""
    service = InvoiceService(db)
    filters = InvoiceFilters(
        status=status,
        pet_id=pet_id,
        date_from=start_date,
        date_to=end_date,
        search=search
    )
    return service.get_invoices(ctx, filters, limit, offset)


@router.get("/summary", response_model=BillingSummary)
def billing_summary(db: db_dependency, ctx: ClinicContextDep):
    service = InvoiceService(db)
    return service.get_billing_summary(ctx)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: UUID, db: db_dependency, ctx: ClinicContextDep):
    service = InvoiceService(db)
    return service.get_invoice_by_id(invoice_id, ctx)


@router.patch("/{invoice_id}", response_model=InvoiceDetail)
def update_invoice(invoice_id: UUID, invoice_update: InvoiceUpdate, db: db_dependency, ctx: ClinicContextDep):
    """
    Update an invoice

    Changing items, tax rate or discount recomputes the totals; payments
    already recorded stay applied to the new total.
    """
    service = InvoiceService(db)
    return service.update_invoice(invoice_id, invoice_update, ctx)


@router.post("/{invoice_id}/payments", response_model=PaymentReceipt, status_code=status.HTTP_201_CREATED)
def add_payment(invoice_id: UUID, payment_data: PaymentCreate, db: db_dependency, ctx: ClinicContextDep):
    """Record a payment. Payments larger than the balance due are rejected."""
    service = InvoiceService(db)
    payment, invoice = service.add_payment(invoice_id, payment_data, ctx)
    return PaymentReceipt(
        payment=PaymentOut.model_validate(payment),
        invoice=InvoiceOut.model_validate(invoice)
    )


@router.get("/{invoice_id}/payments", response_model=List[PaymentOut])
def list_payments(invoice_id: UUID, db: db_dependency, ctx: ClinicContextDep):
    service = InvoiceService(db)
    return service.get_invoice_payments(invoice_id, ctx)


@router.delete("/{invoice_id}/payments/{payment_id}", response_model=InvoiceOut)
def delete_payment(invoice_id: UUID, payment_id: UUID, db: db_dependency, ctx: ClinicContextDep):
    """Delete a payment; the invoice balance is recomputed."""
    service = InvoiceService(db)
    return service.delete_payment(invoice_id, payment_id, ctx)

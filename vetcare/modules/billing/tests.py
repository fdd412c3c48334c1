"""
Tests for the billing module

Covers:
- Invoice totals (discount before tax, blank items ignored)
- Payment ledger and derived status
- InvoiceService validations and audit trail
- Invoice endpoints, scoped by X-Branch-ID
"""

import pytest
from decimal import Decimal
from datetime import date, timedelta
from uuid import uuid4

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from vetcare.core.config import settings
from vetcare.common.money import format_currency, quantize_money
from vetcare.modules.audit.models import AuditEntry
from vetcare.modules.billing.calculator import (
    compute_invoice, derive_invoice_status, apply_payment, reverse_payment, rebalance
)
from vetcare.modules.billing.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceStatus, InvoiceFilters, LineItemCreate, PaymentCreate
)
from vetcare.modules.billing.service import InvoiceService


# ===== FIXTURES =====

@pytest.fixture
def checkup_items():
    """Two consultations at 100 and one vaccine at 50"""
    return [
        {"description": "Consultation", "service_type": "consultation", "quantity": "2", "unit_price": "100"},
        {"description": "Rabies vaccine", "service_type": "vaccination", "quantity": "1", "unit_price": "50"},
    ]


@pytest.fixture
def invoice_payload(checkup_items):
    return {
        "pet_id": str(uuid4()),
        "tax_rate": "12",
        "discount_amount": "20",
        "notes": "Annual checkup",
        "items": checkup_items,
    }


# ===== CALCULATOR =====

class TestComputeInvoice:
    """Tests for the invoice aggregator"""

    def test_discount_applied_before_tax(self, checkup_items):
        totals = compute_invoice(checkup_items, Decimal("12"), Decimal("20"))

        assert totals.subtotal == Decimal("250")
        assert totals.taxable_base == Decimal("230")
        assert totals.tax_amount == Decimal("27.6")
        assert totals.total_amount == Decimal("257.6")
        assert totals.item_count == 2

    def test_total_equals_base_plus_tax(self):
        items = [{"description": "Deworming", "quantity": "3", "unit_price": "33.33"}]
        totals = compute_invoice(items, Decimal("12"), Decimal("1.99"))

        assert totals.total_amount == totals.subtotal - totals.discount_amount + totals.tax_amount

    def test_blank_description_items_are_ignored(self):
        items = [
            {"description": "Consultation", "quantity": "1", "unit_price": "500"},
            {"description": "   ", "quantity": "5", "unit_price": "999"},
            {"description": "", "quantity": "1", "unit_price": "10"},
        ]
        totals = compute_invoice(items)

        assert totals.subtotal == Decimal("500")
        assert totals.item_count == 1

    def test_accepts_schema_objects(self):
        items = [LineItemCreate(description="Surgery", quantity=Decimal("1"), unit_price=Decimal("1500"))]
        totals = compute_invoice(items, Decimal("0"), Decimal("0"))

        assert totals.total_amount == Decimal("1500")

    def test_no_rounding_before_display(self):
        items = [{"description": "Medication", "quantity": "1", "unit_price": "0.125"}]
        totals = compute_invoice(items, Decimal("12"))

        assert totals.tax_amount == Decimal("0.015")
        assert quantize_money(totals.total_amount) == Decimal("0.14")

    def test_discount_larger_than_subtotal_gives_negative_base(self):
        items = [{"description": "Grooming", "quantity": "1", "unit_price": "100"}]
        totals = compute_invoice(items, Decimal("12"), Decimal("150"))

        assert totals.taxable_base == Decimal("-50")

    def test_empty_input_yields_zeros(self):
        for empty in ([], None):
            totals = compute_invoice(empty, Decimal("12"), Decimal("0"))

            assert totals.subtotal == Decimal("0")
            assert totals.tax_amount == Decimal("0")
            assert totals.total_amount == Decimal("0")
            assert totals.item_count == 0

    def test_malformed_input_does_not_raise(self):
        items = [
            {"description": "Consultation", "quantity": "two", "unit_price": "100"},
            {"description": "Deworming", "quantity": "1", "unit_price": "NaN"},
            {"description": 42, "quantity": "1", "unit_price": "80"},
            {"description": None, "quantity": "1", "unit_price": "999"},
        ]
        totals = compute_invoice(items, "twelve", "abc")

        assert totals.subtotal == Decimal("80")
        assert totals.item_count == 1
        assert totals.tax_amount == Decimal("0")
        assert totals.discount_amount == Decimal("0")
        assert totals.total_amount == Decimal("80")


class TestPaymentLedger:
    """Tests for the payment ledger and derived status"""

    def test_payments_settle_invoice(self):
        balance = rebalance(Decimal("257.6"), Decimal("0"))

        balance = apply_payment(balance, Decimal("100"))
        assert balance.balance_due == Decimal("157.6")
        assert derive_invoice_status(balance.balance_due, date.today()) == InvoiceStatus.PENDING

        balance = apply_payment(balance, Decimal("157.6"))
        assert balance.paid_amount == Decimal("257.6")
        assert balance.balance_due == Decimal("0")
        assert derive_invoice_status(balance.balance_due, date.today()) == InvoiceStatus.PAID

    def test_reverse_payment_restores_balance(self):
        start = rebalance(Decimal("500"), Decimal("100"))
        restored = reverse_payment(apply_payment(start, Decimal("75.5")), Decimal("75.5"))

        assert restored == start

    def test_overpayment_goes_negative(self):
        balance = apply_payment(rebalance(Decimal("100"), Decimal("0")), Decimal("120"))

        assert balance.balance_due == Decimal("-20")
        assert derive_invoice_status(balance.balance_due, None) == InvoiceStatus.PAID

    def test_reverse_payment_on_overpaid_balance(self):
        overpaid = apply_payment(rebalance(Decimal("100"), Decimal("0")), Decimal("120"))
        reversed_balance = reverse_payment(overpaid, Decimal("120"))

        assert reversed_balance.paid_amount == Decimal("0")
        assert reversed_balance.balance_due == Decimal("100")
        assert derive_invoice_status(reversed_balance.balance_due, None) == InvoiceStatus.PENDING

    def test_overdue_when_past_due_with_balance(self):
        today = date(2025, 6, 1)

        assert derive_invoice_status(Decimal("10"), date(2025, 5, 31), today) == InvoiceStatus.OVERDUE
        assert derive_invoice_status(Decimal("10"), today, today) == InvoiceStatus.PENDING
        assert derive_invoice_status(Decimal("0"), date(2025, 5, 31), today) == InvoiceStatus.PAID

    def test_status_derivation_is_idempotent(self):
        today = date(2025, 6, 1)
        first = derive_invoice_status(Decimal("5"), date(2025, 5, 1), today)

        assert derive_invoice_status(Decimal("5"), date(2025, 5, 1), today) == first


class TestMoneyFormatting:

    def test_format_currency_rounds_half_up(self):
        assert format_currency(Decimal("1234.565")) == "₱1,234.57"
        assert format_currency(Decimal("-5")) == "-₱5.00"
        assert format_currency(None) == ""


# ===== SERVICE =====

class TestInvoiceService:
    """Tests for InvoiceService"""

    def test_create_invoice_computes_totals(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)

        assert invoice.invoice_number == "INV-000001"
        assert invoice.total_amount == Decimal("257.6")
        assert invoice.balance_due == Decimal("257.6")
        assert invoice.paid_amount == Decimal("0")
        assert invoice.currency == "PHP"
        assert invoice.due_date == invoice.invoice_date + timedelta(days=30)
        assert len(invoice.items) == 2

    def test_invoice_numbers_are_sequential_per_branch(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        service.create_invoice(InvoiceCreate(**invoice_payload), ctx)
        second = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)

        assert second.invoice_number == "INV-000002"

    def test_create_invoice_without_described_items(self, db_session: Session, ctx):
        service = InvoiceService(db_session)
        data = InvoiceCreate(items=[LineItemCreate(description=" ", quantity=Decimal("1"), unit_price=Decimal("10"))])

        with pytest.raises(HTTPException) as exc_info:
            service.create_invoice(data, ctx)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["field"] == "items"

    def test_create_invoice_discount_exceeds_subtotal(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        data = InvoiceCreate(**{**invoice_payload, "discount_amount": "300"})

        with pytest.raises(HTTPException) as exc_info:
            service.create_invoice(data, ctx)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["field"] == "discount_amount"

    def test_payments_until_paid(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)

        _, invoice = service.add_payment(invoice.id, PaymentCreate(amount=Decimal("100")), ctx)
        assert invoice.balance_due == Decimal("157.6")

        _, invoice = service.add_payment(invoice.id, PaymentCreate(amount=Decimal("157.6")), ctx)
        assert invoice.balance_due == Decimal("0")
        assert invoice.paid_amount == Decimal("257.6")
        assert derive_invoice_status(invoice.balance_due, invoice.due_date) == InvoiceStatus.PAID

    def test_overpayment_rejected(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)

        with pytest.raises(HTTPException) as exc_info:
            service.add_payment(invoice.id, PaymentCreate(amount=Decimal("300")), ctx)

        assert exc_info.value.status_code == 400
        db_session.refresh(invoice)
        assert invoice.paid_amount == Decimal("0")

    def test_delete_payment_reverses_balance(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)
        payment, _ = service.add_payment(invoice.id, PaymentCreate(amount=Decimal("100")), ctx)

        invoice = service.delete_payment(invoice.id, payment.id, ctx)

        assert invoice.paid_amount == Decimal("0")
        assert invoice.balance_due == Decimal("257.6")
        assert invoice.payments == []

    def test_update_recomputes_and_keeps_payments(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)
        service.add_payment(invoice.id, PaymentCreate(amount=Decimal("100")), ctx)

        invoice = service.update_invoice(invoice.id, InvoiceUpdate(discount_amount=Decimal("0")), ctx)

        # 250 * 1.12
        assert invoice.total_amount == Decimal("280")
        assert invoice.paid_amount == Decimal("100")
        assert invoice.balance_due == Decimal("180")

    def test_update_below_paid_amount_rejected(self, db_session: Session, ctx):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(items=[
            LineItemCreate(description="Consultation", quantity=Decimal("1"), unit_price=Decimal("100"))
        ]), ctx)
        service.add_payment(invoice.id, PaymentCreate(amount=Decimal("100")), ctx)

        update = InvoiceUpdate(items=[
            LineItemCreate(description="Consultation", quantity=Decimal("1"), unit_price=Decimal("40"))
        ])
        with pytest.raises(HTTPException) as exc_info:
            service.update_invoice(invoice.id, update, ctx)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["field"] == "items"
        invoice = service.get_invoice_by_id(invoice.id, ctx)
        assert invoice.total_amount == Decimal("100")
        assert invoice.balance_due == Decimal("0")
        assert [i.unit_price for i in invoice.items] == [Decimal("100")]

    def test_update_clears_optional_fields(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)

        invoice = service.update_invoice(
            invoice.id, InvoiceUpdate(notes=None, due_date=None, pet_id=None), ctx
        )

        assert invoice.notes is None
        assert invoice.due_date is None
        assert invoice.pet_id is None
        assert invoice.total_amount == Decimal("257.6")

    def test_update_rejects_null_for_required_fields(self):
        for field in ("tax_rate", "discount_amount", "invoice_date", "items"):
            with pytest.raises(ValidationError):
                InvoiceUpdate(**{field: None})

    def test_other_branch_cannot_read_invoice(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)
        other = ctx.model_copy(update={"branch_id": uuid4()})

        with pytest.raises(HTTPException) as exc_info:
            service.get_invoice_by_id(invoice.id, other)

        assert exc_info.value.status_code == 404

    def test_list_filters_by_derived_status(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        past = date.today() - timedelta(days=60)
        service.create_invoice(InvoiceCreate(**{**invoice_payload, "invoice_date": past, "due_date": past}), ctx)
        paid = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)
        service.add_payment(paid.id, PaymentCreate(amount=Decimal("257.6")), ctx)
        service.create_invoice(InvoiceCreate(**invoice_payload), ctx)

        result = service.get_invoices(ctx, InvoiceFilters(status=InvoiceStatus.OVERDUE))
        counts = {c.status: c.count for c in result["counts_by_status"]}

        assert result["total"] == 1
        assert counts == {InvoiceStatus.PENDING: 1, InvoiceStatus.PAID: 1, InvoiceStatus.OVERDUE: 1}

        summary = service.get_billing_summary(ctx)
        assert summary.total_invoices == 3
        assert summary.collected_amount == Decimal("257.6")
        assert summary.overdue_balance == Decimal("257.6")

    def test_actions_are_audited(self, db_session: Session, ctx, invoice_payload):
        service = InvoiceService(db_session)
        invoice = service.create_invoice(InvoiceCreate(**invoice_payload), ctx)
        service.add_payment(invoice.id, PaymentCreate(amount=Decimal("50")), ctx)

        entries = db_session.query(AuditEntry).filter(AuditEntry.branch_id == ctx.branch_id).all()
        actions = sorted((e.entity_type, e.action) for e in entries)

        assert actions == [("invoice", "CREATE"), ("payment", "CREATE")]
        assert all(e.user_id == ctx.user_id for e in entries)
        invoice_entry = next(e for e in entries if e.entity_type == "invoice")
        assert Decimal(invoice_entry.new_values["total_amount"]) == Decimal("257.6")


# ===== ENDPOINTS =====

class TestInvoiceEndpoints:
    """Tests for the invoice endpoints"""

    def test_missing_branch_header(self, client):
        response = client.get("/invoices/")
        assert response.status_code == 400

    def test_missing_user_header(self, client, ctx):
        response = client.get("/invoices/", headers={"X-Branch-ID": str(ctx.branch_id)})
        assert response.status_code == 401

    def test_preview(self, client, clinic_headers, checkup_items):
        response = client.post(
            "/invoices/preview",
            json={"items": checkup_items, "tax_rate": "12", "discount_amount": "20"},
            headers=clinic_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["total_amount"]) == Decimal("257.6")
        assert Decimal(data["tax_amount"]) == Decimal("27.6")

    def test_create_pay_and_read(self, client, clinic_headers, invoice_payload):
        response = client.post("/invoices/", json=invoice_payload, headers=clinic_headers)
        assert response.status_code == 201
        invoice = response.json()
        assert invoice["status"] == "pending"
        assert len(invoice["items"]) == 2

        response = client.post(
            f"/invoices/{invoice['id']}/payments",
            json={"amount": "257.6", "method": "cash"},
            headers=clinic_headers
        )
        assert response.status_code == 201
        receipt = response.json()
        assert receipt["invoice"]["status"] == "paid"
        assert Decimal(receipt["invoice"]["balance_due"]) == Decimal("0")

        response = client.get(f"/invoices/{invoice['id']}", headers=clinic_headers)
        assert response.status_code == 200
        assert len(response.json()["payments"]) == 1

    def test_invalid_line_item_quantity(self, client, clinic_headers):
        response = client.post(
            "/invoices/",
            json={"items": [{"description": "Consultation", "quantity": "0", "unit_price": "100"}]},
            headers=clinic_headers
        )
        assert response.status_code == 422

    def test_audit_trail_endpoint(self, client, clinic_headers, invoice_payload):
        invoice = client.post("/invoices/", json=invoice_payload, headers=clinic_headers).json()

        response = client.get(
            "/audit/",
            params={"entity_type": "invoice", "entity_id": invoice["id"]},
            headers=clinic_headers
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_patch_clears_notes_and_keeps_totals(self, client, clinic_headers, invoice_payload):
        invoice = client.post("/invoices/", json=invoice_payload, headers=clinic_headers).json()

        response = client.patch(f"/invoices/{invoice['id']}", json={"notes": None}, headers=clinic_headers)

        assert response.status_code == 200
        assert response.json()["notes"] is None
        assert Decimal(response.json()["total_amount"]) == Decimal("257.6")

    def test_patch_null_tax_rate(self, client, clinic_headers, invoice_payload):
        invoice = client.post("/invoices/", json=invoice_payload, headers=clinic_headers).json()

        response = client.patch(f"/invoices/{invoice['id']}", json={"tax_rate": None}, headers=clinic_headers)

        assert response.status_code == 422

    def test_list_limit_capped_by_max_page_size(self, client, clinic_headers):
        response = client.get(
            "/invoices/", params={"limit": settings.MAX_PAGE_SIZE + 1}, headers=clinic_headers
        )
        assert response.status_code == 422

        response = client.get("/invoices/", headers=clinic_headers)
        assert response.json()["limit"] == settings.DEFAULT_PAGE_SIZE

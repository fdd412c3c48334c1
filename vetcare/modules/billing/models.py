from vetcare.database.database import Base
from sqlalchemy import Column, Integer, String, Date, Text, Numeric, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from datetime import date
from uuid import uuid4
from vetcare.common.mixins import BranchMixin, TimestampMixin


class Invoice(Base, BranchMixin, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # References (pets and appointments live in the hosted store)
    pet_id = Column(Uuid, nullable=True, index=True)
    appointment_id = Column(Uuid, nullable=True)
    created_by = Column(Uuid, nullable=False)

    invoice_number = Column(String(50), nullable=False)

    # Dates
    invoice_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)
    payment_terms = Column(String(50), nullable=True)

    notes = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False, default="PHP")

    # Inputs of the aggregator
    tax_rate = Column(Numeric(7, 4), nullable=False, default=0)
    discount_amount = Column(Numeric(18, 6), nullable=False, default=0)

    # Totals (calculated, full precision)
    subtotal = Column(Numeric(18, 6), nullable=False, default=0)
    tax_amount = Column(Numeric(18, 6), nullable=False, default=0)
    total_amount = Column(Numeric(18, 6), nullable=False, default=0)

    # Maintained by the payment ledger
    paid_amount = Column(Numeric(18, 6), nullable=False, default=0)
    balance_due = Column(Numeric(18, 6), nullable=False, default=0)

    items = relationship(
        "InvoiceItem", back_populates="invoice",
        cascade="all, delete-orphan", order_by="InvoiceItem.position"
    )
    payments = relationship(
        "Payment", back_populates="invoice",
        cascade="all, delete-orphan", order_by="Payment.created_at"
    )

    __table_args__ = (
        UniqueConstraint("branch_id", "invoice_number", name="uq_invoice_branch_number"),
    )


class InvoiceItem(Base, TimestampMixin):
    __tablename__ = "invoice_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    invoice_id = Column(Uuid, ForeignKey("invoices.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    description = Column(String(255), nullable=False)
    service_type = Column(String(30), nullable=False, default="consultation")
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_price = Column(Numeric(18, 6), nullable=False)
    line_total = Column(Numeric(18, 6), nullable=False)  # quantity * unit_price

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base, BranchMixin, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    invoice_id = Column(Uuid, ForeignKey("invoices.id"), nullable=False, index=True)
    created_by = Column(Uuid, nullable=False)

    amount = Column(Numeric(18, 6), nullable=False)
    method = Column(String(30), nullable=False)
    payment_date = Column(Date, nullable=False, default=date.today)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    invoice = relationship("Invoice", back_populates="payments")


class InvoiceSequence(Base, BranchMixin):
    """Invoice numbering sequence per branch"""
    __tablename__ = "invoice_sequences"

    id = Column(Uuid, primary_key=True, default=uuid4)
    current_number = Column(Integer, nullable=False, default=0)
    prefix = Column(String(10), nullable=True)

    __table_args__ = (
        UniqueConstraint("branch_id", name="uq_sequence_branch"),
    )

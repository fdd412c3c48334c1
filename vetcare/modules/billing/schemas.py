from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime
from enum import Enum


class ServiceType(str, Enum):
    CONSULTATION = "consultation"
    EXAMINATION = "examination"
    VACCINATION = "vaccination"
    SURGERY = "surgery"
    MEDICATION = "medication"
    LABORATORY = "laboratory"
    IMAGING = "imaging"
    DENTAL = "dental"
    GROOMING = "grooming"
    BOARDING = "boarding"
    OTHER = "other"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    INSURANCE = "insurance"
    OTHER = "other"


class InvoiceStatus(str, Enum):
    """Derived on read from balance_due and due_date, never stored."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


# Ledger value objects
class InvoiceTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    item_count: int = 0


class InvoiceBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal


# Line item schemas
class LineItemCreate(BaseModel):
    description: str = Field("", max_length=255, description="Items without a description are not charged")
    service_type: ServiceType = ServiceType.CONSULTATION
    quantity: Decimal = Field(..., ge=Decimal("0.01"), description="Quantity must be at least 0.01")
    unit_price: Decimal = Field(..., ge=0, description="Unit price before tax")

    @field_validator('description')
    @classmethod
    def strip_description(cls, v):
        return v.strip() if v else ""


class LineItemOut(BaseModel):
    id: UUID
    description: str
    service_type: ServiceType
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


# Invoice schemas
class InvoicePreviewRequest(BaseModel):
    items: List[LineItemCreate] = Field(default_factory=list)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Tax rate in percent")
    discount_amount: Decimal = Field(Decimal("0"), ge=0)


class InvoiceCreate(BaseModel):
    pet_id: Optional[UUID] = None
    appointment_id: Optional[UUID] = None
    invoice_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    payment_terms: str = Field("30 days", max_length=50)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Tax rate in percent")
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[LineItemCreate] = Field(..., min_length=1, description="At least one line item")

    @model_validator(mode='after')
    def validate_due_date(self):
        if self.due_date and self.invoice_date and self.due_date < self.invoice_date:
            raise ValueError('Due date cannot be before the invoice date')
        return self


class InvoiceUpdate(BaseModel):
    pet_id: Optional[UUID] = None
    appointment_id: Optional[UUID] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    payment_terms: Optional[str] = Field(None, max_length=50)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    items: Optional[List[LineItemCreate]] = Field(None, min_length=1)

    # Omit these to keep the current value; they cannot be cleared
    @field_validator('invoice_date', 'tax_rate', 'discount_amount', 'items')
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f'{info.field_name} cannot be null')
        return v

    @model_validator(mode='after')
    def validate_due_date(self):
        if self.due_date and self.invoice_date and self.due_date < self.invoice_date:
            raise ValueError('Due date cannot be before the invoice date')
        return self


class InvoiceOut(BaseModel):
    id: UUID
    branch_id: UUID
    invoice_number: str
    pet_id: Optional[UUID] = None
    appointment_id: Optional[UUID] = None
    invoice_date: date
    due_date: Optional[date] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    currency: str
    subtotal: Decimal
    discount_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @computed_field
    @property
    def status(self) -> InvoiceStatus:
        from vetcare.modules.billing.calculator import derive_invoice_status
        return derive_invoice_status(self.balance_due, self.due_date)


class InvoiceDetail(InvoiceOut):
    items: List[LineItemOut]
    payments: List['PaymentOut'] = []

    class Config:
        from_attributes = True


class InvoiceStatusCount(BaseModel):
    status: InvoiceStatus
    count: int


class InvoiceFilters(BaseModel):
    status: Optional[InvoiceStatus] = None
    pet_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None


class InvoiceList(BaseModel):
    invoices: List[InvoiceOut]
    total: int
    limit: int
    offset: int
    applied_filters: Optional[InvoiceFilters] = None
    counts_by_status: List[InvoiceStatusCount] = Field(default_factory=list)


class BillingSummary(BaseModel):
    total_invoices: int
    pending_count: int
    overdue_count: int
    paid_count: int
    total_billed: Decimal
    collected_amount: Decimal
    outstanding_balance: Decimal
    overdue_balance: Decimal


# Payment schemas
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Amount must be greater than 0")
    method: PaymentMethod = PaymentMethod.CASH
    payment_date: date = Field(default_factory=date.today)
    reference_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentOut(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentReceipt(BaseModel):
    payment: PaymentOut
    invoice: InvoiceOut


InvoiceDetail.model_rebuild()

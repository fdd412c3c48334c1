from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List, Dict
from uuid import UUID
from datetime import date, datetime
from enum import Enum


class ItemType(str, Enum):
    MEDICINE = "medicine"
    VACCINE = "vaccine"
    SUPPLY = "supply"
    EQUIPMENT = "equipment"
    FOOD = "food"
    OTHER = "other"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    USED = "used"
    EXPIRED = "expired"
    DAMAGED = "damaged"
    ADJUSTMENT = "adjustment"


class TransactionState(str, Enum):
    PROPOSED = "proposed"
    VALIDATED = "validated"
    COMMITTED = "committed"


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


class ItemSort(str, Enum):
    NAME = "name"
    STOCK_LEVEL = "stock_level"
    ITEM_CODE = "item_code"
    VALUE = "value"


# Ledger value objects
class StockLevel(BaseModel):
    """Stock counters of one item, validated where they enter the ledger."""
    model_config = ConfigDict(frozen=True)

    current_stock: int = Field(..., ge=0)
    reserved_stock: int = Field(0, ge=0)
    reorder_point: int = Field(0, ge=0)

    @model_validator(mode='after')
    def validate_reserved(self):
        if self.reserved_stock > self.current_stock:
            raise ValueError('Reserved stock cannot exceed current stock')
        return self

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock


class StockChange(BaseModel):
    """A proposed stock transaction, as submitted by the clinic staff."""
    transaction_type: TransactionType
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    batch_number: Optional[str] = Field(None, max_length=100)
    lot_number: Optional[str] = Field(None, max_length=100)
    expiration_date: Optional[date] = None
    pet_id: Optional[UUID] = Field(None, description="Patient the stock was used for")
    appointment_id: Optional[UUID] = None


class StockAlertDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    alert_type: AlertType
    severity: AlertSeverity
    current_value: int
    threshold_value: int


class UsageCreate(BaseModel):
    quantity: int = Field(..., gt=0, description="Quantity used")
    reason: str = Field("Used in treatment", min_length=1, max_length=255)
    pet_id: Optional[UUID] = None
    appointment_id: Optional[UUID] = None
    notes: Optional[str] = None


# Item schemas
class InventoryItemCreate(BaseModel):
    item_code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    item_type: ItemType = ItemType.SUPPLY
    description: Optional[str] = None
    unit_of_measure: str = Field("units", max_length=30)
    initial_stock: int = Field(0, ge=0, description="Recorded as a purchase transaction")
    reserved_stock: int = Field(0, ge=0)
    minimum_stock: int = Field(0, ge=0)
    reorder_point: int = Field(0, ge=0)
    reorder_quantity: int = Field(0, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    unit_cost: Decimal = Field(Decimal("0"), ge=0)
    has_expiration: bool = False

    @model_validator(mode='after')
    def validate_levels(self):
        if self.reserved_stock > self.initial_stock:
            raise ValueError('Reserved stock cannot exceed the initial stock')
        if self.maximum_stock is not None and self.reorder_point > self.maximum_stock:
            raise ValueError('Reorder point cannot exceed the maximum stock')
        return self


class InventoryItemUpdate(BaseModel):
    """Item settings only; stock counters change through transactions."""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    item_type: Optional[ItemType] = None
    description: Optional[str] = None
    unit_of_measure: Optional[str] = Field(None, max_length=30)
    minimum_stock: Optional[int] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)
    reorder_quantity: Optional[int] = Field(None, ge=0)
    maximum_stock: Optional[int] = Field(None, ge=0)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    has_expiration: Optional[bool] = None

    @field_validator(
        'name', 'item_type', 'unit_of_measure', 'minimum_stock', 'reorder_point',
        'reorder_quantity', 'unit_cost', 'has_expiration'
    )
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f'{info.field_name} cannot be null')
        return v


class InventoryItemOut(BaseModel):
    id: UUID
    branch_id: UUID
    item_code: str
    name: str
    item_type: ItemType
    description: Optional[str] = None
    unit_of_measure: str
    current_stock: int
    reserved_stock: int
    available_stock: int
    minimum_stock: int
    reorder_point: int
    reorder_quantity: int
    maximum_stock: Optional[int] = None
    unit_cost: Decimal
    has_expiration: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @computed_field
    @property
    def status(self) -> StockStatus:
        from vetcare.modules.inventory.ledger import derive_stock_status
        return derive_stock_status(self.current_stock, self.reorder_point)

    @computed_field
    @property
    def stock_value(self) -> Decimal:
        return self.current_stock * self.unit_cost


class InventoryFilters(BaseModel):
    stock_level: Optional[StockStatus] = None
    item_type: Optional[ItemType] = None
    has_expiration: Optional[bool] = None
    requires_reorder: bool = False
    search: Optional[str] = None


class InventoryItemList(BaseModel):
    items: List[InventoryItemOut]
    total: int
    sort_by: ItemSort = ItemSort.NAME


# Transaction schemas
class StockTransactionOut(BaseModel):
    id: UUID
    item_id: UUID
    transaction_type: TransactionType
    quantity: int
    quantity_change: int
    stock_before: int
    stock_after: int
    unit_cost: Decimal
    total_cost: Decimal
    reason: str
    batch_number: Optional[str] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[date] = None
    pet_id: Optional[UUID] = None
    appointment_id: Optional[UUID] = None
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class StockAlertOut(BaseModel):
    id: UUID
    item_id: UUID
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    current_value: int
    threshold_value: int
    status: AlertStatus
    acknowledged_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class StockPostingOut(BaseModel):
    item: InventoryItemOut
    transaction: StockTransactionOut
    alert: Optional[StockAlertOut] = None


class InventoryStats(BaseModel):
    total_items: int
    total_value: Decimal
    low_stock_items: int
    out_of_stock_items: int
    active_alerts: int
    items_by_type: Dict[str, int] = Field(default_factory=dict)

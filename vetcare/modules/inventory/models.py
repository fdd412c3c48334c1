from vetcare.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Text, Numeric, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4
from vetcare.common.mixins import BranchMixin, TimestampMixin


class InventoryItem(Base, BranchMixin, TimestampMixin):
    __tablename__ = "inventory_items"

    id = Column(Uuid, primary_key=True, default=uuid4)
    item_code = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False, index=True)
    item_type = Column(String(30), nullable=False, default="supply")
    description = Column(Text, nullable=True)
    unit_of_measure = Column(String(30), nullable=False, default="units")

    # Counters, mutated only through stock transactions
    current_stock = Column(Integer, nullable=False, default=0)
    reserved_stock = Column(Integer, nullable=False, default=0)

    minimum_stock = Column(Integer, nullable=False, default=0)
    reorder_point = Column(Integer, nullable=False, default=0)
    reorder_quantity = Column(Integer, nullable=False, default=0)
    maximum_stock = Column(Integer, nullable=True)

    unit_cost = Column(Numeric(18, 6), nullable=False, default=0)
    has_expiration = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    transactions = relationship("StockTransaction", back_populates="item", order_by="StockTransaction.created_at")
    alerts = relationship("StockAlert", back_populates="item")

    __table_args__ = (
        UniqueConstraint("branch_id", "item_code", name="uq_inventory_branch_code"),
    )

    @property
    def available_stock(self) -> int:
        return (self.current_stock or 0) - (self.reserved_stock or 0)


class StockTransaction(Base, BranchMixin, TimestampMixin):
    """Immutable audit record of one stock change"""
    __tablename__ = "stock_transactions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    item_id = Column(Uuid, ForeignKey("inventory_items.id"), nullable=False, index=True)
    created_by = Column(Uuid, nullable=False)

    transaction_type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)          # as entered, always > 0
    quantity_change = Column(Integer, nullable=False)   # signed
    stock_before = Column(Integer, nullable=False)
    stock_after = Column(Integer, nullable=False)

    unit_cost = Column(Numeric(18, 6), nullable=False, default=0)
    total_cost = Column(Numeric(18, 6), nullable=False, default=0)

    reason = Column(String(255), nullable=False)
    batch_number = Column(String(100), nullable=True)
    lot_number = Column(String(100), nullable=True)
    expiration_date = Column(Date, nullable=True)

    # References to the hosted patient records
    pet_id = Column(Uuid, nullable=True, index=True)
    appointment_id = Column(Uuid, nullable=True)

    item = relationship("InventoryItem", back_populates="transactions")


class StockAlert(Base, BranchMixin, TimestampMixin):
    __tablename__ = "stock_alerts"

    id = Column(Uuid, primary_key=True, default=uuid4)
    item_id = Column(Uuid, ForeignKey("inventory_items.id"), nullable=False, index=True)

    alert_type = Column(String(20), nullable=False)
    severity = Column(String(20), nullable=False)
    message = Column(String(255), nullable=False)
    current_value = Column(Integer, nullable=False)
    threshold_value = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default="active", index=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_by = Column(Uuid, nullable=True)

    item = relationship("InventoryItem", back_populates="alerts")

from vetcare.database.database import Base
from sqlalchemy import Column, String, Text, JSON, Uuid, Index
from uuid import uuid4
from vetcare.common.mixins import BranchMixin, TimestampMixin
import enum


class AuditAction(enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditEntityType(enum.Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    INVENTORY_ITEM = "inventory_item"
    STOCK_TRANSACTION = "stock_transaction"


class AuditEntry(Base, BranchMixin, TimestampMixin):
    __tablename__ = "audit_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, nullable=False, index=True)

    action = Column(String(20), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Uuid, nullable=False)
    description = Column(Text, nullable=True)

    # Snapshots before/after the change
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

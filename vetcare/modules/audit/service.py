from decimal import Decimal
from typing import Optional, Any
from uuid import UUID
import logging

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session
from sqlalchemy import desc

from vetcare.common.context import ClinicContext
from vetcare.modules.audit.models import AuditEntry, AuditAction, AuditEntityType

logger = logging.getLogger(__name__)


def snapshot(values: Any) -> Optional[dict]:
    """JSON-safe copy of a dict or pydantic model, keeping decimals exact as strings."""
    if values is None:
        return None
    return jsonable_encoder(values, custom_encoder={Decimal: str})


class AuditService:
    """Writes audit entries in the caller's transaction; never commits."""

    def __init__(self, db: Session):
        self.db = db

    def log_action(
        self,
        ctx: ClinicContext,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: UUID,
        description: str,
        old_values: Any = None,
        new_values: Any = None
    ) -> AuditEntry:
        entry = AuditEntry(
            branch_id=ctx.branch_id,
            user_id=ctx.user_id,
            action=action.value,
            entity_type=entity_type.value,
            entity_id=entity_id,
            description=description,
            old_values=snapshot(old_values),
            new_values=snapshot(new_values)
        )
        self.db.add(entry)
        logger.debug(f"Audit {action.value} {entity_type.value} {entity_id}: {description}")
        return entry

    def list_entries(
        self,
        ctx: ClinicContext,
        entity_type: Optional[AuditEntityType] = None,
        entity_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0
    ) -> dict:
        query = self.db.query(AuditEntry).filter(AuditEntry.branch_id == ctx.branch_id)
        if entity_type:
            query = query.filter(AuditEntry.entity_type == entity_type.value)
        if entity_id:
            query = query.filter(AuditEntry.entity_id == entity_id)

        total = query.count()
        entries = query.order_by(desc(AuditEntry.created_at)).offset(offset).limit(limit).all()

        return {
            "entries": entries,
            "total": total,
            "limit": limit,
            "offset": offset
        }

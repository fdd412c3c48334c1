from fastapi import APIRouter, Query
from typing import Optional
from uuid import UUID

from vetcare.core.config import settings
from vetcare.dependencies.dbDependencies import db_dependency
from vetcare.dependencies.clinicDependencies import ClinicContextDep
from vetcare.modules.audit.models import AuditEntityType
from vetcare.modules.audit.schemas import AuditEntryList
from vetcare.modules.audit.service import AuditService

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("/", response_model=AuditEntryList)
def list_audit_entries(
    db: db_dependency,
    ctx: ClinicContextDep,
    entity_type: Optional[AuditEntityType] = Query(None),
    entity_id: Optional[UUID] = Query(None),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0)
):
    """Audit trail of invoice, payment and stock changes for the branch."""
    service = AuditService(db)
    return service.list_entries(ctx, entity_type, entity_id, limit, offset)

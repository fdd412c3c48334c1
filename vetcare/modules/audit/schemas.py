from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime


class AuditEntryOut(BaseModel):
    id: UUID
    branch_id: UUID
    user_id: UUID
    action: str
    entity_type: str
    entity_id: UUID
    description: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditEntryList(BaseModel):
    entries: List[AuditEntryOut]
    total: int
    limit: int
    offset: int

"""
Common mixins for branch-scoped models
"""
from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.sql import func
from uuid import uuid4


class BranchMixin:
    """Mixin for models owned by a clinic branch"""

    branch_id = Column(Uuid, nullable=False, index=True)


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class BaseMixin(BranchMixin, TimestampMixin):
    """Combines branch and timestamp columns for most business models"""

    id = Column(Uuid, primary_key=True, default=uuid4, index=True)

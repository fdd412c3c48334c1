"""
Explicit clinic context passed into every service call.

The hosted auth provider authenticates the user upstream; by the time a
request reaches this service the acting user and branch are plain values.
"""
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class ClinicContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    branch_id: UUID

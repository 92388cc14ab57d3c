from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class TenantMemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TenantMemberCreate(BaseModel):
    user_id: uuid.UUID
    role: str = Field(default="client", min_length=1, max_length=30)


class TenantMemberRoleUpdate(BaseModel):
    role: str = Field(min_length=1, max_length=30)

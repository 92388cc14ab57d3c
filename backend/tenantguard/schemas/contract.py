from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ContractCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class ContractOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    created_by_id: uuid.UUID
    title: str
    status: str
    created_at: datetime

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    principal_id: Optional[uuid.UUID] = None
    tenant_id: Optional[uuid.UUID] = None
    permission: str
    outcome: str
    reason: Optional[str] = None
    path: Optional[str] = None
    occurred_at: datetime

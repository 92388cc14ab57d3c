# tenantguard/crud/user.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tenantguard.auth.cache import PermissionCache
from tenantguard.core.logging import get_logger
from tenantguard.models.user import User

log = get_logger(__name__)


async def set_active_tenant(
    db: AsyncSession,
    cache: PermissionCache,
    user: User,
    tenant_id: Optional[uuid.UUID],
) -> User:
    """
    Persist the user's tenant selection and drop their cached roles.

    Membership in the target tenant is not checked here; resolution does
    that on every guarded call.
    """
    user.active_tenant_id = tenant_id
    db.add(user)
    await db.commit()
    await db.refresh(user)

    cache.invalidate_principal(user.id)
    log.info("user.active_tenant_changed user=%s tenant=%s", user.id, tenant_id)
    return user

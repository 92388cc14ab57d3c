# tenantguard/crud/tenant_membership.py
"""
The membership write path.

Every mutation commits first and then invalidates the permission cache for
the affected principal, so the next resolution observes the new state.
Memberships are never deleted; deactivation flips is_active.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantguard.auth.cache import PermissionCache
from tenantguard.core.errors import MembershipConflict, MembershipNotFound
from tenantguard.core.logging import get_logger
from tenantguard.core.roles import Role, parse_role
from tenantguard.models.tenant_membership import TenantMembership

log = get_logger(__name__)

# Roles a tenant membership may carry. super_admin lives on users.platform_role only.
ASSIGNABLE_ROLES = frozenset({Role.ADMIN, Role.MANAGER, Role.PROVIDER, Role.CLIENT})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _assignable(role: object) -> Role:
    r = parse_role(role)
    if r is None or r not in ASSIGNABLE_ROLES:
        raise ValueError(
            f"Unknown tenant role: {role!r}. Allowed: {sorted(x.value for x in ASSIGNABLE_ROLES)}"
        )
    return r


async def get_membership(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Optional[TenantMembership]:
    stmt = select(TenantMembership).where(
        TenantMembership.tenant_id == tenant_id,
        TenantMembership.user_id == user_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_active_memberships(db: AsyncSession, tenant_id: uuid.UUID) -> list[TenantMembership]:
    stmt = (
        select(TenantMembership)
        .where(TenantMembership.tenant_id == tenant_id)
        .where(TenantMembership.is_active.is_(True))
        .order_by(TenantMembership.created_at)
    )
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def add_membership(
    db: AsyncSession,
    cache: PermissionCache,
    *,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    role: object,
) -> TenantMembership:
    """Invite/join: create the membership, or reactivate a deactivated one."""
    new_role = _assignable(role)

    membership = await get_membership(db, tenant_id, user_id)
    if membership is not None and membership.is_active:
        raise MembershipConflict("User is already an active member of this tenant")

    if membership is None:
        membership = TenantMembership(
            tenant_id=tenant_id,
            user_id=user_id,
            role=new_role.value,
            is_active=True,
        )
        db.add(membership)
    else:
        membership.is_active = True
        membership.role = new_role.value
        membership.updated_at = _utcnow()

    await db.commit()
    await db.refresh(membership)

    cache.invalidate_principal(user_id)
    log.info("membership.added tenant=%s user=%s role=%s", tenant_id, user_id, new_role.value)
    return membership


async def change_role(
    db: AsyncSession,
    cache: PermissionCache,
    *,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
    role: object,
) -> TenantMembership:
    new_role = _assignable(role)

    membership = await get_membership(db, tenant_id, user_id)
    if membership is None or not membership.is_active:
        raise MembershipNotFound("Active membership not found")

    old_role = membership.role
    membership.role = new_role.value
    membership.updated_at = _utcnow()

    await db.commit()
    await db.refresh(membership)

    cache.invalidate_principal(user_id)
    log.info(
        "membership.role_changed tenant=%s user=%s old=%s new=%s",
        tenant_id,
        user_id,
        old_role,
        new_role.value,
    )
    return membership


async def deactivate_membership(
    db: AsyncSession,
    cache: PermissionCache,
    *,
    tenant_id: uuid.UUID,
    user_id: uuid.UUID,
) -> TenantMembership:
    membership = await get_membership(db, tenant_id, user_id)
    if membership is None or not membership.is_active:
        raise MembershipNotFound("Active membership not found")

    membership.is_active = False
    membership.updated_at = _utcnow()

    await db.commit()
    await db.refresh(membership)

    cache.invalidate_principal(user_id)
    log.info("membership.deactivated tenant=%s user=%s", tenant_id, user_id)
    return membership

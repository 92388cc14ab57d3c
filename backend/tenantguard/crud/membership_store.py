# tenantguard/crud/membership_store.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import MultipleResultsFound
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantguard.auth.resolver import MembershipRecord, PrincipalRecord
from tenantguard.core.logging import get_logger
from tenantguard.models.tenant_membership import TenantMembership
from tenantguard.models.user import User

log = get_logger(__name__)


class SqlMembershipStore:
    """
    MembershipStore backed by the users / tenant_memberships tables.

    Each read runs in its own short session so role resolution never joins
    (or waits on) the request's transaction.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def get_principal(self, principal_id: uuid.UUID) -> Optional[PrincipalRecord]:
        async with self._sessionmaker() as session:
            user = await session.get(User, principal_id)
            if user is None:
                return None
            return PrincipalRecord(
                id=user.id,
                email=user.email,
                is_active=bool(user.is_active),
                platform_role=user.platform_role,
                active_tenant_id=user.active_tenant_id,
            )

    async def get_active_membership(
        self,
        principal_id: uuid.UUID,
        tenant_id: uuid.UUID,
    ) -> Optional[MembershipRecord]:
        stmt = select(TenantMembership).where(
            TenantMembership.tenant_id == tenant_id,
            TenantMembership.user_id == principal_id,
            TenantMembership.is_active.is_(True),
        )
        async with self._sessionmaker() as session:
            try:
                membership = (await session.execute(stmt)).scalar_one_or_none()
            except MultipleResultsFound:
                # Should be impossible under uq_tenant_memberships_tenant_user;
                # refuse to pick one.
                log.error(
                    "membership.ambiguous principal=%s tenant=%s",
                    principal_id,
                    tenant_id,
                )
                return None

        if membership is None:
            return None
        return MembershipRecord(
            id=membership.id,
            principal_id=membership.user_id,
            tenant_id=membership.tenant_id,
            role=membership.role,
            is_active=membership.is_active,
            updated_at=membership.updated_at,
        )

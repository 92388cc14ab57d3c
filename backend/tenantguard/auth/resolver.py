from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from tenantguard.auth.permissions import is_permitted, permissions_for, require_cataloged
from tenantguard.core.errors import ResolutionTransportError
from tenantguard.core.logging import get_logger
from tenantguard.core.roles import Role, parse_role

log = get_logger(__name__)


@dataclass(frozen=True)
class PrincipalRecord:
    id: uuid.UUID
    email: Optional[str] = None
    is_active: bool = True
    # users.platform_role; only "super_admin" is honoured
    platform_role: Optional[str] = None
    active_tenant_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class MembershipRecord:
    id: uuid.UUID
    principal_id: uuid.UUID
    tenant_id: uuid.UUID
    role: Optional[str]
    is_active: bool = True
    updated_at: Optional[datetime] = None


class MembershipStore(Protocol):
    async def get_principal(self, principal_id: uuid.UUID) -> Optional[PrincipalRecord]: ...

    async def get_active_membership(
        self, principal_id: uuid.UUID, tenant_id: uuid.UUID
    ) -> Optional[MembershipRecord]: ...


@dataclass(frozen=True)
class ResolvedRole:
    principal_id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    role: Optional[Role]
    membership_id: Optional[uuid.UUID] = None
    is_super_admin: bool = False

    @property
    def permissions(self) -> FrozenSet[str]:
        return permissions_for(self.role)

    def allows(self, permission: str) -> bool:
        require_cataloged((permission,))
        if self.is_super_admin:
            return True
        return is_permitted(self.permissions, permission)


# Store failures that mean "could not ask", as opposed to "asked and got no answer".
TRANSPORT_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError, TimeoutError)


class RoleResolver:
    """
    Resolves the authoritative role of a principal inside one tenant.

    Read-only. Never retries: a store that cannot answer raises
    ResolutionTransportError and the caller denies.
    """

    def __init__(self, store: MembershipStore):
        self._store = store

    async def resolve(
        self,
        principal_id: uuid.UUID,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> ResolvedRole:
        principal = await self._call(self._store.get_principal(principal_id))
        if principal is None or not principal.is_active:
            return ResolvedRole(principal_id=principal_id, tenant_id=None, role=None)

        is_super_admin = parse_role(principal.platform_role) is Role.SUPER_ADMIN

        target = tenant_id or principal.active_tenant_id
        if target is None:
            return ResolvedRole(
                principal_id=principal_id,
                tenant_id=None,
                role=None,
                is_super_admin=is_super_admin,
            )

        membership = await self._call(self._store.get_active_membership(principal_id, target))
        if membership is not None and membership.is_active:
            return ResolvedRole(
                principal_id=principal_id,
                tenant_id=target,
                role=parse_role(membership.role),
                membership_id=membership.id,
                is_super_admin=is_super_admin,
            )

        if is_super_admin:
            return ResolvedRole(
                principal_id=principal_id,
                tenant_id=target,
                role=Role.SUPER_ADMIN,
                is_super_admin=True,
            )

        return ResolvedRole(principal_id=principal_id, tenant_id=target, role=None)

    @staticmethod
    async def _call(awaitable):
        try:
            return await awaitable
        except ResolutionTransportError:
            raise
        except TRANSPORT_ERRORS as exc:
            raise ResolutionTransportError("membership store unavailable") from exc

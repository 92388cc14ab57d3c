from __future__ import annotations

import os
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tenantguard.auth.audit import AuditDispatcher, AuditEvent
from tenantguard.auth.cache import CachedRoleResolver, PermissionCache
from tenantguard.auth.guard import Authorizer, RequestContext
from tenantguard.auth.resolver import MembershipRecord, PrincipalRecord, RoleResolver
from tenantguard.core.config import Settings
from tenantguard.core.security import create_access_token

# Ensure Base + models are registered before create_all
from tenantguard.db.base import Base
import tenantguard.models  # noqa: F401
from tenantguard.models.tenant import Tenant
from tenantguard.models.tenant_membership import TenantMembership
from tenantguard.models.user import User


# ---------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------
class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMembershipStore:
    """MembershipStore over plain dicts, counting round-trips."""

    def __init__(self):
        self.principals: Dict[uuid.UUID, PrincipalRecord] = {}
        self.memberships: Dict[Tuple[uuid.UUID, uuid.UUID], MembershipRecord] = {}
        self.calls: List[str] = []
        self.fail_with: Optional[BaseException] = None

    def add_principal(
        self,
        principal_id: Optional[uuid.UUID] = None,
        *,
        platform_role: Optional[str] = None,
        active_tenant_id: Optional[uuid.UUID] = None,
        is_active: bool = True,
    ) -> uuid.UUID:
        pid = principal_id or uuid.uuid4()
        self.principals[pid] = PrincipalRecord(
            id=pid,
            email=f"{pid.hex[:8]}@example.com",
            is_active=is_active,
            platform_role=platform_role,
            active_tenant_id=active_tenant_id,
        )
        return pid

    def set_membership(self, principal_id: uuid.UUID, tenant_id: uuid.UUID, role: str, is_active: bool = True) -> None:
        existing = self.memberships.get((principal_id, tenant_id))
        self.memberships[(principal_id, tenant_id)] = MembershipRecord(
            id=existing.id if existing else uuid.uuid4(),
            principal_id=principal_id,
            tenant_id=tenant_id,
            role=role,
            is_active=is_active,
        )

    def select_tenant(self, principal_id: uuid.UUID, tenant_id: Optional[uuid.UUID]) -> None:
        self.principals[principal_id] = replace(self.principals[principal_id], active_tenant_id=tenant_id)

    async def get_principal(self, principal_id):
        self.calls.append("get_principal")
        if self.fail_with is not None:
            raise self.fail_with
        return self.principals.get(principal_id)

    async def get_active_membership(self, principal_id, tenant_id):
        self.calls.append("get_active_membership")
        if self.fail_with is not None:
            raise self.fail_with
        m = self.memberships.get((principal_id, tenant_id))
        if m is None or not m.is_active:
            return None
        return m


class RecordingAuditSink:
    def __init__(self):
        self.events: List[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.events.append(event)


class FailingAuditSink:
    def __init__(self):
        self.attempts = 0

    async def write(self, event: AuditEvent) -> None:
        self.attempts += 1
        raise ConnectionError("audit store down")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> FakeMembershipStore:
    return FakeMembershipStore()


@pytest.fixture()
def cache(clock) -> PermissionCache:
    c = PermissionCache(ttl_seconds=300, clock=clock)
    yield c
    c.clear()


@pytest.fixture()
def cached_resolver(store, cache) -> CachedRoleResolver:
    return CachedRoleResolver(RoleResolver(store), cache)


@pytest.fixture()
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture()
def authorizer(cached_resolver, audit_sink) -> Authorizer:
    return Authorizer(cached_resolver, AuditDispatcher(audit_sink))


@pytest.fixture()
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


def ctx_for(principal_id: Optional[uuid.UUID], tenant_id: Optional[uuid.UUID] = None) -> RequestContext:
    return RequestContext(principal_id=principal_id, tenant_id=tenant_id, path="/test")


# ---------------------------------------------------------
# Database (one SQLite file per test)
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db(sessionmaker):
    """
    Session for test setup & assertions ONLY.
    """
    async with sessionmaker() as session:
        yield session
        await session.rollback()


async def create_tenant(db, name: Optional[str] = None) -> Tenant:
    tenant = Tenant(name=name or f"Test Tenant {uuid.uuid4().hex[:8]}", is_active=True)
    db.add(tenant)
    await db.flush()
    return tenant


async def create_user(db, email: str, *, platform_role: Optional[str] = None, active_tenant_id=None) -> User:
    user = User(
        email=User.normalize_email(email),
        is_active=True,
        platform_role=platform_role,
        active_tenant_id=active_tenant_id,
    )
    db.add(user)
    await db.flush()
    return user


async def add_membership(db, tenant_id: uuid.UUID, user_id: uuid.UUID, role: str, is_active: bool = True):
    m = TenantMembership(tenant_id=tenant_id, user_id=user_id, role=role, is_active=is_active)
    db.add(m)
    await db.flush()
    return m


# ---------------------------------------------------------
# FastAPI app + HTTP client
# ---------------------------------------------------------
@pytest.fixture()
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL_ASYNC="sqlite+aiosqlite:///:memory:",
        RBAC_AUDIT_SINK="database",
    )


@pytest.fixture()
def app(settings, sessionmaker):
    from tenantguard.main import create_application

    return create_application(settings, sessionmaker=sessionmaker)


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
    if app.state.audit is not None:
        await app.state.audit.drain()


def auth_headers(user_id: uuid.UUID, tenant_id: Optional[uuid.UUID] = None, *, settings: Settings) -> dict:
    headers = {"Authorization": f"Bearer {create_access_token(str(user_id), config=settings)}"}
    if tenant_id is not None:
        headers["X-Tenant-Id"] = str(tenant_id)
    return headers

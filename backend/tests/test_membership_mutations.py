# tests/test_membership_mutations.py
from __future__ import annotations

import pytest

from conftest import add_membership, create_tenant, create_user
from tenantguard.auth.cache import CachedRoleResolver, PermissionCache
from tenantguard.auth.resolver import RoleResolver
from tenantguard.core.errors import MembershipConflict, MembershipNotFound
from tenantguard.core.roles import Role
from tenantguard.crud import tenant_membership as crud
from tenantguard.crud.membership_store import SqlMembershipStore
from tenantguard.crud.user import set_active_tenant


@pytest.fixture()
def sql_cache(clock) -> PermissionCache:
    return PermissionCache(ttl_seconds=300, clock=clock)


@pytest.fixture()
def sql_resolver(sessionmaker, sql_cache) -> CachedRoleResolver:
    return CachedRoleResolver(RoleResolver(SqlMembershipStore(sessionmaker)), sql_cache)


@pytest.mark.asyncio
async def test_store_reads_principal_and_membership(db, sessionmaker):
    tenant = await create_tenant(db)
    user = await create_user(db, "Reader@Example.com", active_tenant_id=tenant.id)
    m = await add_membership(db, tenant.id, user.id, "provider")
    await db.commit()

    store = SqlMembershipStore(sessionmaker)

    principal = await store.get_principal(user.id)
    assert principal.email == "reader@example.com"
    assert principal.active_tenant_id == tenant.id

    record = await store.get_active_membership(user.id, tenant.id)
    assert record.id == m.id
    assert record.role == "provider"


@pytest.mark.asyncio
async def test_role_change_is_visible_on_next_resolution(db, sql_resolver, sql_cache):
    tenant = await create_tenant(db)
    user = await create_user(db, "promote@example.com")
    await add_membership(db, tenant.id, user.id, "client")
    await db.commit()

    assert (await sql_resolver.resolve(user.id, tenant.id)).role is Role.CLIENT
    assert len(sql_cache) == 1

    await crud.change_role(db, sql_cache, tenant_id=tenant.id, user_id=user.id, role="Admin")

    assert len(sql_cache) == 0
    resolved = await sql_resolver.resolve(user.id, tenant.id)
    assert resolved.role is Role.ADMIN
    assert resolved.allows("members:manage:company")


@pytest.mark.asyncio
async def test_deactivation_revokes_immediately(db, sql_resolver, sql_cache):
    tenant = await create_tenant(db)
    user = await create_user(db, "leaver@example.com")
    await add_membership(db, tenant.id, user.id, "manager")
    await db.commit()

    assert (await sql_resolver.resolve(user.id, tenant.id)).role is Role.MANAGER

    m = await crud.deactivate_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id)

    assert m.is_active is False
    assert (await sql_resolver.resolve(user.id, tenant.id)).role is None

    with pytest.raises(MembershipNotFound):
        await crud.deactivate_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id)


@pytest.mark.asyncio
async def test_add_creates_then_reactivates_the_same_row(db, sql_resolver, sql_cache):
    tenant = await create_tenant(db)
    user = await create_user(db, "joiner@example.com")
    await db.commit()

    assert (await sql_resolver.resolve(user.id, tenant.id)).role is None

    first = await crud.add_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id, role="provider")
    assert (await sql_resolver.resolve(user.id, tenant.id)).role is Role.PROVIDER

    with pytest.raises(MembershipConflict):
        await crud.add_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id, role="client")

    await crud.deactivate_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id)
    again = await crud.add_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id, role="client")

    assert again.id == first.id
    assert again.is_active is True
    assert (await sql_resolver.resolve(user.id, tenant.id)).role is Role.CLIENT


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["super_admin", "owner", ""])
async def test_unassignable_roles_are_rejected(db, sql_cache, role):
    tenant = await create_tenant(db)
    user = await create_user(db, f"bad-{role or 'empty'}@example.com")
    await db.commit()

    with pytest.raises(ValueError):
        await crud.add_membership(db, sql_cache, tenant_id=tenant.id, user_id=user.id, role=role)


@pytest.mark.asyncio
async def test_change_role_requires_active_membership(db, sql_cache):
    tenant = await create_tenant(db)
    user = await create_user(db, "ghost@example.com")
    await add_membership(db, tenant.id, user.id, "client", is_active=False)
    await db.commit()

    with pytest.raises(MembershipNotFound):
        await crud.change_role(db, sql_cache, tenant_id=tenant.id, user_id=user.id, role="admin")


@pytest.mark.asyncio
async def test_mutation_invalidates_only_the_affected_principal(db, sql_resolver, sql_cache):
    tenant = await create_tenant(db)
    a = await create_user(db, "a@example.com")
    b = await create_user(db, "b@example.com")
    await add_membership(db, tenant.id, a.id, "client")
    await add_membership(db, tenant.id, b.id, "client")
    await db.commit()

    await sql_resolver.resolve(a.id, tenant.id)
    await sql_resolver.resolve(b.id, tenant.id)

    await crud.change_role(db, sql_cache, tenant_id=tenant.id, user_id=a.id, role="manager")

    assert sql_cache.get((a.id, tenant.id)) is None
    assert sql_cache.get((b.id, tenant.id)) is not None


@pytest.mark.asyncio
async def test_switching_active_tenant_changes_resolution(db, sql_resolver, sql_cache):
    first = await create_tenant(db)
    second = await create_tenant(db)
    user = await create_user(db, "switcher@example.com", active_tenant_id=first.id)
    await add_membership(db, first.id, user.id, "admin")
    await add_membership(db, second.id, user.id, "client")
    await db.commit()

    resolved = await sql_resolver.resolve(user.id)
    assert (resolved.tenant_id, resolved.role) == (first.id, Role.ADMIN)

    await set_active_tenant(db, sql_cache, user, second.id)

    resolved = await sql_resolver.resolve(user.id)
    assert (resolved.tenant_id, resolved.role) == (second.id, Role.CLIENT)


@pytest.mark.asyncio
async def test_list_active_memberships_skips_deactivated(db):
    tenant = await create_tenant(db)
    active = await create_user(db, "active@example.com")
    gone = await create_user(db, "gone@example.com")
    await add_membership(db, tenant.id, active.id, "client")
    await add_membership(db, tenant.id, gone.id, "client", is_active=False)
    await db.commit()

    rows = await crud.list_active_memberships(db, tenant.id)

    assert [r.user_id for r in rows] == [active.id]

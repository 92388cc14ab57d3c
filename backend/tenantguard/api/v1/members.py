# tenantguard/api/v1/members.py
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenantguard.api.deps.context import get_permission_cache, get_request_context, require_tenant_id
from tenantguard.auth.cache import PermissionCache
from tenantguard.auth.guard import Authorizer, RequestContext
from tenantguard.auth.permissions import PERM
from tenantguard.core.errors import MembershipConflict, MembershipNotFound
from tenantguard.crud import tenant_membership as crud
from tenantguard.db.session import get_db
from tenantguard.models.user import User
from tenantguard.schemas.tenant_membership import (
    TenantMemberCreate,
    TenantMemberOut,
    TenantMemberRoleUpdate,
)


def build_router(authorizer: Authorizer) -> APIRouter:
    router = APIRouter(prefix="/members", tags=["members"])

    @router.get("", response_model=List[TenantMemberOut])
    @authorizer.guard(PERM.MEMBERS_READ_COMPANY)
    async def list_members(
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ):
        return await crud.list_active_memberships(db, require_tenant_id(ctx))

    @router.post("", response_model=TenantMemberOut, status_code=status.HTTP_201_CREATED)
    @authorizer.guard(PERM.MEMBERS_MANAGE_COMPANY)
    async def add_member(
        payload: TenantMemberCreate,
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
        cache: PermissionCache = Depends(get_permission_cache),
    ):
        tenant_id = require_tenant_id(ctx)

        if await db.get(User, payload.user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        try:
            return await crud.add_membership(
                db, cache, tenant_id=tenant_id, user_id=payload.user_id, role=payload.role
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except MembershipConflict as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    @router.patch("/{user_id}", response_model=TenantMemberOut)
    @authorizer.guard(PERM.MEMBERS_MANAGE_COMPANY)
    async def change_member_role(
        user_id: uuid.UUID,
        payload: TenantMemberRoleUpdate,
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
        cache: PermissionCache = Depends(get_permission_cache),
    ):
        try:
            return await crud.change_role(
                db, cache, tenant_id=require_tenant_id(ctx), user_id=user_id, role=payload.role
            )
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except MembershipNotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.post("/{user_id}/deactivate", response_model=TenantMemberOut)
    @authorizer.guard(PERM.MEMBERS_MANAGE_COMPANY)
    async def deactivate_member(
        user_id: uuid.UUID,
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
        cache: PermissionCache = Depends(get_permission_cache),
    ):
        if user_id == ctx.principal_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You cannot deactivate your own membership",
            )
        try:
            return await crud.deactivate_membership(
                db, cache, tenant_id=require_tenant_id(ctx), user_id=user_id
            )
        except MembershipNotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return router

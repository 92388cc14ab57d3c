# tenantguard/api/v1/companies.py
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenantguard.api.deps.context import get_request_context, require_tenant_id
from tenantguard.auth.guard import Authorizer, RequestContext
from tenantguard.auth.permissions import PERM
from tenantguard.db.session import get_db
from tenantguard.models.tenant import Tenant
from tenantguard.schemas.tenant import TenantOut, TenantUpdate


def build_router(authorizer: Authorizer) -> APIRouter:
    router = APIRouter(prefix="/companies", tags=["companies"])

    async def _load(db: AsyncSession, ctx: RequestContext) -> Tenant:
        tenant = await db.get(Tenant, require_tenant_id(ctx))
        if tenant is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
        return tenant

    @router.get("/current", response_model=TenantOut)
    @authorizer.guard(PERM.COMPANY_READ_OWN)
    async def get_current_company(
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ):
        return await _load(db, ctx)

    @router.patch("/current", response_model=TenantOut)
    @authorizer.guard(PERM.COMPANY_MANAGE_ALL)
    async def update_current_company(
        payload: TenantUpdate,
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ):
        tenant = await _load(db, ctx)
        tenant.name = payload.name
        await db.commit()
        await db.refresh(tenant)
        return tenant

    return router

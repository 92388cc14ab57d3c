# tenantguard/api/v1/audit_logs.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tenantguard.api.deps.context import get_request_context, require_tenant_id
from tenantguard.auth.guard import Authorizer, RequestContext
from tenantguard.auth.permissions import PERM
from tenantguard.db.session import get_db
from tenantguard.models.audit_log import AuditLog
from tenantguard.schemas.audit_log import AuditLogOut


def build_router(authorizer: Authorizer) -> APIRouter:
    router = APIRouter(prefix="/audit-logs", tags=["audit"])

    @router.get("", response_model=List[AuditLogOut])
    @authorizer.guard(PERM.AUDIT_READ_COMPANY)
    async def list_audit_logs(
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
        limit: int = Query(default=100, ge=1, le=500),
    ):
        stmt = (
            select(AuditLog)
            .where(AuditLog.tenant_id == require_tenant_id(ctx))
            .order_by(AuditLog.occurred_at.desc())
            .limit(limit)
        )
        res = await db.execute(stmt)
        return list(res.scalars().all())

    return router

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials

from tenantguard.auth.cache import PermissionCache
from tenantguard.auth.guard import RequestContext
from tenantguard.core.security import bearer_scheme, decode_access_token


def _parse_tenant_header(x_tenant_id: Optional[str]) -> Optional[uuid.UUID]:
    if not x_tenant_id or not x_tenant_id.strip():
        return None
    try:
        return uuid.UUID(x_tenant_id.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="X-Tenant-Id must be a valid UUID",
        )


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _principal_from_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[uuid.UUID]:
    if credentials is None:
        return None
    sub = decode_access_token(credentials.credentials, config=request.app.state.settings)
    if sub is None:
        return None
    try:
        return uuid.UUID(sub)
    except ValueError:
        return None


async def get_request_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
) -> RequestContext:
    """
    Who is calling and which tenant they asked for.

    Never rejects a missing/invalid token itself: an anonymous context reaches
    the guard, which is the one place that answers 401.
    """
    return RequestContext(
        principal_id=_principal_from_token(request, credentials),
        tenant_id=_parse_tenant_header(x_tenant_id),
        path=request.url.path,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_permission_cache(request: Request) -> PermissionCache:
    return request.app.state.permission_cache


def require_tenant_id(ctx: RequestContext) -> uuid.UUID:
    """
    Tenant a guarded operation must scope its queries to.

    Only platform super admins can pass the guard without one; they must name
    a tenant explicitly for tenant-scoped data.
    """
    authz = ctx.authorization
    if authz is None or authz.tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-Id header is required",
        )
    return authz.tenant_id

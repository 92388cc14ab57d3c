import asyncio
import contextlib
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantguard.core.config import Settings, settings as default_settings
import tenantguard.models  # noqa: F401  # force model registration

from tenantguard.api.v1 import audit_logs, companies, contracts, members
from tenantguard.auth.audit import AuditDispatcher, AuditSink, LoggingAuditSink, SqlAuditSink
from tenantguard.auth.cache import CachedRoleResolver, PermissionCache
from tenantguard.auth.guard import Authorizer
from tenantguard.auth.resolver import MembershipStore, RoleResolver
from tenantguard.core.errors import AuthorizationError
from tenantguard.core.logging import configure_logging, get_logger
from tenantguard.crud.membership_store import SqlMembershipStore
from tenantguard.db.session import build_engine, build_sessionmaker

log = get_logger(__name__)

# Bodies are fixed per status: nothing about roles or permissions leaves the server.
DENIAL_BODIES = {
    401: {"success": False, "error": "Authentication required"},
    403: {"success": False, "error": "Access denied"},
}


async def authorization_error_handler(_request: Request, exc: AuthorizationError) -> JSONResponse:
    status_code = 401 if exc.http_status == 401 else 403
    return JSONResponse(status_code=status_code, content=DENIAL_BODIES[status_code])


def _build_audit(
    config: Settings,
    sessionmaker: async_sessionmaker[AsyncSession],
    sink: Optional[AuditSink],
) -> Optional[AuditDispatcher]:
    if not config.RBAC_AUDIT_ENABLED:
        return None
    if sink is None:
        sink = SqlAuditSink(sessionmaker) if config.RBAC_AUDIT_SINK == "database" else LoggingAuditSink()
    return AuditDispatcher(sink, max_pending=config.RBAC_AUDIT_MAX_PENDING)


def create_application(
    config: Optional[Settings] = None,
    *,
    sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
    store: Optional[MembershipStore] = None,
    audit_sink: Optional[AuditSink] = None,
    permission_cache: Optional[PermissionCache] = None,
) -> FastAPI:
    config = config or default_settings
    configure_logging(config.LOG_LEVEL)

    if sessionmaker is None:
        sessionmaker = build_sessionmaker(build_engine(config))

    cache = permission_cache or PermissionCache(
        ttl_seconds=config.RBAC_CACHE_TTL_SECONDS,
        max_size=config.RBAC_CACHE_MAX_SIZE,
    )
    resolver = CachedRoleResolver(RoleResolver(store or SqlMembershipStore(sessionmaker)), cache)
    audit = _build_audit(config, sessionmaker, audit_sink)
    authorizer = Authorizer(resolver, audit)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(cache.run_sweeper(config.RBAC_CACHE_SWEEP_SECONDS))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
            if audit is not None:
                await audit.drain()

    app = FastAPI(title="tenantguard API", lifespan=lifespan)

    app.state.settings = config
    app.state.sessionmaker = sessionmaker
    app.state.permission_cache = cache
    app.state.authorizer = authorizer
    app.state.audit = audit

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AuthorizationError, authorization_error_handler)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "tenantguard"}

    # Routers
    app.include_router(contracts.build_router(authorizer), prefix="/api/v1")
    app.include_router(companies.build_router(authorizer), prefix="/api/v1")
    app.include_router(members.build_router(authorizer), prefix="/api/v1")
    app.include_router(audit_logs.build_router(authorizer), prefix="/api/v1")

    log.info(
        "app.created environment=%s cache_ttl=%s audit=%s guarded_permissions=%s",
        config.ENVIRONMENT,
        config.RBAC_CACHE_TTL_SECONDS,
        config.RBAC_AUDIT_SINK if audit else "disabled",
        len(authorizer.registered_permissions),
    )
    return app


app = create_application()

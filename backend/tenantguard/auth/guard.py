"""
The single enforcement point for privileged operations.

    authorizer = Authorizer(CachedRoleResolver(RoleResolver(store), PermissionCache()))

    @authorizer.guard("contracts:read:own")
    async def list_contracts(ctx: RequestContext, ...):
        ctx.authorization.tenant_id   # tenant to scope queries to

The guarded handler keeps its call signature. The RequestContext it receives
is the caller's, with `authorization` filled in. Denials raise an
AuthorizationError subclass; the HTTP layer renders 401/403 with a generic body.
"""

from __future__ import annotations

import dataclasses
import enum
import functools
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Set, Tuple, TypeVar, Union

from tenantguard.auth.audit import AuditDispatcher, AuditEvent
from tenantguard.auth.cache import CachedRoleResolver
from tenantguard.auth.permissions import is_permitted, require_cataloged
from tenantguard.auth.resolver import ResolvedRole
from tenantguard.core.errors import (
    DENIAL_ERRORS,
    CatalogMisconfiguration,
    DenialCategory,
    ResolutionTransportError,
)
from tenantguard.core.logging import get_logger

log = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])
Required = Union[str, Sequence[str]]


class GuardState(str, enum.Enum):
    UNCHECKED = "UNCHECKED"
    AUTHENTICATING = "AUTHENTICATING"
    AUTHENTICATED = "AUTHENTICATED"
    ANONYMOUS = "ANONYMOUS"
    RESOLVING_ROLE = "RESOLVING_ROLE"
    RESOLVED = "RESOLVED"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    CHECKING_PERMISSION = "CHECKING_PERMISSION"
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


@dataclass(frozen=True)
class RequestContext:
    principal_id: Optional[uuid.UUID] = None
    # explicit tenant (X-Tenant-Id); None means "use the active tenant selection"
    tenant_id: Optional[uuid.UUID] = None
    path: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    authorization: Optional[ResolvedRole] = None


@dataclass(frozen=True)
class Decision:
    state: GuardState
    permission: str
    category: Optional[DenialCategory] = None
    authorization: Optional[ResolvedRole] = None
    matched: Optional[str] = None
    # trail of states visited, UNCHECKED first
    trail: Tuple[GuardState, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.ALLOWED

    @property
    def reason(self) -> str:
        if self.allowed:
            return "platform_super_role" if self.matched is None else "granted"
        return (self.category or DenialCategory.PERMISSION_DENIED).value


def _normalize_required(required: Required) -> Tuple[str, ...]:
    if isinstance(required, str):
        return (required,)
    keys = tuple(required)
    if not keys:
        raise CatalogMisconfiguration("guard requires at least one permission")
    return keys


def _find_context(args: tuple, kwargs: dict) -> Tuple[Optional[RequestContext], Optional[Union[int, str]]]:
    for i, arg in enumerate(args):
        if isinstance(arg, RequestContext):
            return arg, i
    for name, value in kwargs.items():
        if isinstance(value, RequestContext):
            return value, name
    return None, None


class Authorizer:
    def __init__(
        self,
        resolver: CachedRoleResolver,
        audit: Optional[AuditDispatcher] = None,
    ):
        self.resolver = resolver
        self.audit = audit
        self.registered_permissions: Set[str] = set()

    # ------------------------------------------------------------------
    # Wrapping
    # ------------------------------------------------------------------
    def guard(
        self,
        required: Required,
        handler: Optional[F] = None,
        *,
        require_all: bool = False,
    ):
        """
        guard(permission, handler) -> handler'

        `required` is one key or a list; a list passes if ANY key is granted
        unless `require_all` is set. Without `handler` this returns a decorator.
        """
        keys = _normalize_required(required)
        require_cataloged(keys)
        self.registered_permissions.update(keys)

        def decorate(fn: F) -> F:
            @functools.wraps(fn)
            async def guarded(*args, **kwargs):
                ctx, slot = _find_context(args, kwargs)
                decision = await self.authorize(ctx, keys, require_all=require_all)
                if not decision.allowed:
                    raise DENIAL_ERRORS[decision.category]()

                enriched = dataclasses.replace(ctx, authorization=decision.authorization)
                if isinstance(slot, int):
                    args = args[:slot] + (enriched,) + args[slot + 1:]
                else:
                    kwargs[slot] = enriched
                return await fn(*args, **kwargs)

            guarded.required_permissions = keys  # type: ignore[attr-defined]
            return guarded  # type: ignore[return-value]

        if handler is not None:
            return decorate(handler)
        return decorate

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------
    async def authorize(
        self,
        ctx: Optional[RequestContext],
        required: Required,
        *,
        require_all: bool = False,
    ) -> Decision:
        """
        Decide without calling a handler. A key outside the catalog raises
        CatalogMisconfiguration before anything is resolved.
        """
        keys = _normalize_required(required)
        require_cataloged(keys)
        label = (" AND " if require_all else " OR ").join(keys)
        trail = [GuardState.UNCHECKED, GuardState.AUTHENTICATING]

        if ctx is None or ctx.principal_id is None:
            trail += [GuardState.ANONYMOUS, GuardState.DENIED]
            return self._finish(ctx, label, trail, category=DenialCategory.AUTHENTICATION_MISSING)

        trail += [GuardState.AUTHENTICATED, GuardState.RESOLVING_ROLE]
        try:
            resolved = await self.resolver.resolve(ctx.principal_id, ctx.tenant_id)
        except ResolutionTransportError as exc:
            trail += [GuardState.RESOLUTION_FAILED, GuardState.DENIED]
            log.error(
                "authz.resolution_failed category=%s principal=%s tenant=%s permission=%s error=%r",
                DenialCategory.RESOLUTION_TRANSPORT_ERROR.value,
                ctx.principal_id,
                ctx.tenant_id,
                label,
                exc.__cause__ or exc,
            )
            return self._finish(ctx, label, trail, category=DenialCategory.RESOLUTION_TRANSPORT_ERROR)
        except Exception:
            trail += [GuardState.RESOLUTION_FAILED, GuardState.DENIED]
            log.exception(
                "authz.resolution_failed category=%s principal=%s tenant=%s permission=%s",
                DenialCategory.RESOLUTION_TRANSPORT_ERROR.value,
                ctx.principal_id,
                ctx.tenant_id,
                label,
            )
            return self._finish(ctx, label, trail, category=DenialCategory.RESOLUTION_TRANSPORT_ERROR)

        trail += [GuardState.RESOLVED, GuardState.CHECKING_PERMISSION]

        if resolved.is_super_admin:
            trail.append(GuardState.ALLOWED)
            return self._finish(ctx, label, trail, authorization=resolved)

        if resolved.tenant_id is None:
            trail.append(GuardState.DENIED)
            return self._finish(
                ctx, label, trail, category=DenialCategory.TENANT_UNRESOLVED, authorization=resolved
            )

        grants = resolved.permissions
        granted = [k for k in keys if is_permitted(grants, k)]
        ok = len(granted) == len(keys) if require_all else bool(granted)

        if not ok:
            trail.append(GuardState.DENIED)
            return self._finish(
                ctx, label, trail, category=DenialCategory.PERMISSION_DENIED, authorization=resolved
            )

        trail.append(GuardState.ALLOWED)
        return self._finish(ctx, label, trail, authorization=resolved, matched=granted[0])

    def _finish(
        self,
        ctx: Optional[RequestContext],
        label: str,
        trail: list,
        *,
        category: Optional[DenialCategory] = None,
        authorization: Optional[ResolvedRole] = None,
        matched: Optional[str] = None,
    ) -> Decision:
        decision = Decision(
            state=trail[-1],
            permission=label,
            category=category,
            authorization=authorization,
            matched=matched,
            trail=tuple(trail),
        )

        principal_id = ctx.principal_id if ctx else None
        tenant_id = authorization.tenant_id if authorization else (ctx.tenant_id if ctx else None)

        if decision.allowed:
            log.debug(
                "authz.allowed principal=%s tenant=%s permission=%s reason=%s",
                principal_id,
                tenant_id,
                label,
                decision.reason,
            )
        elif category is not DenialCategory.RESOLUTION_TRANSPORT_ERROR:
            log.info(
                "authz.denied category=%s principal=%s tenant=%s permission=%s role=%s",
                decision.reason,
                principal_id,
                tenant_id,
                label,
                authorization.role.value if authorization and authorization.role else None,
            )

        if self.audit is not None:
            self.audit.emit(
                AuditEvent(
                    principal_id=principal_id,
                    tenant_id=tenant_id,
                    permission=label,
                    outcome="allow" if decision.allowed else "deny",
                    reason=decision.reason,
                    path=ctx.path if ctx else None,
                    ip_address=ctx.ip_address if ctx else None,
                    user_agent=ctx.user_agent if ctx else None,
                )
            )

        return decision

from __future__ import annotations

import enum


class DenialCategory(str, enum.Enum):
    AUTHENTICATION_MISSING = "authentication_missing"
    TENANT_UNRESOLVED = "tenant_unresolved"
    RESOLUTION_TRANSPORT_ERROR = "resolution_transport_error"
    PERMISSION_DENIED = "permission_denied"


class AuthorizationError(Exception):
    """
    Base for every guard denial.

    `message` is what the client sees and is deliberately generic; the
    category is for logs and audit only.
    """

    category: DenialCategory = DenialCategory.PERMISSION_DENIED

    def __init__(self, message: str = "Access denied", *, http_status: int = 403):
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class AuthenticationMissing(AuthorizationError):
    category = DenialCategory.AUTHENTICATION_MISSING

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, http_status=401)


class TenantUnresolved(AuthorizationError):
    category = DenialCategory.TENANT_UNRESOLVED


class ResolutionTransportError(AuthorizationError):
    """The membership store could not be reached (or timed out)."""

    category = DenialCategory.RESOLUTION_TRANSPORT_ERROR


class PermissionDenied(AuthorizationError):
    category = DenialCategory.PERMISSION_DENIED


DENIAL_ERRORS: dict[DenialCategory, type[AuthorizationError]] = {
    DenialCategory.AUTHENTICATION_MISSING: AuthenticationMissing,
    DenialCategory.TENANT_UNRESOLVED: TenantUnresolved,
    DenialCategory.RESOLUTION_TRANSPORT_ERROR: ResolutionTransportError,
    DenialCategory.PERMISSION_DENIED: PermissionDenied,
}


class CatalogMisconfiguration(RuntimeError):
    """A guarded operation requires a permission no role is ever granted."""


class MembershipConflict(Exception):
    pass


class MembershipNotFound(Exception):
    pass

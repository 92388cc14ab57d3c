from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from tenantguard.core.errors import CatalogMisconfiguration
from tenantguard.core.logging import get_logger
from tenantguard.core.roles import Role, ancestors, parse_role

log = get_logger(__name__)

SCOPE_OWN = "own"
SCOPE_COMPANY = "company"
SCOPE_ALL = "all"

# A grant at a broader scope satisfies a requirement at a narrower one.
SCOPE_LEVEL: Mapping[str, int] = {
    SCOPE_OWN: 1,
    SCOPE_COMPANY: 2,
    SCOPE_ALL: 3,
}


@dataclass(frozen=True)
class Permission:
    # contracts:*
    CONTRACTS_READ_OWN: str = "contracts:read:own"
    CONTRACTS_READ_COMPANY: str = "contracts:read:company"
    CONTRACTS_CREATE_OWN: str = "contracts:create:own"
    CONTRACTS_UPDATE_OWN: str = "contracts:update:own"
    CONTRACTS_UPDATE_COMPANY: str = "contracts:update:company"
    CONTRACTS_APPROVE_COMPANY: str = "contracts:approve:company"
    CONTRACTS_DELETE_COMPANY: str = "contracts:delete:company"

    # workforce:* (promoter / employee records)
    WORKFORCE_READ_OWN: str = "workforce:read:own"
    WORKFORCE_READ_COMPANY: str = "workforce:read:company"
    WORKFORCE_MANAGE_COMPANY: str = "workforce:manage:company"

    # documents:*
    DOCUMENTS_GENERATE_OWN: str = "documents:generate:own"
    DOCUMENTS_GENERATE_COMPANY: str = "documents:generate:company"

    # members:*
    MEMBERS_READ_COMPANY: str = "members:read:company"
    MEMBERS_MANAGE_COMPANY: str = "members:manage:company"

    # company:*
    COMPANY_READ_OWN: str = "company:read:own"
    COMPANY_MANAGE_ALL: str = "company:manage:all"

    # profile:*
    PROFILE_UPDATE_OWN: str = "profile:update:own"

    # audit:*
    AUDIT_READ_COMPANY: str = "audit:read:company"
    AUDIT_READ_ALL: str = "audit:read:all"


PERM = Permission()

# Grants each role adds on top of the role it inherits from (core.roles.ROLE_INHERITS).
_ROLE_OWN_GRANTS: Mapping[Role, FrozenSet[str]] = {
    Role.CLIENT: frozenset(
        {
            PERM.CONTRACTS_READ_OWN,
            PERM.CONTRACTS_CREATE_OWN,
            PERM.COMPANY_READ_OWN,
            PERM.PROFILE_UPDATE_OWN,
        }
    ),
    Role.PROVIDER: frozenset(
        {
            PERM.CONTRACTS_UPDATE_OWN,
            PERM.WORKFORCE_READ_OWN,
            PERM.DOCUMENTS_GENERATE_OWN,
        }
    ),
    Role.MANAGER: frozenset(
        {
            PERM.CONTRACTS_READ_COMPANY,
            PERM.CONTRACTS_UPDATE_COMPANY,
            PERM.CONTRACTS_APPROVE_COMPANY,
            PERM.WORKFORCE_READ_COMPANY,
            PERM.WORKFORCE_MANAGE_COMPANY,
            PERM.DOCUMENTS_GENERATE_COMPANY,
            PERM.MEMBERS_READ_COMPANY,
        }
    ),
    Role.ADMIN: frozenset(
        {
            PERM.CONTRACTS_DELETE_COMPANY,
            PERM.MEMBERS_MANAGE_COMPANY,
            PERM.COMPANY_MANAGE_ALL,
            PERM.AUDIT_READ_COMPANY,
        }
    ),
    Role.SUPER_ADMIN: frozenset(
        {
            PERM.AUDIT_READ_ALL,
        }
    ),
}


def _expand_grants() -> Dict[Role, FrozenSet[str]]:
    expanded: Dict[Role, FrozenSet[str]] = {}
    for role in Role:
        grants = set(_ROLE_OWN_GRANTS.get(role, frozenset()))
        for parent in ancestors(role):
            grants |= _ROLE_OWN_GRANTS.get(parent, frozenset())
        expanded[role] = frozenset(grants)
    return expanded


ROLE_PERMISSIONS: Mapping[Role, FrozenSet[str]] = _expand_grants()


@dataclass(frozen=True)
class ParsedPermission:
    resource: str
    action: str
    scope: str

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}:{self.scope}"


def parse_permission(key: object) -> Optional[ParsedPermission]:
    if not isinstance(key, str):
        return None
    parts = key.strip().split(":")
    if len(parts) != 3:
        return None
    resource, action, scope = (p.strip().lower() for p in parts)
    if not resource or not action or scope not in SCOPE_LEVEL:
        return None
    return ParsedPermission(resource=resource, action=action, scope=scope)


def permissions_for(role: object) -> FrozenSet[str]:
    r = parse_role(role)
    if r is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(r, frozenset())


def is_permitted(grants: Iterable[str], required: str) -> bool:
    """
    Exact match, or a grant on the same resource/action at a broader scope
    (`contracts:read:company` satisfies `contracts:read:own`).
    """
    need = parse_permission(required)
    if need is None:
        return False

    for grant in grants:
        have = parse_permission(grant)
        if have is None:
            continue
        if have.resource != need.resource or have.action != need.action:
            continue
        if SCOPE_LEVEL[have.scope] >= SCOPE_LEVEL[need.scope]:
            return True
    return False


_CATALOG: FrozenSet[str] = frozenset().union(*ROLE_PERMISSIONS.values())


def catalog_permissions() -> FrozenSet[str]:
    return _CATALOG


def is_cataloged(key: str) -> bool:
    parsed = parse_permission(key)
    if parsed is None:
        return False
    return parsed.key in catalog_permissions()


def validate_catalog(required: Iterable[str]) -> list[str]:
    """Return the required keys that no role in the catalog is granted."""
    return sorted({k for k in required if not is_cataloged(k)})


def require_cataloged(required: Iterable[str]) -> None:
    """
    Raise CatalogMisconfiguration (and log CRITICAL) if any key is malformed or
    granted to no role. A misspelled key is a defect, never an ordinary denial.
    """
    missing = validate_catalog(required)
    if missing:
        log.critical("authz.catalog_misconfiguration missing=%s", ",".join(missing))
        raise CatalogMisconfiguration(
            f"Permission(s) not granted to any role: {', '.join(missing)}"
        )

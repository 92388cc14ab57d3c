# tenantguard/core/roles.py

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Mapping, Optional

from tenantguard.core.logging import get_logger

log = get_logger(__name__)


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"   # platform administrator, not tenant scoped
    ADMIN = "admin"               # company administration
    MANAGER = "manager"           # team / department oversight
    PROVIDER = "provider"         # service provider, works own + assigned records
    CLIENT = "client"             # books and follows own contracts


ROLE_RANK: Mapping[Role, int] = {
    Role.SUPER_ADMIN: 5,
    Role.ADMIN: 4,
    Role.MANAGER: 3,
    Role.PROVIDER: 2,
    Role.CLIENT: 1,
}

# Rank given to anything that did not decode into a Role.
UNKNOWN_RANK = 0

# role -> the role whose grants it strictly extends
ROLE_INHERITS: Mapping[Role, Role] = {
    Role.SUPER_ADMIN: Role.ADMIN,
    Role.ADMIN: Role.MANAGER,
    Role.MANAGER: Role.PROVIDER,
    Role.PROVIDER: Role.CLIENT,
}


@dataclass(frozen=True)
class RoleMetadata:
    label: str
    description: str


ROLE_METADATA: Mapping[Role, RoleMetadata] = {
    Role.SUPER_ADMIN: RoleMetadata("Super Admin", "Platform administrator with full system access"),
    Role.ADMIN: RoleMetadata("Admin", "Company administrator with management capabilities"),
    Role.MANAGER: RoleMetadata("Manager", "Team manager with oversight capabilities"),
    Role.PROVIDER: RoleMetadata("Service Provider", "Service provider with contract and workforce access"),
    Role.CLIENT: RoleMetadata("Client", "Client with access to their own contracts"),
}

UNKNOWN_ROLE_METADATA = RoleMetadata("Unknown", "Unrecognised role with no access")


def parse_role(value: object) -> Optional[Role]:
    """
    Decode a stored role string into a Role.

    Case and surrounding whitespace are ignored so legacy upper-case rows
    ("ADMIN") decode too. Anything else decodes to None, which callers treat
    as "no role".
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None

    normalized = value.strip().lower()
    if not normalized:
        return None

    try:
        return Role(normalized)
    except ValueError:
        log.warning("roles.unknown_role value=%r", value)
        return None


def rank(role: object) -> int:
    r = parse_role(role)
    if r is None:
        return UNKNOWN_RANK
    return ROLE_RANK[r]


def has_role_level(role: object, required: Role) -> bool:
    r = parse_role(role)
    if r is None:
        return False
    return rank(r) >= rank(required)


def display_metadata(role: object) -> RoleMetadata:
    r = parse_role(role)
    if r is None:
        return UNKNOWN_ROLE_METADATA
    return ROLE_METADATA[r]


def ancestors(role: Role) -> list[Role]:
    """Roles whose grants `role` inherits, nearest first."""
    chain = []
    current = ROLE_INHERITS.get(role)
    while current is not None:
        chain.append(current)
        current = ROLE_INHERITS.get(current)
    return chain

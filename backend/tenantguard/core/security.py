from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from tenantguard.core.config import Settings, settings
from tenantguard.core.logging import get_logger

log = get_logger(__name__)

# auto_error=False: a missing header must reach the guard, which answers 401 itself.
bearer_scheme = HTTPBearer(auto_error=False)


def _normalize_token(token: Optional[str]) -> str:
    """
    Make token decoding resilient to common Swagger / copy-paste issues:
    - Leading/trailing whitespace/newlines
    - Surrounding quotes
    - Accidentally including the 'Bearer ' prefix in the token field
    """
    if token is None:
        return ""

    t = token.strip()

    # remove surrounding quotes if present
    if (t.startswith('"') and t.endswith('"')) or (t.startswith("'") and t.endswith("'")):
        t = t[1:-1].strip()

    # remove accidental bearer prefix
    if t.lower().startswith("bearer "):
        t = t[7:].strip()

    return t


def create_access_token(
    subject: str,
    expires_minutes: Optional[int] = None,
    *,
    config: Settings = settings,
) -> str:
    expire_dt = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES
    )

    # Use numeric timestamps for maximum compatibility
    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "exp": int(expire_dt.timestamp()),
        "iat": int(datetime.now(timezone.utc).timestamp()),
    }

    return jwt.encode(
        to_encode,
        config.JWT_SECRET,
        algorithm=config.JWT_ALGORITHM,
    )


def decode_access_token(token: Optional[str], *, config: Settings = settings) -> Optional[str]:
    """
    Return the token subject, or None when the token is missing or invalid.
    Callers treat None as "no authenticated principal".
    """
    token = _normalize_token(token)
    if not token:
        return None

    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        # Includes expired signature, bad format, bad signature, wrong algorithm, etc.
        log.info("auth.invalid_token error=%s", type(exc).__name__)
        return None

    sub = payload.get("sub")
    if not sub:
        return None
    return str(sub)

# backend/tenantguard/core/config.py

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic_settings import BaseSettings, SettingsConfigDict


def _strip_asyncpg_unsupported_params(url: str) -> str:
    """
    asyncpg does NOT accept sslmode or channel_binding as connect kwargs.
    If these appear in the URL query, SQLAlchemy can end up passing them to
    asyncpg.connect(), causing:
      TypeError: connect() got an unexpected keyword argument 'sslmode'
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    filtered = [(k, v) for (k, v) in params if k not in {"sslmode", "channel_binding"}]
    new_query = urlencode(filtered, doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -----------------------------
    # Environment
    # -----------------------------
    # Use: development | staging | production
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # -----------------------------
    # DB
    # -----------------------------
    DATABASE_URL_ASYNC: str = "sqlite+aiosqlite:///./tenantguard.db"
    DATABASE_URL_SYNC: Optional[str] = None

    # -----------------------------
    # JWT
    # -----------------------------
    # Keep a dev default, but enforce stronger requirements outside dev.
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # -----------------------------
    # RBAC
    # -----------------------------
    # Role lookups are cached per (principal, tenant) for at most this long.
    RBAC_CACHE_TTL_SECONDS: int = 300
    RBAC_CACHE_SWEEP_SECONDS: int = 60
    RBAC_CACHE_MAX_SIZE: int = 10_000

    RBAC_AUDIT_ENABLED: bool = True
    # database | log
    RBAC_AUDIT_SINK: str = "database"
    # audit writes in flight before new events are dropped
    RBAC_AUDIT_MAX_PENDING: int = 1_000

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    @property
    def is_production(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"staging", "production"}

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        # Enforce that we never run staging/production with a placeholder secret.
        if self.is_production:
            if not self.JWT_SECRET or self.JWT_SECRET.strip() == "dev-secret-change-me":
                raise ValueError("JWT_SECRET must be set to a strong value in staging/production.")
            if len(self.JWT_SECRET.strip()) < 32:
                raise ValueError("JWT_SECRET is too short; use at least 32 characters in staging/production.")

        # Light sanity checks (all envs)
        if self.JWT_ALGORITHM not in {"HS256"}:
            raise ValueError(f"Unsupported JWT_ALGORITHM={self.JWT_ALGORITHM!r}. Allowed: HS256")

        if self.RBAC_CACHE_TTL_SECONDS <= 0:
            raise ValueError("RBAC_CACHE_TTL_SECONDS must be positive.")

        if self.RBAC_CACHE_SWEEP_SECONDS <= 0:
            raise ValueError("RBAC_CACHE_SWEEP_SECONDS must be positive.")

        if self.RBAC_CACHE_MAX_SIZE <= 0:
            raise ValueError("RBAC_CACHE_MAX_SIZE must be positive.")

        if self.RBAC_AUDIT_MAX_PENDING <= 0:
            raise ValueError("RBAC_AUDIT_MAX_PENDING must be positive.")

        if self.RBAC_AUDIT_SINK not in {"database", "log"}:
            raise ValueError(f"Unsupported RBAC_AUDIT_SINK={self.RBAC_AUDIT_SINK!r}. Allowed: database, log")


# this must exist for: `from tenantguard.core.config import settings`
settings = Settings()

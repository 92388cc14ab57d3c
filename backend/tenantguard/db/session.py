from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tenantguard.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    # Use CLEAN URL to avoid asyncpg errors with sslmode/channel_binding query params.
    url = settings.DATABASE_URL_ASYNC_CLEAN
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False, future=True)

    # The membership store relies on the driver for timeouts and dead-connection
    # detection; the authorization engine itself never times out a lookup.
    return create_async_engine(
        url,
        echo=False,
        future=True,
        pool_pre_ping=True,  # detects dead connections before using them
        pool_recycle=300,    # recycle connections periodically (seconds)
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides one AsyncSession per request.
    Always closes the session after the request completes.
    """
    async with request.app.state.sessionmaker() as session:
        try:
            yield session
        finally:
            await session.close()

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional, Protocol, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantguard.core.logging import get_logger
from tenantguard.models.audit_log import AuditLog

log = get_logger(__name__)
audit_log = get_logger("tenantguard.audit")

DEFAULT_MAX_PENDING = 1_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """One authorization decision. Serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    principal_id: Optional[uuid.UUID] = None
    tenant_id: Optional[uuid.UUID] = None
    permission: str
    outcome: Literal["allow", "deny"]
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    # request metadata, when the caller had any
    path: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuditSink(Protocol):
    async def write(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes one JSON line per decision to the `tenantguard.audit` logger."""

    async def write(self, event: AuditEvent) -> None:
        audit_log.info(json.dumps(event.to_record(), sort_keys=True))


class SqlAuditSink:
    """Appends to `audit_logs` in its own short session."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def write(self, event: AuditEvent) -> None:
        async with self._sessionmaker() as session:
            session.add(
                AuditLog(
                    principal_id=event.principal_id,
                    tenant_id=event.tenant_id,
                    permission=event.permission,
                    outcome=event.outcome,
                    reason=event.reason,
                    path=event.path,
                    ip_address=event.ip_address,
                    user_agent=event.user_agent,
                    occurred_at=event.timestamp,
                )
            )
            await session.commit()


class AuditDispatcher:
    """
    Fire-and-forget delivery to an AuditSink.

    emit() schedules the write and returns at once. A failing sink is logged
    and never reaches the guarded request. At most `max_pending` writes are in
    flight; events beyond that are dropped, logged and counted in `dropped`.
    """

    def __init__(self, sink: AuditSink, *, max_pending: int = DEFAULT_MAX_PENDING):
        if max_pending <= 0:
            raise ValueError("max_pending must be positive")
        self.sink = sink
        self.max_pending = max_pending
        self.dropped = 0
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: AuditEvent) -> None:
        if len(self._pending) >= self.max_pending:
            self.dropped += 1
            log.warning(
                "audit.dropped pending=%s dropped=%s permission=%s outcome=%s",
                len(self._pending),
                self.dropped,
                event.permission,
                event.outcome,
            )
            return
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event))
        except RuntimeError:
            log.warning("audit.no_running_loop permission=%s outcome=%s", event.permission, event.outcome)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AuditEvent) -> None:
        try:
            await self.sink.write(event)
        except Exception:
            log.warning(
                "audit.write_failed principal=%s tenant=%s permission=%s outcome=%s",
                event.principal_id,
                event.tenant_id,
                event.permission,
                event.outcome,
                exc_info=True,
            )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled write; used on shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

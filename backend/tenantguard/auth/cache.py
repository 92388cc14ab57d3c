"""
Permission cache for resolved roles.

Process-local, keyed by (principal_id, tenant_id). Entries expire lazily on
read after a fixed TTL; the optional background sweep only reclaims memory.

Invalidation is synchronous and bumps a generation counter. A resolution that
started before an invalidation carries the old generation and its write is
dropped, so a slow in-flight lookup cannot re-insert the pre-mutation role.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from tenantguard.auth.resolver import ResolvedRole, RoleResolver
from tenantguard.core.logging import get_logger

log = get_logger(__name__)

CacheKey = Tuple[uuid.UUID, Optional[uuid.UUID]]

DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_SIZE = 10_000


@dataclass
class CacheEntry:
    value: ResolvedRole
    stored_at: float


class PermissionCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.RLock()
        self._generation = 0
        self._hits = 0
        self._misses = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at >= self.ttl_seconds

    def get(self, key: CacheKey) -> Optional[ResolvedRole]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._expired(entry, self._clock()):
                del self._entries[key]
                self._misses += 1
                return None

            self._hits += 1
            return entry.value

    def set(self, key: CacheKey, value: ResolvedRole, generation: Optional[int] = None) -> bool:
        """
        Store `value`. When `generation` is given and an invalidation happened
        since it was read, nothing is stored and False is returned.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                log.debug("cache.stale_write_dropped principal=%s tenant=%s", key[0], key[1])
                return False
            now = self._clock()
            # re-insert so dict order stays oldest-first
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_size:
                self._evict(now)
            self._entries[key] = CacheEntry(value=value, stored_at=now)
            return True

    def _evict(self, now: float) -> None:
        """Make room for one entry: expired entries first, then the oldest."""
        removed = self._drop_expired(now)
        while len(self._entries) >= self.max_size:
            del self._entries[next(iter(self._entries))]
            removed += 1
        log.debug("cache.evicted removed=%s max_size=%s", removed, self.max_size)

    def _drop_expired(self, now: float) -> int:
        doomed = [k for k, entry in self._entries.items() if self._expired(entry, now)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def _bump(self) -> None:
        self._generation += 1

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            self._bump()
            self._entries.pop(key, None)

    def invalidate_principal(self, principal_id: uuid.UUID) -> int:
        """Drop every tenant entry of one principal (includes the active-tenant entry)."""
        return self.invalidate_principals([principal_id])

    def invalidate_principals(self, principal_ids: Iterable[uuid.UUID]) -> int:
        ids = set(principal_ids)
        with self._lock:
            self._bump()
            doomed = [k for k in self._entries if k[0] in ids]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def invalidate_tenant(self, tenant_id: uuid.UUID) -> int:
        with self._lock:
            self._bump()
            doomed = [
                k
                for k, entry in self._entries.items()
                if k[1] == tenant_id or entry.value.tenant_id == tenant_id
            ]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def invalidate_all(self) -> None:
        with self._lock:
            self._bump()
            self._entries.clear()

    def clear(self) -> None:
        """invalidate_all() plus counter reset; for test teardown."""
        with self._lock:
            self.invalidate_all()
            self._hits = 0
            self._misses = 0

    def sweep(self) -> int:
        with self._lock:
            return self._drop_expired(self._clock())

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Reclaim expired entries forever; run as a background task and cancel on shutdown."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.sweep()
            if removed:
                log.debug("cache.swept removed=%s", removed)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self.ttl_seconds,
                "max_size": self.max_size,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CachedRoleResolver:
    """RoleResolver behind a PermissionCache. Failed resolutions are never cached."""

    def __init__(self, resolver: RoleResolver, cache: PermissionCache):
        self.resolver = resolver
        self.cache = cache

    async def resolve(
        self,
        principal_id: uuid.UUID,
        tenant_id: Optional[uuid.UUID] = None,
        *,
        bypass_cache: bool = False,
    ) -> ResolvedRole:
        key: CacheKey = (principal_id, tenant_id)

        if not bypass_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        generation = self.cache.generation
        resolved = await self.resolver.resolve(principal_id, tenant_id)
        self.cache.set(key, resolved, generation=generation)
        return resolved

    async def refresh(
        self,
        principal_id: uuid.UUID,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> ResolvedRole:
        self.cache.invalidate((principal_id, tenant_id))
        return await self.resolve(principal_id, tenant_id)

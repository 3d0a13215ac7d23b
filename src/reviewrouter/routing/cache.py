"""Per-organization rule cache.

The cache holds one immutable RuleSet per organization. Entries are loaded
lazily on first access and live until invalidated; there is no TTL, so
every mutation of rules, repositories, or organization routing settings
must call ``invalidate`` for the affected organization.

Loads are published by atomic swap of a fully built RuleSet. A generation
counter per organization detects an invalidation that happened while a
load was in flight; such a load is returned to its caller but not
published, so the next reader reloads.

Example:
    >>> cache = RuleCache(store_loader(session_factory, timeout=10.0))
    >>> rule_set = await cache.get_rules(org_id)
    >>> cache.invalidate(org_id)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrouter.database.connection import bounded_store_call
from reviewrouter.database.queries.rule import load_rule_set
from reviewrouter.routing.models import RuleSet

logger = structlog.get_logger(__name__)

RuleLoader = Callable[[uuid.UUID], Awaitable[RuleSet]]


def store_loader(
    session_factory: async_sessionmaker[AsyncSession],
    timeout: float,
) -> RuleLoader:
    """Build a loader that reads rule sets from the store.

    Args:
        session_factory: Factory for store sessions.
        timeout: Upper bound in seconds for one load.

    Returns:
        Coroutine function suitable for RuleCache.
    """

    async def _load(organization_id: uuid.UUID) -> RuleSet:
        async def _read() -> RuleSet:
            async with session_factory() as session:
                async with session.begin():
                    return await load_rule_set(session, organization_id)

        return await bounded_store_call(_read(), timeout, "load_rule_set")

    return _load


class RuleCache:
    """In-memory cache of rule sets keyed by organization id.

    Safe for concurrent use from one event loop. Concurrent misses for the
    same organization share a single store read.

    Attributes:
        loads: Number of store loads performed (for diagnostics).
    """

    def __init__(self, loader: RuleLoader) -> None:
        self._loader = loader
        self._entries: dict[uuid.UUID, RuleSet] = {}
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._generations: dict[uuid.UUID, int] = {}
        self.loads = 0

    async def get_rules(self, organization_id: uuid.UUID) -> RuleSet:
        """Return the organization's rule set, loading it on a miss.

        Raises:
            NotFoundError: If the organization does not exist.
            StoreUnavailable: If the store read fails or times out.
        """
        entry = self._entries.get(organization_id)
        if entry is not None:
            return entry

        lock = self._locks.setdefault(organization_id, asyncio.Lock())
        async with lock:
            entry = self._entries.get(organization_id)
            if entry is not None:
                return entry

            generation = self._generations.get(organization_id, 0)
            rule_set = await self._loader(organization_id)
            self.loads += 1

            if self._generations.get(organization_id, 0) == generation:
                self._entries[organization_id] = rule_set
                logger.debug(
                    "rule_cache_loaded",
                    organization_id=str(organization_id),
                    rule_count=len(rule_set.rules),
                )
            else:
                logger.debug(
                    "rule_cache_load_superseded",
                    organization_id=str(organization_id),
                )
            return rule_set

    def invalidate(self, organization_id: uuid.UUID) -> None:
        """Drop the organization's entry; the next read reloads it."""
        self._generations[organization_id] = self._generations.get(organization_id, 0) + 1
        self._entries.pop(organization_id, None)
        logger.debug("rule_cache_invalidated", organization_id=str(organization_id))

    def clear(self) -> None:
        """Drop every entry."""
        for organization_id in list(self._entries) + list(self._generations):
            self._generations[organization_id] = self._generations.get(organization_id, 0) + 1
        self._entries.clear()

    @property
    def size(self) -> int:
        """Number of organizations with a loaded rule set."""
        return len(self._entries)

    def __contains__(self, organization_id: object) -> bool:
        return organization_id in self._entries

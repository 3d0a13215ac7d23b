"""Unit tests for the per-organization rule cache."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from reviewrouter.errors import NotFoundError
from reviewrouter.routing.cache import RuleCache
from reviewrouter.routing.models import RuleSet


class FakeLoader:
    """Counts loads and can block until released."""

    def __init__(self) -> None:
        self.calls: list[uuid.UUID] = []
        self.gate: asyncio.Event | None = None
        self.timezone = "UTC"

    async def __call__(self, organization_id: uuid.UUID) -> RuleSet:
        self.calls.append(organization_id)
        timezone = self.timezone
        if self.gate is not None:
            await self.gate.wait()
        return RuleSet(organization_id=organization_id, timezone=timezone)


@pytest.fixture
def loader() -> FakeLoader:
    return FakeLoader()


class TestRuleCache:
    """Test lazy loading, invalidation and concurrent access."""

    @pytest.mark.asyncio
    async def test_loads_once_then_serves_from_memory(self, loader: FakeLoader) -> None:
        """Test that repeated reads hit the store once."""
        cache = RuleCache(loader)
        org = uuid.uuid4()

        first = await cache.get_rules(org)
        second = await cache.get_rules(org)

        assert first is second
        assert loader.calls == [org]
        assert cache.loads == 1
        assert org in cache

    @pytest.mark.asyncio
    async def test_organizations_are_independent(self, loader: FakeLoader) -> None:
        cache = RuleCache(loader)
        org_a, org_b = uuid.uuid4(), uuid.uuid4()

        await cache.get_rules(org_a)
        await cache.get_rules(org_b)
        cache.invalidate(org_a)

        assert org_a not in cache
        assert org_b in cache

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self, loader: FakeLoader) -> None:
        """Test that the next read after invalidation sees fresh data."""
        cache = RuleCache(loader)
        org = uuid.uuid4()

        await cache.get_rules(org)
        loader.timezone = "Europe/Berlin"
        cache.invalidate(org)

        reloaded = await cache.get_rules(org)
        assert reloaded.timezone == "Europe/Berlin"
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_load(self, loader: FakeLoader) -> None:
        """Test that simultaneous readers of a cold entry trigger one load."""
        cache = RuleCache(loader)
        org = uuid.uuid4()
        loader.gate = asyncio.Event()

        tasks = [asyncio.create_task(cache.get_rules(org)) for _ in range(5)]
        await asyncio.sleep(0)
        loader.gate.set()
        results = await asyncio.gather(*tasks)

        assert len(loader.calls) == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_invalidation_during_load_is_not_lost(self, loader: FakeLoader) -> None:
        """Test that a load started before an invalidation is not published."""
        cache = RuleCache(loader)
        org = uuid.uuid4()
        loader.gate = asyncio.Event()

        in_flight = asyncio.create_task(cache.get_rules(org))
        await asyncio.sleep(0)
        cache.invalidate(org)
        loader.gate.set()
        stale = await in_flight

        assert stale.timezone == "UTC"
        assert org not in cache

        loader.gate = None
        loader.timezone = "Asia/Tokyo"
        fresh = await cache.get_rules(org)
        assert fresh.timezone == "Asia/Tokyo"
        assert org in cache

    @pytest.mark.asyncio
    async def test_load_errors_propagate_and_are_not_cached(self) -> None:
        attempts = 0

        async def failing_loader(organization_id: uuid.UUID) -> RuleSet:
            nonlocal attempts
            attempts += 1
            raise NotFoundError("organization", str(organization_id))

        cache = RuleCache(failing_loader)
        org = uuid.uuid4()

        with pytest.raises(NotFoundError):
            await cache.get_rules(org)
        with pytest.raises(NotFoundError):
            await cache.get_rules(org)
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_clear_drops_everything(self, loader: FakeLoader) -> None:
        cache = RuleCache(loader)
        orgs = [uuid.uuid4(), uuid.uuid4()]
        for org in orgs:
            await cache.get_rules(org)

        cache.clear()

        assert all(org not in cache for org in orgs)

"""Pytest fixtures for integration tests.

Provides async database fixtures backed by a file-based SQLite database
per test, plus small seeding helpers. Production runs on PostgreSQL; the
routing and escalation queries used here are portable between the two.

A file (rather than ``:memory:``) database is used because routing and
escalation open several sessions per operation, and every pooled
connection must see the same data.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from reviewrouter.config import DatabaseConfig
from reviewrouter.database.connection import get_engine, get_session_factory
from reviewrouter.database.models.base import Base
from reviewrouter.database.models.organization import FallbackStrategy, Organization
from reviewrouter.database.models.reviewer import Reviewer
from reviewrouter.database.models.rule import RoutingRule
from reviewrouter.database.queries.organization import create_organization, create_repository
from reviewrouter.database.queries.reviewer import create_reviewer
from reviewrouter.database.queries.rule import create_rule
from reviewrouter.routing.cache import RuleCache, store_loader
from reviewrouter.routing.engine import RoutingEngine
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.service import RoutingService

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)  # a Monday


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a SQLite engine with the full schema.

    Yields:
        AsyncEngine bound to a fresh database file.
    """
    test_engine = get_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session for direct reads in assertions."""
    async with session_factory() as session:
        yield session


class Seeder:
    """Writes fixture rows, each in its own committed transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def organization(
        self,
        name: str = "acme",
        timezone: str = "UTC",
        fallback_strategy: FallbackStrategy = FallbackStrategy.default_reviewer,
        default_reviewer_id: uuid.UUID | None = None,
    ) -> Organization:
        async with self.session_factory() as session:
            async with session.begin():
                return await create_organization(
                    session,
                    name,
                    timezone=timezone,
                    fallback_strategy=fallback_strategy,
                    default_reviewer_id=default_reviewer_id,
                )

    async def reviewer(
        self,
        organization_id: uuid.UUID,
        github_username: str,
        **kwargs: Any,
    ) -> Reviewer:
        kwargs.setdefault("name", github_username.title())
        async with self.session_factory() as session:
            async with session.begin():
                return await create_reviewer(
                    session,
                    organization_id=organization_id,
                    github_username=github_username,
                    **kwargs,
                )

    async def rule(
        self,
        organization_id: uuid.UUID,
        priority: int,
        reviewer_ids: list[uuid.UUID],
        strategy: str = "explicit",
        conditions: list[dict[str, Any]] | None = None,
        name: str | None = None,
        **kwargs: Any,
    ) -> RoutingRule:
        async with self.session_factory() as session:
            async with session.begin():
                return await create_rule(
                    session,
                    organization_id=organization_id,
                    name=name or f"rule-{priority}",
                    priority=priority,
                    directive={
                        "strategy": strategy,
                        "reviewer_ids": [str(r) for r in reviewer_ids],
                    },
                    conditions=conditions or [],
                    **kwargs,
                )

    async def repository(
        self,
        organization_id: uuid.UUID,
        full_name: str,
        default_reviewer_id: uuid.UUID | None = None,
    ) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await create_repository(session, organization_id, full_name, default_reviewer_id)


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    """Seeding helper bound to the test database."""
    return Seeder(session_factory)


@pytest.fixture
def make_event():
    """Factory for pull request events with sensible defaults."""

    def _make(organization_id: uuid.UUID, **overrides: Any) -> PullRequestEvent:
        values: dict[str, Any] = {
            "organization_id": organization_id,
            "pull_request_id": "acme/api#1",
            "repository": "acme/api",
            "number": 1,
            "title": "Add endpoint",
            "html_url": "https://github.com/acme/api/pull/1",
            "author": "outsider",
            "files_changed": ("src/app.py",),
            "head_branch": "feature/x",
            "base_branch": "main",
            "labels": (),
            "opened_at": T0,
        }
        values.update(overrides)
        return PullRequestEvent(**values)

    return _make


@pytest.fixture
def routing_service(session_factory: async_sessionmaker[AsyncSession]) -> RoutingService:
    """Routing service with a fresh rule cache and a fixed clock at T0."""
    cache = RuleCache(store_loader(session_factory, timeout=5.0))
    return RoutingService(session_factory, RoutingEngine(cache), clock=lambda: T0)

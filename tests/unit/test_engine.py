"""Unit tests for the rule engine decision logic."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from reviewrouter.database.models.organization import FallbackStrategy
from reviewrouter.routing.conditions import (
    AuthorCondition,
    InvalidCondition,
    LabelCondition,
)
from reviewrouter.routing.directive import ExplicitDirective, RoundRobinDirective
from reviewrouter.routing.engine import RoutingEngine, decide
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.models import RuleSet, RuleSnapshot

ORG = uuid.uuid4()
ALICE = uuid.uuid4()
BOB = uuid.uuid4()
CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_rule(priority: int, reviewer: uuid.UUID = ALICE, **overrides: Any) -> RuleSnapshot:
    values: dict[str, Any] = {
        "id": uuid.uuid4(),
        "organization_id": ORG,
        "name": f"rule-{priority}",
        "priority": priority,
        "created_at": CREATED,
        "conditions": (),
        "directive": ExplicitDirective(reviewer_ids=(reviewer,)),
    }
    values.update(overrides)
    return RuleSnapshot(**values)


def make_event(**overrides: Any) -> PullRequestEvent:
    values: dict[str, Any] = {
        "organization_id": ORG,
        "pull_request_id": "acme/api#9",
        "repository": "acme/api",
        "number": 9,
        "author": "carol",
        "labels": ("security",),
        "opened_at": datetime(2024, 3, 4, 9, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return PullRequestEvent(**values)


class TestDecide:
    """Test rule selection and fallbacks."""

    def test_first_matching_rule_wins(self) -> None:
        """Test that the lowest-priority matching rule is chosen."""
        security = make_rule(
            0, reviewer=BOB, conditions=(LabelCondition(labels=("security",)),)
        )
        catch_all = make_rule(1)
        decision = decide(RuleSet(ORG, rules=(security, catch_all)), make_event())

        assert decision.matched
        assert decision.rule is security
        assert decision.directive.reviewer_ids == (BOB,)
        assert decision.fallback is None

    def test_non_matching_rules_are_skipped(self) -> None:
        only_dave = make_rule(0, reviewer=BOB, conditions=(AuthorCondition(usernames=("dave",)),))
        catch_all = make_rule(1)
        decision = decide(RuleSet(ORG, rules=(only_dave, catch_all)), make_event())

        assert decision.rule is catch_all
        assert [rule_id for rule_id, _ in decision.evaluated] == [only_dave.id, catch_all.id]

    def test_inactive_rules_are_ignored(self) -> None:
        inactive = make_rule(0, reviewer=BOB, is_active=False)
        active = make_rule(1)
        assert decide(RuleSet(ORG, rules=(inactive, active)), make_event()).rule is active

    def test_repository_scope(self) -> None:
        """Test that scoped rules only apply to their repository."""
        scoped = make_rule(0, reviewer=BOB, repository_full_name="acme/web")
        unscoped = make_rule(1)
        rule_set = RuleSet(ORG, rules=(scoped, unscoped))

        assert decide(rule_set, make_event()).rule is unscoped
        assert decide(rule_set, make_event(repository="ACME/Web")).rule is scoped

    def test_rule_with_invalid_directive_never_wins(self) -> None:
        broken = make_rule(0, directive=None)
        fallback = make_rule(1, reviewer=BOB)
        assert decide(RuleSet(ORG, rules=(broken, fallback)), make_event()).rule is fallback

    def test_rule_with_invalid_condition_never_wins(self) -> None:
        broken = make_rule(0, conditions=(InvalidCondition(raw={}, error="bad"),))
        decision = decide(RuleSet(ORG, rules=(broken,)), make_event())
        assert not decision.matched

    def test_decision_is_deterministic(self) -> None:
        rules = (
            make_rule(0, conditions=(LabelCondition(labels=("docs",)),)),
            make_rule(1, reviewer=BOB, directive=RoundRobinDirective(reviewer_ids=(ALICE, BOB))),
        )
        rule_set = RuleSet(ORG, rules=rules)
        event = make_event()
        assert {decide(rule_set, event).rule_id for _ in range(10)} == {rules[1].id}


class TestFallback:
    """Test organization fallback when nothing matches."""

    def test_repository_default_reviewer_preferred(self) -> None:
        """Test that the repository default beats the organization default."""
        rule_set = RuleSet(
            ORG,
            fallback_strategy=FallbackStrategy.default_reviewer,
            default_reviewer_id=ALICE,
            repository_defaults=(("acme/api", BOB),),
        )
        decision = decide(rule_set, make_event(repository="Acme/API"))

        assert not decision.matched
        assert decision.fallback is FallbackStrategy.default_reviewer
        assert decision.directive == ExplicitDirective(reviewer_ids=(BOB,))
        assert decision.alternatives == (ExplicitDirective(reviewer_ids=(ALICE,)),)

    def test_same_default_for_repository_and_organization(self) -> None:
        rule_set = RuleSet(
            ORG, default_reviewer_id=ALICE, repository_defaults=(("acme/api", ALICE),)
        )
        decision = decide(rule_set, make_event())
        assert decision.directive == ExplicitDirective(reviewer_ids=(ALICE,))
        assert decision.alternatives == ()

    def test_organization_default_reviewer(self) -> None:
        rule_set = RuleSet(ORG, default_reviewer_id=ALICE)
        decision = decide(rule_set, make_event())
        assert decision.directive == ExplicitDirective(reviewer_ids=(ALICE,))
        assert not decision.assigns_nobody
        assert decision.alternatives == ()

    def test_default_reviewer_missing_assigns_nobody(self) -> None:
        decision = decide(RuleSet(ORG), make_event())
        assert decision.directive is None
        assert decision.assigns_nobody

    def test_least_busy_pool(self) -> None:
        """Test that the pool fallback leaves candidate resolution to the selector."""
        rule_set = RuleSet(ORG, fallback_strategy=FallbackStrategy.least_busy_pool)
        decision = decide(rule_set, make_event())
        assert decision.fallback is FallbackStrategy.least_busy_pool
        assert decision.directive is None
        assert not decision.assigns_nobody

    def test_none(self) -> None:
        rule_set = RuleSet(ORG, fallback_strategy=FallbackStrategy.none, default_reviewer_id=ALICE)
        decision = decide(rule_set, make_event())
        assert decision.fallback is FallbackStrategy.none
        assert decision.assigns_nobody


class TestRoutingEngine:
    """Test the cache-backed engine entry point."""

    @pytest.mark.asyncio
    async def test_route_reads_rules_from_cache(self) -> None:
        rule = make_rule(0)
        cache = AsyncMock()
        cache.get_rules.return_value = RuleSet(ORG, rules=(rule,))

        decision = await RoutingEngine(cache).route(make_event())

        cache.get_rules.assert_awaited_once_with(ORG)
        assert decision.rule is rule

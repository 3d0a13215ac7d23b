"""Immutable value types passed between routing stages."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from reviewrouter.database.models.organization import FallbackStrategy
from reviewrouter.routing.conditions import Condition, InvalidCondition
from reviewrouter.routing.directive import Directive


@dataclass(frozen=True)
class RuleSnapshot:
    """Read-only view of a routing rule as loaded into the cache.

    ``directive`` is None when the stored directive document is malformed;
    such a rule never wins.
    """

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    priority: int
    created_at: datetime
    conditions: tuple[Union[Condition, InvalidCondition], ...]
    directive: Directive | None
    repository_full_name: str | None = None
    is_active: bool = True

    def applies_to(self, repository: str) -> bool:
        """Whether this rule is scoped to the given repository."""
        if self.repository_full_name is None:
            return True
        return self.repository_full_name.lower() == repository.lower()


@dataclass(frozen=True)
class RuleSet:
    """Complete routing configuration of one organization.

    Attributes:
        organization_id: Owning organization.
        rules: Rules in evaluation order (priority, created_at, id).
        timezone: Organization timezone for time-window conditions.
        fallback_strategy: Behaviour when no rule matches.
        default_reviewer_id: Organization default reviewer.
        repository_defaults: Default reviewer per lower-cased repository name.
    """

    organization_id: uuid.UUID
    rules: tuple[RuleSnapshot, ...] = ()
    timezone: str = "UTC"
    fallback_strategy: FallbackStrategy = FallbackStrategy.default_reviewer
    default_reviewer_id: uuid.UUID | None = None
    repository_defaults: tuple[tuple[str, uuid.UUID], ...] = ()

    def default_reviewer_for(self, repository: str) -> uuid.UUID | None:
        """Repository default reviewer, then organization default."""
        candidates = self.default_reviewers_for(repository)
        return candidates[0] if candidates else None

    def default_reviewers_for(self, repository: str) -> tuple[uuid.UUID, ...]:
        """Default reviewer candidates in fallback order, without repeats.

        The repository default comes first and the organization default
        second; routing moves to the next candidate when one cannot take
        the pull request.
        """
        key = repository.lower()
        candidates: list[uuid.UUID] = []
        for name, reviewer_id in self.repository_defaults:
            if name == key:
                candidates.append(reviewer_id)
                break
        if self.default_reviewer_id is not None and self.default_reviewer_id not in candidates:
            candidates.append(self.default_reviewer_id)
        return tuple(candidates)


@dataclass(frozen=True)
class ConditionResult:
    """Outcome of evaluating a single condition."""

    type: str
    matched: bool
    details: str = ""


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating a rule's condition list."""

    matched: bool
    results: tuple[ConditionResult, ...] = ()


@dataclass(frozen=True)
class RoutingDecision:
    """What the rule engine decided for one event.

    ``rule`` is None when nothing matched; ``fallback`` then names the
    organization fallback that produced ``directive``. A None ``directive``
    with ``fallback == least_busy_pool`` means the whole active reviewer pool
    of the organization is the candidate set. ``alternatives`` are tried in
    order when ``directive`` yields no eligible reviewer (the organization
    default after an ineligible repository default).
    """

    rule: RuleSnapshot | None
    directive: Directive | None
    fallback: FallbackStrategy | None = None
    evaluated: tuple[tuple[uuid.UUID, MatchResult], ...] = field(default=(), repr=False)
    alternatives: tuple[Directive, ...] = ()

    @property
    def matched(self) -> bool:
        return self.rule is not None

    @property
    def rule_id(self) -> uuid.UUID | None:
        return self.rule.id if self.rule is not None else None

    @property
    def assigns_nobody(self) -> bool:
        """True when the decision is to leave the pull request unassigned."""
        return (
            self.directive is None
            and self.fallback is not FallbackStrategy.least_busy_pool
        )


@dataclass(frozen=True)
class SelectedReviewer:
    """A concrete reviewer chosen by the selector."""

    id: uuid.UUID
    name: str
    github_username: str
    slack_user_id: str | None = None
    email: str | None = None


class RoutingOutcome(enum.Enum):
    """Result kind of routing one event."""

    assigned = "assigned"
    duplicate = "duplicate"
    unassigned = "unassigned"
    no_eligible_reviewer = "no_eligible_reviewer"


@dataclass(frozen=True)
class RoutingResult:
    """Everything a caller needs to know about one routed event."""

    outcome: RoutingOutcome
    decision: RoutingDecision | None = None
    assignment_ids: tuple[uuid.UUID, ...] = ()
    reviewers: tuple[SelectedReviewer, ...] = ()
    routing_round: int | None = None
    reason: str | None = None

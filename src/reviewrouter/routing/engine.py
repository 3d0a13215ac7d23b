"""Rule engine for ReviewRouter.

Picks the winning routing rule for a pull-request event. Rules are
evaluated in ascending priority; the first active rule that applies to the
event's repository and whose conditions all match wins outright. When no
rule matches, the organization fallback decides.

The engine is deterministic: the same event and rule set always produce
the same decision.
"""

from __future__ import annotations

import structlog

from reviewrouter.database.models.organization import FallbackStrategy
from reviewrouter.routing.cache import RuleCache
from reviewrouter.routing.directive import ExplicitDirective
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.matcher import evaluate_all
from reviewrouter.routing.models import RoutingDecision, RuleSet

logger = structlog.get_logger(__name__)


def decide(rule_set: RuleSet, event: PullRequestEvent) -> RoutingDecision:
    """Evaluate a rule set against an event without touching the cache.

    Args:
        rule_set: Organization rules in evaluation order.
        event: Pull request being routed.

    Returns:
        RoutingDecision naming the winning rule, or the fallback directive.
    """
    evaluated = []
    for rule in rule_set.rules:
        if not rule.is_active or not rule.applies_to(event.repository):
            continue
        if rule.directive is None:
            logger.warning("rule_skipped_invalid_directive", rule_id=str(rule.id))
            continue

        result = evaluate_all(rule.conditions, event, rule_set.timezone)
        evaluated.append((rule.id, result))
        if result.matched:
            logger.info(
                "rule_matched",
                rule_id=str(rule.id),
                rule_name=rule.name,
                priority=rule.priority,
                strategy=rule.directive.strategy,
            )
            return RoutingDecision(
                rule=rule, directive=rule.directive, evaluated=tuple(evaluated)
            )

    return _fallback(rule_set, event, tuple(evaluated))


def _fallback(
    rule_set: RuleSet,
    event: PullRequestEvent,
    evaluated: tuple,
) -> RoutingDecision:
    strategy = rule_set.fallback_strategy

    if strategy is FallbackStrategy.default_reviewer:
        candidates = [
            ExplicitDirective(reviewer_ids=(reviewer_id,))
            for reviewer_id in rule_set.default_reviewers_for(event.repository)
        ]
        logger.info(
            "no_rule_matched",
            fallback=strategy.value,
            default_reviewer_ids=[str(d.reviewer_ids[0]) for d in candidates],
        )
        return RoutingDecision(
            rule=None,
            directive=candidates[0] if candidates else None,
            fallback=strategy,
            evaluated=evaluated,
            alternatives=tuple(candidates[1:]),
        )

    logger.info("no_rule_matched", fallback=strategy.value)
    return RoutingDecision(rule=None, directive=None, fallback=strategy, evaluated=evaluated)


class RoutingEngine:
    """Resolves pull-request events to routing decisions.

    The engine owns its RuleCache; rule mutations go through the same cache
    object so invalidation reaches every reader.
    """

    def __init__(self, cache: RuleCache) -> None:
        self.cache = cache

    async def route(self, event: PullRequestEvent) -> RoutingDecision:
        """Decide which rule (or fallback) handles the event.

        Raises:
            NotFoundError: If the organization does not exist.
            StoreUnavailable: If loading the rule set fails.
        """
        rule_set = await self.cache.get_rules(event.organization_id)
        return decide(rule_set, event)

"""Condition matcher for routing rules.

Pure predicate evaluation of rule conditions against a pull-request event.
Nothing in this module performs I/O or raises: malformed patterns are
skipped, unknown timezones and unexpected errors evaluate to non-match, so a
broken rule fails closed.

Regex patterns use search semantics (a pattern matches anywhere in the
path or branch name). Glob patterns must match the whole string.
"""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Sequence
from datetime import datetime
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from reviewrouter.routing.conditions import (
    AuthorCondition,
    BranchCondition,
    FilePatternCondition,
    InvalidCondition,
    LabelCondition,
    TimeWindowCondition,
)
from reviewrouter.routing.events import PullRequestEvent
from reviewrouter.routing.models import ConditionResult, MatchResult

logger = structlog.get_logger(__name__)

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


@lru_cache(maxsize=1024)
def _compile(pattern: str, syntax: str) -> re.Pattern[str] | None:
    try:
        if syntax == "glob":
            return re.compile(fnmatch.translate(pattern))
        return re.compile(pattern)
    except re.error as e:
        logger.warning("invalid_pattern", pattern=pattern, syntax=syntax, error=str(e))
        return None


def _compile_all(patterns: Sequence[str], syntax: str) -> list[re.Pattern[str]]:
    compiled = (_compile(p, syntax) for p in patterns)
    return [c for c in compiled if c is not None]


def _matches(regex: re.Pattern[str], value: str, syntax: str) -> bool:
    if syntax == "glob":
        return regex.match(value) is not None
    return regex.search(value) is not None


def match_file_pattern(
    condition: FilePatternCondition, event: PullRequestEvent
) -> ConditionResult:
    """Match changed files against the condition's patterns.

    ``any`` matches when at least one file matches a pattern; ``all``
    requires every changed file to match some pattern. A pull request with no
    changed files never matches.
    """
    if not event.files_changed:
        return ConditionResult("file_pattern", False, "no files changed")

    regexes = _compile_all(condition.patterns, condition.syntax)
    if not regexes:
        return ConditionResult("file_pattern", False, "no valid patterns")

    hits = [
        path
        for path in event.files_changed
        if any(_matches(r, path, condition.syntax) for r in regexes)
    ]
    if condition.match_mode == "all":
        matched = len(hits) == len(event.files_changed)
    else:
        matched = bool(hits)
    return ConditionResult(
        "file_pattern", matched, f"{len(hits)}/{len(event.files_changed)} files matched"
    )


def match_author(condition: AuthorCondition, event: PullRequestEvent) -> ConditionResult:
    """Match the author login against the username list, case-insensitively."""
    author = event.author.lower()
    listed = author in {u.lower() for u in condition.usernames}
    matched = listed if condition.mode == "include" else not listed
    return ConditionResult(
        "author",
        matched,
        f"author {event.author} {'in' if listed else 'not in'} list, mode={condition.mode}",
    )


def match_branch(condition: BranchCondition, event: PullRequestEvent) -> ConditionResult:
    """Match the source and/or target branch against the patterns."""
    if condition.branch_type == "head":
        branches = [event.head_branch]
    elif condition.branch_type == "base":
        branches = [event.base_branch]
    else:
        branches = [event.head_branch, event.base_branch]
    branches = [b for b in branches if b]

    regexes = _compile_all(condition.patterns, condition.syntax)
    if not regexes:
        return ConditionResult("branch", False, "no valid patterns")

    matched = any(
        _matches(r, branch, condition.syntax) for r in regexes for branch in branches
    )
    return ConditionResult(
        "branch",
        matched,
        f"{condition.branch_type} branch {'matched' if matched else 'did not match'}",
    )


def match_label(condition: LabelCondition, event: PullRequestEvent) -> ConditionResult:
    """Match pull request labels, case-insensitively."""
    if not event.labels:
        return ConditionResult("label", False, "pull request has no labels")

    present = {label.lower() for label in event.labels}
    required = [label.lower() for label in condition.labels]
    hits = [label for label in required if label in present]
    if condition.match_mode == "all":
        matched = len(hits) == len(required)
    else:
        matched = bool(hits)
    return ConditionResult("label", matched, f"{len(hits)}/{len(required)} labels matched")


def match_time_window(
    condition: TimeWindowCondition,
    event: PullRequestEvent,
    default_timezone: str,
) -> ConditionResult:
    """Match the event's activity time against a weekly day/hour window.

    The event's ``updated_at`` (or ``opened_at``) is converted to the
    condition timezone, or the organization timezone when the condition has
    none. Unknown timezones never match.
    """
    tz_name = condition.timezone or default_timezone
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("invalid_timezone", timezone=tz_name)
        return ConditionResult("time_window", False, f"invalid timezone {tz_name}")

    local: datetime = event.effective_updated_at.astimezone(tz)
    weekday = WEEKDAYS[local.weekday()]
    hour = local.hour

    day_ok = weekday in condition.days
    if condition.start_hour <= condition.end_hour:
        hour_ok = condition.start_hour <= hour < condition.end_hour
    else:
        hour_ok = hour >= condition.start_hour or hour < condition.end_hour

    matched = day_ok and hour_ok
    return ConditionResult(
        "time_window",
        matched,
        f"{weekday} {hour:02d}:00 in {tz_name}, day={day_ok}, hour={hour_ok}",
    )


def evaluate_condition(
    condition: object,
    event: PullRequestEvent,
    timezone: str = "UTC",
) -> ConditionResult:
    """Evaluate a single condition.

    Args:
        condition: Parsed condition (or InvalidCondition).
        event: Pull request being routed.
        timezone: Organization timezone for time-window conditions.

    Returns:
        ConditionResult; unknown or invalid conditions never match.
    """
    try:
        if isinstance(condition, FilePatternCondition):
            return match_file_pattern(condition, event)
        if isinstance(condition, AuthorCondition):
            return match_author(condition, event)
        if isinstance(condition, BranchCondition):
            return match_branch(condition, event)
        if isinstance(condition, LabelCondition):
            return match_label(condition, event)
        if isinstance(condition, TimeWindowCondition):
            return match_time_window(condition, event, timezone)
        if isinstance(condition, InvalidCondition):
            return ConditionResult("invalid", False, condition.error)
    except Exception as e:
        logger.error(
            "condition_evaluation_failed",
            condition_type=getattr(condition, "type", None),
            error=str(e),
            exc_info=True,
        )
        return ConditionResult(str(getattr(condition, "type", "unknown")), False, str(e))
    return ConditionResult("unknown", False, "unknown condition type")


def evaluate_all(
    conditions: Sequence[object],
    event: PullRequestEvent,
    timezone: str = "UTC",
) -> MatchResult:
    """Evaluate a rule's conditions with AND semantics.

    Evaluation stops at the first non-matching condition. An empty condition
    list always matches, which makes catch-all rules possible.
    """
    results: list[ConditionResult] = []
    for condition in conditions:
        result = evaluate_condition(condition, event, timezone)
        results.append(result)
        if not result.matched:
            return MatchResult(False, tuple(results))
    return MatchResult(True, tuple(results))

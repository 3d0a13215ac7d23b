"""Routing condition models.

Conditions are stored as JSON documents tagged by ``type``. They are parsed
into the pydantic models below when a rule set is loaded. A document that
fails validation is kept as an InvalidCondition, which never matches, so a
malformed rule can never grant a false match.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

Weekday = Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
PatternSyntax = Literal["regex", "glob"]
MatchMode = Literal["any", "all"]


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class FilePatternCondition(_Condition):
    """Match changed file paths against regex or glob patterns."""

    type: Literal["file_pattern"] = "file_pattern"
    patterns: tuple[str, ...] = Field(min_length=1)
    syntax: PatternSyntax = "regex"
    match_mode: MatchMode = "any"


class AuthorCondition(_Condition):
    """Match (include) or reject (exclude) pull request authors."""

    type: Literal["author"] = "author"
    usernames: tuple[str, ...] = Field(min_length=1)
    mode: Literal["include", "exclude"] = "include"


class BranchCondition(_Condition):
    """Match the source and/or target branch name."""

    type: Literal["branch"] = "branch"
    patterns: tuple[str, ...] = Field(min_length=1)
    syntax: PatternSyntax = "regex"
    branch_type: Literal["any", "head", "base"] = "any"


class LabelCondition(_Condition):
    """Match pull request labels, case-insensitively."""

    type: Literal["label"] = "label"
    labels: tuple[str, ...] = Field(min_length=1)
    match_mode: MatchMode = "any"


class TimeWindowCondition(_Condition):
    """Match when the pull request activity falls inside a weekly window.

    ``end_hour`` is exclusive. When ``start_hour`` is greater than
    ``end_hour`` the window wraps past midnight (22 -> 6 covers 22:00-05:59).
    """

    type: Literal["time_window"] = "time_window"
    days: tuple[Weekday, ...] = Field(min_length=1)
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)
    timezone: str | None = None

    @model_validator(mode="after")
    def validate_window(self) -> TimeWindowCondition:
        """Reject zero-length windows."""
        if self.start_hour == self.end_hour:
            raise ValueError("start_hour and end_hour must differ")
        return self


Condition = Annotated[
    Union[
        FilePatternCondition,
        AuthorCondition,
        BranchCondition,
        LabelCondition,
        TimeWindowCondition,
    ],
    Field(discriminator="type"),
]

CONDITION_ADAPTER: TypeAdapter[Condition] = TypeAdapter(Condition)


class InvalidCondition(_Condition):
    """A stored condition document that could not be parsed.

    Attributes:
        raw: The original document.
        error: Validation error summary.
    """

    type: Literal["invalid"] = "invalid"
    raw: Any = None
    error: str = ""


def parse_condition(raw: Any) -> Condition | InvalidCondition:
    """Parse one stored condition document.

    Args:
        raw: JSON-decoded condition document.

    Returns:
        The typed condition, or an InvalidCondition when validation fails.
    """
    try:
        return CONDITION_ADAPTER.validate_python(raw)
    except ValidationError as e:
        errors = e.errors()
        message = errors[0]["msg"] if errors else str(e)
        return InvalidCondition(raw=raw, error=message)


def parse_conditions(raw: Any) -> tuple[Condition | InvalidCondition, ...]:
    """Parse a stored list of condition documents, preserving order."""
    if not isinstance(raw, list):
        return (InvalidCondition(raw=raw, error="conditions must be a list"),)
    return tuple(parse_condition(item) for item in raw)


def validate_conditions(raw: list[Any]) -> list[dict[str, Any]]:
    """Strictly validate condition documents for storage.

    Used by rule mutations, which reject malformed conditions instead of
    storing them.

    Raises:
        pydantic.ValidationError: If any condition is malformed.
    """
    return [
        CONDITION_ADAPTER.dump_python(CONDITION_ADAPTER.validate_python(item), mode="json")
        for item in raw
    ]

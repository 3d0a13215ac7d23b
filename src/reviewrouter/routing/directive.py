"""Reviewer selection directives.

A directive is the closed set of ways a winning rule (or the organization
fallback) says who should review: a fixed list, a rotation, or the least
busy reviewer of a pool.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Directive(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    reviewer_ids: tuple[uuid.UUID, ...] = Field(min_length=1)


class ExplicitDirective(_Directive):
    """Assign every listed reviewer."""

    strategy: Literal["explicit"] = "explicit"


class RoundRobinDirective(_Directive):
    """Rotate through the listed reviewers, one per pull request."""

    strategy: Literal["round_robin"] = "round_robin"


class LeastBusyDirective(_Directive):
    """Assign the listed reviewer with the fewest open assignments."""

    strategy: Literal["least_busy"] = "least_busy"


Directive = Annotated[
    Union[ExplicitDirective, RoundRobinDirective, LeastBusyDirective],
    Field(discriminator="strategy"),
]

DIRECTIVE_ADAPTER: TypeAdapter[Directive] = TypeAdapter(Directive)


def parse_directive(raw: Any) -> Directive:
    """Parse a stored directive document.

    Raises:
        pydantic.ValidationError: If the document is malformed.
    """
    return DIRECTIVE_ADAPTER.validate_python(raw)


def dump_directive(directive: Directive) -> dict[str, Any]:
    """Serialize a directive to its JSON document form."""
    return DIRECTIVE_ADAPTER.dump_python(directive, mode="json")

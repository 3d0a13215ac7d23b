"""Normalized pull-request event consumed by the routing engine."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reviewrouter.clock import as_utc


class PullRequestEvent(BaseModel):
    """Immutable snapshot of a pull request at the time of the event.

    Attributes:
        organization_id: Organization the repository belongs to.
        pull_request_id: Stable identifier of the pull request.
        repository: ``owner/repo`` full name.
        number: Pull request number within the repository.
        title: Pull request title.
        html_url: Link to the pull request.
        author: Login of the pull request author.
        files_changed: Paths touched by the pull request.
        head_branch: Source branch.
        base_branch: Target branch.
        labels: Labels applied to the pull request.
        opened_at: When the pull request was opened.
        updated_at: When the pull request was last updated.
        action: Event action that triggered routing.
    """

    model_config = ConfigDict(frozen=True)

    organization_id: uuid.UUID
    pull_request_id: str = Field(min_length=1)
    repository: str = Field(min_length=1)
    number: int = Field(ge=1)
    title: str = ""
    html_url: str | None = None
    author: str = Field(min_length=1)
    files_changed: tuple[str, ...] = ()
    head_branch: str = ""
    base_branch: str = ""
    labels: tuple[str, ...] = ()
    opened_at: datetime
    updated_at: datetime | None = None
    action: Literal["opened", "reopened", "synchronize"] = "opened"

    @field_validator("opened_at", "updated_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        """Store all timestamps as aware UTC."""
        if v is None:
            return None
        return as_utc(v)

    @property
    def effective_updated_at(self) -> datetime:
        """Last activity time, falling back to the open time."""
        return self.updated_at or self.opened_at

"""Initial schema for ReviewRouter.

Creates organizations, repositories, escalation_policies, reviewers,
routing_rules, rotation_cursors, review_assignments, and routing_failures.
Identifiers and timestamps are supplied by the application, so the schema
carries no database-specific defaults and runs on PostgreSQL and SQLite.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

FALLBACK_STRATEGY = ("default_reviewer", "least_busy_pool", "none")
ASSIGNMENT_STATUS = ("pending", "reminded", "escalated", "approved", "rejected")
NOTIFICATION_STATE = ("none", "pending", "delivered", "failed")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("timezone", sa.Text(), nullable=False),
        sa.Column(
            "fallback_strategy",
            sa.Enum(*FALLBACK_STRATEGY, name="fallbackstrategy"),
            nullable=False,
        ),
        sa.Column("default_reviewer_id", sa.Uuid(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "repositories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("default_reviewer_id", sa.Uuid(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "full_name", name="uq_repositories_org_name"),
    )
    op.create_index("ix_repositories_organization_id", "repositories", ["organization_id"])

    op.create_table(
        "escalation_policies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("reminder_hours", sa.Float(), nullable=False),
        sa.Column("escalation_hours", sa.Float(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("reminder_hours > 0", name="ck_escalation_reminder_positive"),
        sa.CheckConstraint(
            "escalation_hours > reminder_hours", name="ck_escalation_after_reminder"
        ),
    )

    op.create_table(
        "reviewers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("github_username", sa.Text(), nullable=False),
        sa.Column("slack_user_id", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("is_team_lead", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "organization_id", "github_username", name="uq_reviewers_org_username"
        ),
    )
    op.create_index("ix_reviewers_organization_id", "reviewers", ["organization_id"])

    op.create_table(
        "routing_rules",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("repository_full_name", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("directive", sa.JSON(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "priority", name="uq_routing_rules_org_priority"),
        sa.CheckConstraint("priority >= 0", name="ck_routing_rules_priority_non_negative"),
    )
    op.create_index("ix_routing_rules_organization_id", "routing_rules", ["organization_id"])

    op.create_table(
        "rotation_cursors",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "rule_id",
            sa.Uuid(),
            sa.ForeignKey("routing_rules.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "review_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pull_request_id", sa.Text(), nullable=False),
        sa.Column(
            "reviewer_id",
            sa.Uuid(),
            sa.ForeignKey("reviewers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rule_id", sa.Uuid(), nullable=True),
        sa.Column("routing_round", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*ASSIGNMENT_STATUS, name="assignmentstatus"),
            nullable=False,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("repository", sa.Text(), nullable=False),
        sa.Column("pr_number", sa.Integer(), nullable=False),
        sa.Column("pr_title", sa.Text(), nullable=False),
        sa.Column("pr_url", sa.Text(), nullable=True),
        sa.Column(
            "notification_state",
            sa.Enum(*NOTIFICATION_STATE, name="notificationstate"),
            nullable=False,
        ),
        sa.Column("notification_attempts", sa.Integer(), nullable=False),
        sa.Column("last_notification_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "pull_request_id",
            "reviewer_id",
            "routing_round",
            name="uq_review_assignments_pr_reviewer_round",
        ),
    )
    op.create_index(
        "ix_review_assignments_organization_id", "review_assignments", ["organization_id"]
    )
    op.create_index(
        "ix_review_assignments_pull_request_id", "review_assignments", ["pull_request_id"]
    )
    op.create_index("ix_review_assignments_reviewer_id", "review_assignments", ["reviewer_id"])
    op.create_index(
        "ix_review_assignments_status_assigned_at",
        "review_assignments",
        ["status", "assigned_at"],
    )

    op.create_table(
        "routing_failures",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pull_request_id", sa.Text(), nullable=False),
        sa.Column("rule_id", sa.Uuid(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_routing_failures_organization_id", "routing_failures", ["organization_id"]
    )
    op.create_index(
        "ix_routing_failures_pull_request_id", "routing_failures", ["pull_request_id"]
    )


def downgrade() -> None:
    op.drop_table("routing_failures")
    op.drop_table("review_assignments")
    op.drop_table("rotation_cursors")
    op.drop_table("routing_rules")
    op.drop_table("reviewers")
    op.drop_table("escalation_policies")
    op.drop_table("repositories")
    op.drop_table("organizations")

    bind = op.get_bind()
    for name in ("notificationstate", "assignmentstatus", "fallbackstrategy"):
        sa.Enum(name=name).drop(bind, checkfirst=True)

"""Routing round claims and per-channel notification delivery.

Creates pull_request_rounds, unique on (pull_request_id, routing_round), so
only one delivery of a pull request event can write a routing round, and
backfills it from existing assignments. Adds
review_assignments.delivered_channels so redelivery skips channels that
already delivered.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    rounds = op.create_table(
        "pull_request_rounds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pull_request_id", sa.Text(), nullable=False),
        sa.Column("routing_round", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "pull_request_id", "routing_round", name="uq_pull_request_rounds_pr_round"
        ),
    )
    op.create_index(
        "ix_pull_request_rounds_organization_id", "pull_request_rounds", ["organization_id"]
    )

    assignments = sa.table(
        "review_assignments",
        sa.column("organization_id", sa.Uuid()),
        sa.column("pull_request_id", sa.Text()),
        sa.column("routing_round", sa.Integer()),
    )
    existing = op.get_bind().execute(
        sa.select(
            assignments.c.organization_id,
            assignments.c.pull_request_id,
            assignments.c.routing_round,
        ).distinct()
    )
    now = datetime.now(timezone.utc)
    op.bulk_insert(
        rounds,
        [
            {
                "id": uuid.uuid4(),
                "organization_id": row.organization_id,
                "pull_request_id": row.pull_request_id,
                "routing_round": row.routing_round,
                "created_at": now,
                "updated_at": now,
            }
            for row in existing
        ],
    )

    op.add_column(
        "review_assignments",
        sa.Column("delivered_channels", sa.JSON(), nullable=False, server_default="[]"),
    )


def downgrade() -> None:
    with op.batch_alter_table("review_assignments") as batch:
        batch.drop_column("delivered_channels")
    op.drop_index("ix_pull_request_rounds_organization_id", table_name="pull_request_rounds")
    op.drop_table("pull_request_rounds")

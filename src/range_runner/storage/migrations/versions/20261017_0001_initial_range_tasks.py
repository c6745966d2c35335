"""Initial range task schema: tasks, events, tombstones."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "range_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("x", sa.BigInteger(), nullable=False),
        sa.Column("y", sa.BigInteger(), nullable=False),
        sa.Column("current", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_range_tasks_status", "range_tasks", ["status"])
    op.create_index("idx_range_tasks_status_created", "range_tasks", ["status", "created_at"])
    op.create_index("idx_range_tasks_status_updated", "range_tasks", ["status", "updated_at"])

    op.create_table(
        "range_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["range_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_range_task_events_task_id", "range_task_events", ["task_id"])
    op.create_index("ix_range_task_events_event_type", "range_task_events", ["event_type"])
    op.create_index(
        "idx_range_task_events_task_time",
        "range_task_events",
        ["task_id", "created_at"],
    )

    op.create_table(
        "range_task_tombstones",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index(
        "ix_range_task_tombstones_deleted_at",
        "range_task_tombstones",
        ["deleted_at"],
    )


def downgrade() -> None:
    op.drop_table("range_task_tombstones")
    op.drop_table("range_task_events")
    op.drop_table("range_tasks")

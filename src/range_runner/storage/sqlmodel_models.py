"""SQLModel ORM tables for task storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Text, false
from sqlmodel import Field, SQLModel


class RangeTask(SQLModel, table=True):
    __tablename__ = "range_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_range_tasks_status_created", "status", "created_at"),
        Index("idx_range_tasks_status_updated", "status", "updated_at"),
    )

    task_id: str = Field(primary_key=True)
    x: int = Field(sa_column=Column(BigInteger, nullable=False))
    y: int = Field(sa_column=Column(BigInteger, nullable=False))
    current: int = Field(sa_column=Column(BigInteger, nullable=False))
    status: str = Field(index=True)
    version: int = Field(default=1)
    error_summary: str | None = Field(default=None, sa_column=Column(Text))
    cancel_requested: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=false()),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RangeTaskEvent(SQLModel, table=True):
    __tablename__ = "range_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_range_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("range_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None)
    status_to: str | None = Field(default=None)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RangeTaskTombstone(SQLModel, table=True):
    __tablename__ = "range_task_tombstones"  # type: ignore[bad-override]

    task_id: str = Field(primary_key=True)
    deleted_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )

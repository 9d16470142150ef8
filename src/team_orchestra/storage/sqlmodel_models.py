"""SQLModel ORM tables for the run journal."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class OrchestrationRun(SQLModel, table=True):
    __tablename__ = "orchestration_runs"  # type: ignore[bad-override]

    run_id: str = Field(primary_key=True)
    team_name: str = Field(index=True)
    status: str = Field(index=True)
    mode: str
    continuous: bool = False
    config_json: str = Field(sa_column=Column(Text, nullable=False))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    tasks_total: int = 0
    cycles_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    blocked_count: int = 0
    unscheduled_count: int = 0
    adapted_count: int = 0
    generated_count: int = 0
    error_summary: str | None = None


class PlanningCycleRecord(SQLModel, table=True):
    __tablename__ = "planning_cycles"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("run_id", "cycle_id", name="uq_planning_cycles_run_cycle"),
    )

    id: int | None = Field(default=None, primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("orchestration_runs.run_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    cycle_id: int
    selected_count: int = 0
    assigned_count: int = 0
    confidence: float = 0.0
    rationale: str = Field(default="", sa_column=Column(Text, nullable=False))
    details_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RunEvent(SQLModel, table=True):
    __tablename__ = "run_events"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("run_id", "sequence", name="uq_run_events_run_sequence"),
        Index("idx_run_events_run_type", "run_id", "event_type"),
    )

    id: int | None = Field(default=None, primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("orchestration_runs.run_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    sequence: int
    event_type: str
    cycle_id: int | None = None
    task_id: str | None = Field(default=None, index=True)
    agent_id: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

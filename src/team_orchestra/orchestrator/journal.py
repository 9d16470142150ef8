"""Run journal: SQLite audit trail of runs, planning cycles and events."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from sqlalchemy import func
from sqlmodel import Session, col, select

from team_orchestra.orchestrator.events import OrchestrationEvent
from team_orchestra.orchestrator.models import (
    OrchestrationConfig,
    PlanningCycle,
    PlanningCycleView,
    RunDetails,
    RunEventView,
    RunStatus,
    RunSummary,
    RunView,
)
from team_orchestra.storage.alembic_runner import upgrade_head
from team_orchestra.storage.common import as_utc, build_sqlite_engine, utc_now
from team_orchestra.storage.sqlmodel_models import (
    OrchestrationRun,
    PlanningCycleRecord,
    RunEvent,
)

logger = logging.getLogger(__name__)


class RunJournalRepository:
    """Journal persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def start_run(
        self,
        *,
        run_id: str,
        team_name: str,
        config: OrchestrationConfig,
        tasks_total: int,
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                OrchestrationRun(
                    run_id=run_id,
                    team_name=team_name,
                    status=RunStatus.RUNNING.value,
                    mode=config.mode.value,
                    continuous=config.continuous,
                    config_json=json.dumps(config.to_details(), sort_keys=True),
                    started_at=utc_now(),
                    tasks_total=tasks_total,
                ),
            )
            session.commit()

    def record_event(self, *, run_id: str, event: OrchestrationEvent) -> None:
        with Session(self.engine) as session:
            session.add(
                RunEvent(
                    run_id=run_id,
                    sequence=event.sequence,
                    event_type=event.event_type.value,
                    cycle_id=event.cycle_id,
                    task_id=event.task_id,
                    agent_id=event.agent_id,
                    details_json=(
                        json.dumps(event.details, sort_keys=True, default=str)
                        if event.details
                        else None
                    ),
                    created_at=event.created_at,
                ),
            )
            session.commit()

    def record_cycle(self, *, run_id: str, cycle: PlanningCycle) -> None:
        with Session(self.engine) as session:
            session.add(
                PlanningCycleRecord(
                    run_id=run_id,
                    cycle_id=cycle.cycle_id,
                    selected_count=len(cycle.selected_task_ids),
                    assigned_count=len(cycle.assignments),
                    confidence=cycle.confidence,
                    rationale=cycle.rationale,
                    details_json=json.dumps(cycle.to_details(), sort_keys=True),
                    created_at=cycle.created_at,
                ),
            )
            session.commit()

    def finish_run(self, summary: RunSummary, *, error_summary: str | None = None) -> None:
        """Store final status and counters for a run."""

        with Session(self.engine) as session:
            row = session.get(OrchestrationRun, summary.run_id)
            if row is None:
                raise KeyError(f"Run not found: {summary.run_id}")
            row.status = summary.status.value
            row.finished_at = utc_now()
            row.cycles_count = summary.cycles
            row.completed_count = len(summary.completed)
            row.failed_count = len(summary.failed)
            row.blocked_count = len(summary.blocked)
            row.unscheduled_count = len(summary.unscheduled)
            row.adapted_count = len(summary.adapted)
            row.generated_count = len(summary.generated)
            row.error_summary = error_summary
            session.add(row)
            session.commit()

    def list_runs(
        self,
        *,
        status: RunStatus | None = None,
        limit: int = 20,
    ) -> list[RunView]:
        """List recent runs, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = (
                select(OrchestrationRun)
                .order_by(col(OrchestrationRun.started_at).desc())
                .limit(limit)
            )
            if status is not None:
                statement = statement.where(OrchestrationRun.status == status.value)
            rows = session.exec(statement).all()
        return [_to_run_view(row) for row in rows]

    def get_run_details(self, *, run_id: str) -> RunDetails | None:
        """Return run with planning cycles and event stream."""

        with Session(self.engine) as session:
            run = session.get(OrchestrationRun, run_id)
            if run is None:
                return None
            cycle_rows = session.exec(
                select(PlanningCycleRecord)
                .where(PlanningCycleRecord.run_id == run_id)
                .order_by(col(PlanningCycleRecord.cycle_id).asc()),
            ).all()
            event_rows = session.exec(
                select(RunEvent)
                .where(RunEvent.run_id == run_id)
                .order_by(col(RunEvent.sequence).asc()),
            ).all()
            run_view = _to_run_view(run)

        return RunDetails(
            run=run_view,
            cycles=[
                PlanningCycleView(
                    cycle_id=row.cycle_id,
                    selected_count=row.selected_count,
                    assigned_count=row.assigned_count,
                    confidence=row.confidence,
                    rationale=row.rationale,
                    created_at=as_utc(row.created_at),
                    details=_load_details(row.details_json),
                )
                for row in cycle_rows
            ],
            events=[_to_event_view(row) for row in event_rows],
        )

    def list_events(
        self,
        *,
        since: datetime | None = None,
        run_id: str | None = None,
    ) -> list[RunEventView]:
        """Events across runs, oldest first."""

        with Session(self.engine) as session:
            statement = select(RunEvent).order_by(
                col(RunEvent.created_at).asc(),
                col(RunEvent.sequence).asc(),
            )
            if since is not None:
                statement = statement.where(RunEvent.created_at >= since)
            if run_id is not None:
                statement = statement.where(RunEvent.run_id == run_id)
            rows = session.exec(statement).all()
        return [_to_event_view(row) for row in rows]

    def mean_cycle_confidence(self, *, since: datetime | None = None) -> float | None:
        with Session(self.engine) as session:
            statement = select(func.avg(PlanningCycleRecord.confidence))
            if since is not None:
                statement = statement.where(PlanningCycleRecord.created_at >= since)
            value = session.exec(statement).one()
        return float(value) if value is not None else None

    def count_runs(self, *, since: datetime | None = None) -> dict[str, int]:
        """Run counts grouped by status."""

        with Session(self.engine) as session:
            statement = select(OrchestrationRun.status, func.count()).group_by(
                OrchestrationRun.status,
            )
            if since is not None:
                statement = statement.where(OrchestrationRun.started_at >= since)
            rows = session.exec(statement).all()
        return {status: int(count) for status, count in rows}


class JournalListener:
    """Event listener that persists every event of one run."""

    def __init__(self, repository: RunJournalRepository, run_id: str) -> None:
        self.repository = repository
        self.run_id = run_id

    def __call__(self, event: OrchestrationEvent) -> None:
        self.repository.record_event(run_id=self.run_id, event=event)


def _load_details(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed journal details payload")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _to_run_view(row: OrchestrationRun) -> RunView:
    return RunView(
        run_id=row.run_id,
        team_name=row.team_name,
        status=RunStatus(row.status),
        mode=row.mode,
        continuous=row.continuous,
        started_at=as_utc(row.started_at),
        finished_at=as_utc(row.finished_at) if row.finished_at is not None else None,
        tasks_total=row.tasks_total,
        cycles_count=row.cycles_count,
        completed_count=row.completed_count,
        failed_count=row.failed_count,
        blocked_count=row.blocked_count,
        unscheduled_count=row.unscheduled_count,
        adapted_count=row.adapted_count,
        generated_count=row.generated_count,
        error_summary=row.error_summary,
        config=_load_details(row.config_json),
    )


def _to_event_view(row: RunEvent) -> RunEventView:
    return RunEventView(
        run_id=row.run_id,
        sequence=row.sequence,
        event_type=row.event_type,
        cycle_id=row.cycle_id,
        task_id=row.task_id,
        agent_id=row.agent_id,
        created_at=as_utc(row.created_at),
        details=_load_details(row.details_json),
    )

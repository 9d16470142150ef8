"""Controllers for team-orchestra CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from team_orchestra.config import Settings
from team_orchestra.orchestrator.agent_registry import AgentRegistry
from team_orchestra.orchestrator.descriptor import read_team_descriptor
from team_orchestra.orchestrator.engine import Orchestrator
from team_orchestra.orchestrator.events import OrchestrationEvent
from team_orchestra.orchestrator.executors import EchoExecutor
from team_orchestra.orchestrator.journal import RunJournalRepository
from team_orchestra.orchestrator.metrics import build_run_metrics, render_stats_lines
from team_orchestra.orchestrator.models import RunStatus, Task, TeamDescriptor
from team_orchestra.orchestrator.runner import OrchestrationRunner
from team_orchestra.orchestrator.task_repository import TaskRepository


@dataclass(slots=True)
class ValidateCommand:
    """CLI input for descriptor validation."""

    descriptor_path: Path


@dataclass(slots=True)
class PlanCommand:
    """CLI input for a dry-run planning cycle."""

    descriptor_path: Path


@dataclass(slots=True)
class RunCommand:
    """CLI input for executing a team with the echo executor."""

    descriptor_path: Path
    db_path: Path | None
    journal: bool = True
    delay_seconds: float | None = None
    transient_failures: int | None = None
    timeout_seconds: float | None = None
    show_events: bool = False


@dataclass(slots=True)
class ListRunsCommand:
    """CLI input for listing journaled runs."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectRunCommand:
    """CLI input for one journaled run."""

    db_path: Path | None
    run_id: str
    show_events: bool = True


@dataclass(slots=True)
class RunStatsCommand:
    """CLI input for windowed orchestration stats."""

    db_path: Path | None
    hours: int


class TeamOrchestraCliController:
    """Coordinates descriptor, run and journal CLI operations."""

    def validate(self, command: ValidateCommand) -> list[str]:
        settings = _settings(None)
        descriptor = read_team_descriptor(
            command.descriptor_path,
            defaults=settings.orchestrator,
        )
        config = descriptor.config
        lines = [
            f"Descriptor OK: {descriptor.name}",
            f"Agents: {len(descriptor.agents)} Tasks: {len(descriptor.backlog)}",
            (
                f"Mode: {config.mode.value} continuous={config.continuous} "
                f"max_active_tasks={config.max_active_tasks} "
                f"prioritization={config.prioritization.value} "
                f"distribution={config.workload_distribution.value} "
                f"task_generation={config.allow_task_generation}"
            ),
        ]
        for agent in descriptor.agents:
            lines.append(
                f"  agent {agent.agent_id} role={agent.role or '-'} capacity={agent.capacity} "
                f"skills={','.join(sorted(agent.skills)) or '-'}",
            )
        for task in descriptor.backlog:
            lines.append(
                f"  task {task.task_id} priority={task.priority} "
                f"deps={','.join(sorted(task.dependencies)) or '-'} "
                f"skills={','.join(sorted(task.required_skills)) or '-'}"
                f"{_task_policy(task)}",
            )
        return lines

    def plan(self, command: PlanCommand) -> list[str]:
        """Run the first planning cycle without executing anything."""

        settings = _settings(None)
        descriptor = read_team_descriptor(
            command.descriptor_path,
            defaults=settings.orchestrator,
        )
        orchestrator = _build_orchestrator(descriptor)
        cycle = orchestrator.plan()
        if cycle is None:
            return ["Nothing to plan."]
        lines = [
            f"Cycle {cycle.cycle_id}: {cycle.rationale}",
            f"Confidence: {cycle.confidence:.2f}",
            f"Selected: {', '.join(cycle.selected_task_ids) or '-'}",
        ]
        for assignment in cycle.assignments:
            lines.append(
                f"  {assignment.task_id} -> {assignment.agent_id} "
                f"skill_match={assignment.skill_match:.2f}"
                f"{_task_policy(orchestrator.repository.get(assignment.task_id))}",
            )
        for adaptation in cycle.adaptations:
            lines.append(f"  adapted {adaptation.task_id}: {adaptation.reason}")
        for generation in cycle.generations:
            lines.append(
                f"  generated {generation.task_id} for {generation.addresses_task_id}: "
                f"{generation.reason}",
            )
        if cycle.unassigned_task_ids:
            lines.append(f"Unassigned: {', '.join(cycle.unassigned_task_ids)}")
        if cycle.blocked_task_ids:
            lines.append(f"Blocked: {', '.join(cycle.blocked_task_ids)}")
        return lines

    def run(self, command: RunCommand) -> list[str]:
        settings = _settings(command.db_path)
        if command.timeout_seconds is not None:
            settings.orchestrator.run_timeout_seconds = command.timeout_seconds
        if command.delay_seconds is not None:
            settings.executor.delay_seconds = command.delay_seconds
        if command.transient_failures is not None:
            settings.executor.transient_failures = command.transient_failures
        settings.validate()
        descriptor = read_team_descriptor(
            command.descriptor_path,
            defaults=settings.orchestrator,
        )
        executor = EchoExecutor(
            delay_seconds=settings.executor.delay_seconds,
            transient_failures=settings.executor.transient_failures,
        )
        event_lines: list[str] = []

        def _collect(event: OrchestrationEvent) -> None:
            event_lines.append(_format_event(event))

        use_journal = command.journal and settings.journal_enabled
        with _journal(settings, enabled=use_journal) as journal:
            runner = OrchestrationRunner(
                descriptor,
                executor=executor,
                settings=settings.orchestrator,
                journal=journal,
            )
            if command.show_events:
                runner.subscribe(_collect)
            summary = runner.run()

        lines = list(event_lines)
        lines.extend(
            [
                f"Run {summary.run_id} ({summary.team_name}): status={summary.status.value}",
                (
                    f"Cycles: {summary.cycles} completed={len(summary.completed)} "
                    f"failed={len(summary.failed)} blocked={len(summary.blocked)} "
                    f"unscheduled={len(summary.unscheduled)} adapted={len(summary.adapted)} "
                    f"generated={len(summary.generated)} events={summary.events}"
                ),
            ],
        )
        for label, task_ids in (
            ("Blocked", summary.blocked),
            ("Failed", summary.failed),
            ("Unscheduled", summary.unscheduled),
            ("Generated", summary.generated),
        ):
            if task_ids:
                lines.append(f"{label}: {', '.join(task_ids)}")
        if not use_journal:
            lines.append("Journal: disabled")
        return lines

    def list_runs(self, command: ListRunsCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            runs = repository.list_runs(status=status_filter, limit=command.limit)

        lines = [f"Runs: {len(runs)}"]
        for run in runs:
            lines.append(
                f"  {run.run_id} team={run.team_name} status={run.status.value} "
                f"mode={run.mode} cycles={run.cycles_count} "
                f"completed={run.completed_count}/{run.tasks_total} "
                f"started_at={run.started_at.isoformat()}",
            )
        return lines

    def inspect_run(self, command: InspectRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            details = repository.get_run_details(run_id=command.run_id)
        if details is None:
            return [f"Run not found: {command.run_id}"]

        run = details.run
        finished = run.finished_at.isoformat() if run.finished_at is not None else "-"
        lines = [
            f"Run: {run.run_id}",
            f"Team: {run.team_name}",
            f"Status: {run.status.value}",
            f"Mode: {run.mode} continuous={run.continuous}",
            f"Started: {run.started_at.isoformat()} Finished: {finished}",
            (
                f"Tasks: total={run.tasks_total} completed={run.completed_count} "
                f"failed={run.failed_count} blocked={run.blocked_count} "
                f"unscheduled={run.unscheduled_count}"
            ),
            f"Adapted: {run.adapted_count} Generated: {run.generated_count}",
            f"Error: {run.error_summary or '-'}",
            f"Cycles: {len(details.cycles)}",
        ]
        for cycle in details.cycles:
            lines.append(
                f"  cycle {cycle.cycle_id} selected={cycle.selected_count} "
                f"assigned={cycle.assigned_count} confidence={cycle.confidence:.2f} "
                f"{cycle.rationale}",
            )
        lines.append(f"Events: {len(details.events)}")
        if command.show_events:
            for event in details.events:
                lines.append(
                    f"  #{event.sequence} {event.created_at.isoformat()} {event.event_type} "
                    f"task={event.task_id or '-'} agent={event.agent_id or '-'}",
                )
        return lines

    def stats(self, command: RunStatsCommand) -> list[str]:
        """Show orchestration health metrics for a time window."""

        settings = _settings(command.db_path)
        cutoff = datetime.now(tz=UTC) - timedelta(hours=max(1, command.hours))
        with _repository(settings) as repository:
            events = repository.list_events(since=cutoff)
            run_status_counts = repository.count_runs(since=cutoff)
            mean_confidence = repository.mean_cycle_confidence(since=cutoff)

        snapshot = build_run_metrics(
            events=events,
            run_status_counts=run_status_counts,
            mean_cycle_confidence=mean_confidence,
        )
        return render_stats_lines(snapshot=snapshot, hours=command.hours)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _build_orchestrator(descriptor: TeamDescriptor) -> Orchestrator:
    return Orchestrator(
        repository=TaskRepository(descriptor.backlog),
        registry=AgentRegistry(descriptor.agents),
        config=descriptor.config,
    )


def _task_policy(task: Task) -> str:
    parts = []
    if task.preferred_agent_id:
        parts.append(f"prefers={task.preferred_agent_id}")
    governance = task.governance_details()
    if "quality_gates" in governance:
        parts.append(f"gates={','.join(governance['quality_gates'])}")
    if "external_validation_required" in governance:
        parts.append("external_validation")
    if "orchestration_rules" in governance:
        parts.append(f"rules={governance['orchestration_rules']!r}")
    return "".join(f" {part}" for part in parts)


def _format_event(event: OrchestrationEvent) -> str:
    parts = [f"#{event.sequence}", event.event_type.value]
    if event.cycle_id is not None:
        parts.append(f"cycle={event.cycle_id}")
    if event.task_id is not None:
        parts.append(f"task={event.task_id}")
    if event.agent_id is not None:
        parts.append(f"agent={event.agent_id}")
    return " ".join(parts)


def _parse_status(value: str | None) -> RunStatus | None:
    if value is None:
        return None
    return RunStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[RunJournalRepository]:
    repository = RunJournalRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _journal(settings: Settings, *, enabled: bool) -> Iterator[RunJournalRepository | None]:
    if not enabled:
        yield None
        return
    with _repository(settings) as repository:
        yield repository

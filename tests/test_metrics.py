from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from team_orchestra.orchestrator.metrics import build_run_metrics, render_stats_lines
from team_orchestra.orchestrator.models import RunEventView

pytestmark = [
    allure.epic("Run Journal"),
    allure.feature("Observability"),
]

_T0 = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _event(
    sequence: int,
    event_type: str,
    *,
    task_id: str | None = None,
    agent_id: str | None = None,
    seconds: float = 0.0,
    details: dict | None = None,
    run_id: str = "run-1",
) -> RunEventView:
    return RunEventView(
        run_id=run_id,
        sequence=sequence,
        event_type=event_type,
        cycle_id=None,
        task_id=task_id,
        agent_id=agent_id,
        created_at=_T0 + timedelta(seconds=seconds),
        details=details or {},
    )


def test_build_run_metrics_counts_and_latency() -> None:
    events = [
        _event(1, "cycle-completed"),
        _event(2, "task-selected", task_id="T1"),
        _event(3, "task-assigned", task_id="T1", agent_id="a1"),
        _event(4, "task-started", task_id="T1", agent_id="a1", seconds=0),
        _event(
            5,
            "task-failed",
            task_id="T1",
            agent_id="a1",
            seconds=1,
            details={"failure_class": "transient"},
        ),
        _event(6, "task-retried", task_id="T1", agent_id="a1", seconds=1),
        _event(7, "task-started", task_id="T1", agent_id="a1", seconds=2),
        _event(8, "task-completed", task_id="T1", agent_id="a1", seconds=6),
        _event(9, "task-blocked", task_id="T2", seconds=6),
        _event(10, "prioritization-fallback", seconds=7),
    ]

    snapshot = build_run_metrics(
        events=events,
        run_status_counts={"completed": 2},
        mean_cycle_confidence=0.8,
    )

    assert snapshot.cycles == 1
    assert snapshot.tasks_completed == 1
    assert snapshot.attempts_failed == 1
    assert snapshot.tasks_retried == 1
    assert snapshot.tasks_blocked == 1
    assert snapshot.prioritization_fallbacks == 1
    assert snapshot.retry_success_ratio == 1.0
    assert snapshot.failure_class_counts == {"transient": 1}
    assert snapshot.completed_by_agent == {"a1": 1}
    latency = snapshot.latency_by_agent["a1"]
    assert latency.sample_size == 1
    assert latency.p50_seconds == 4.0


def test_same_task_id_in_different_runs_is_tracked_separately() -> None:
    events = [
        _event(1, "task-retried", task_id="T1", run_id="run-1"),
        _event(1, "task-completed", task_id="T1", agent_id="a1", run_id="run-2"),
    ]

    snapshot = build_run_metrics(events=events, run_status_counts={}, mean_cycle_confidence=None)

    assert snapshot.retry_success_ratio == 0.0


def test_render_stats_lines_for_empty_window() -> None:
    snapshot = build_run_metrics(events=[], run_status_counts={}, mean_cycle_confidence=None)

    lines = render_stats_lines(snapshot=snapshot, hours=24)

    assert lines[0] == "Orchestration health (window=24h)"
    assert "Runs: none" in lines
    assert "Cycles: 0 mean_confidence=n/a" in lines
    assert "Recovery success: n/a" in lines
    assert lines[-1] == "Latency percentiles: none"


def test_render_stats_lines_with_data() -> None:
    events = [
        _event(1, "task-started", task_id="T1", agent_id="a1"),
        _event(2, "task-completed", task_id="T1", agent_id="a1", seconds=2),
    ]
    snapshot = build_run_metrics(
        events=events,
        run_status_counts={"completed": 1, "cancelled": 1},
        mean_cycle_confidence=0.5,
    )

    lines = render_stats_lines(snapshot=snapshot, hours=6)

    assert "Runs: cancelled=1 completed=1" in lines
    assert "Cycles: 0 mean_confidence=50.00%" in lines
    assert "Completed by agent: a1=1" in lines
    assert "  agent=a1 n=1 p50=2.000s p90=2.000s p99=2.000s" in lines

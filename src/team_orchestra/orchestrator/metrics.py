"""Observability metrics derived from journaled orchestration events."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime

from team_orchestra.orchestrator.models import RunEventView


@dataclass(slots=True)
class LatencyPercentiles:
    """Start-to-completion latency percentiles for one agent."""

    sample_size: int
    p50_seconds: float
    p90_seconds: float
    p99_seconds: float


@dataclass(slots=True)
class RunMetricsSnapshot:
    """Aggregated orchestration metrics used by the stats command."""

    run_status_counts: dict[str, int]
    cycles: int
    mean_cycle_confidence: float | None
    tasks_selected: int
    tasks_assigned: int
    tasks_adapted: int
    adaptations_rejected: int
    tasks_generated: int
    tasks_completed: int
    attempts_failed: int
    tasks_retried: int
    tasks_reassigned: int
    tasks_requeued: int
    tasks_blocked: int
    prioritization_fallbacks: int
    retry_success_ratio: float | None
    failure_class_counts: dict[str, int]
    completed_by_agent: dict[str, int]
    latency_by_agent: dict[str, LatencyPercentiles]


def build_run_metrics(
    *,
    events: list[RunEventView],
    run_status_counts: dict[str, int],
    mean_cycle_confidence: float | None,
) -> RunMetricsSnapshot:
    """Build one metrics snapshot from journaled events."""

    counts = Counter[str](event.event_type for event in events)
    failure_class_counts = Counter[str]()
    completed_by_agent = Counter[str]()
    started_at: dict[tuple[str, str], datetime] = {}
    latency_values: dict[str, list[float]] = defaultdict(list)
    retried: set[tuple[str, str]] = set()
    completed: set[tuple[str, str]] = set()

    for event in events:
        if event.task_id is None:
            continue
        key = (event.run_id, event.task_id)
        if event.event_type == "task-started":
            started_at[key] = event.created_at
        elif event.event_type == "task-failed":
            failure_class = event.details.get("failure_class")
            if isinstance(failure_class, str):
                failure_class_counts[failure_class] += 1
        elif event.event_type in {"task-retried", "task-reassigned", "task-requeued"}:
            retried.add(key)
        elif event.event_type == "task-completed":
            completed.add(key)
            agent_id = event.agent_id or "-"
            completed_by_agent[agent_id] += 1
            started = started_at.get(key)
            if started is not None:
                latency_values[agent_id].append(
                    max(0.0, (event.created_at - started).total_seconds()),
                )

    latency_by_agent = {
        agent_id: LatencyPercentiles(
            sample_size=len(values),
            p50_seconds=_percentile(values, 0.50),
            p90_seconds=_percentile(values, 0.90),
            p99_seconds=_percentile(values, 0.99),
        )
        for agent_id, values in sorted(latency_values.items())
    }

    return RunMetricsSnapshot(
        run_status_counts=dict(run_status_counts),
        cycles=counts["cycle-completed"],
        mean_cycle_confidence=mean_cycle_confidence,
        tasks_selected=counts["task-selected"],
        tasks_assigned=counts["task-assigned"],
        tasks_adapted=counts["task-adapted"],
        adaptations_rejected=counts["adaptation-rejected"],
        tasks_generated=counts["task-generated"],
        tasks_completed=counts["task-completed"],
        attempts_failed=counts["task-failed"],
        tasks_retried=counts["task-retried"],
        tasks_reassigned=counts["task-reassigned"],
        tasks_requeued=counts["task-requeued"],
        tasks_blocked=counts["task-blocked"],
        prioritization_fallbacks=counts["prioritization-fallback"],
        retry_success_ratio=_safe_ratio(
            numerator=len(retried & completed),
            denominator=len(retried),
        ),
        failure_class_counts=dict(failure_class_counts),
        completed_by_agent=dict(completed_by_agent),
        latency_by_agent=latency_by_agent,
    )


def render_stats_lines(*, snapshot: RunMetricsSnapshot, hours: int) -> list[str]:
    """Render operator-facing metrics lines for CLI output."""

    lines = [
        f"Orchestration health (window={hours}h)",
        "Runs: " + (_fmt_key_value(snapshot.run_status_counts) or "none"),
        (
            f"Cycles: {snapshot.cycles} "
            f"mean_confidence={_fmt_ratio(snapshot.mean_cycle_confidence)}"
        ),
        (
            "Planning: "
            f"selected={snapshot.tasks_selected} assigned={snapshot.tasks_assigned} "
            f"adapted={snapshot.tasks_adapted} "
            f"adaptations_rejected={snapshot.adaptations_rejected} "
            f"generated={snapshot.tasks_generated} "
            f"prioritization_fallbacks={snapshot.prioritization_fallbacks}"
        ),
        (
            "Execution: "
            f"completed={snapshot.tasks_completed} failed_attempts={snapshot.attempts_failed} "
            f"retried={snapshot.tasks_retried} reassigned={snapshot.tasks_reassigned} "
            f"requeued={snapshot.tasks_requeued} blocked={snapshot.tasks_blocked}"
        ),
        f"Recovery success: {_fmt_ratio(snapshot.retry_success_ratio)}",
        (
            "Failure-class distribution: "
            + (_fmt_key_value(snapshot.failure_class_counts) or "none")
        ),
        (
            "Completed by agent: "
            + (_fmt_key_value(snapshot.completed_by_agent) or "none")
        ),
    ]
    if snapshot.latency_by_agent:
        lines.append("Latency percentiles (task-started -> task-completed):")
        for agent_id, metrics in snapshot.latency_by_agent.items():
            lines.append(
                "  "
                f"agent={agent_id} n={metrics.sample_size} "
                f"p50={metrics.p50_seconds:.3f}s p90={metrics.p90_seconds:.3f}s "
                f"p99={metrics.p99_seconds:.3f}s",
            )
    else:
        lines.append("Latency percentiles: none")
    return lines


def _safe_ratio(*, numerator: int, denominator: int) -> float | None:
    if denominator <= 0:
        return None
    return numerator / denominator


def _fmt_ratio(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{value:.2%}"


def _fmt_key_value(values: dict[str, int]) -> str:
    if not values:
        return ""
    return " ".join(f"{key}={values[key]}" for key in sorted(values))


def _percentile(values: list[float], percentile: float) -> float:
    if not values:
        return 0.0
    sorted_values = sorted(values)
    if len(sorted_values) == 1:
        return sorted_values[0]
    rank = (len(sorted_values) - 1) * percentile
    lower = int(rank)
    upper = min(lower + 1, len(sorted_values) - 1)
    weight = rank - lower
    return sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight

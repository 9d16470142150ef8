"""Domain models for task orchestration runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class OrchestrationMode(str, Enum):
    """How freely the orchestrator may rewrite selected tasks."""

    CONSERVATIVE = "conservative"
    ADAPTIVE = "adaptive"
    INNOVATIVE = "innovative"
    LEARNING = "learning"


class PrioritizationName(str, Enum):
    """Supported backlog ranking strategies."""

    STATIC = "static"
    DYNAMIC = "dynamic"
    AI_DRIVEN = "ai-driven"


class DistributionName(str, Enum):
    """Supported agent selection strategies."""

    SKILLS_BASED = "skills-based"
    BALANCED = "balanced"
    AVAILABILITY = "availability"


class TaskStatus(str, Enum):
    """Task lifecycle states inside one run."""

    BACKLOG = "backlog"
    SELECTED = "selected"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class OrchestratorState(str, Enum):
    """Planning state machine."""

    IDLE = "idle"
    PLANNING = "planning"
    ASSIGNING = "assigning"
    WAITING = "waiting"
    REPLANNING = "replanning"
    DONE = "done"


class RunStatus(str, Enum):
    """Final status reported for a whole run."""

    RUNNING = "running"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


class FailureClass(str, Enum):
    """Normalized execution failure classes used by retry policy."""

    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"
    CANCELLED = "cancelled"


PRIORITY_LABELS: dict[str, int] = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
}
DEFAULT_PRIORITY = PRIORITY_LABELS["medium"]
HIGH_PRIORITY = PRIORITY_LABELS["high"]

IN_FLIGHT_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.RUNNING})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.BLOCKED})

# Fields an adaptation may rewrite; everything else is structural.
ADAPTABLE_FIELDS = frozenset({"description", "expected_output", "resource_requirements"})
PROTECTED_FIELDS = frozenset({"task_id", "dependencies", "required_skills"})


@dataclass(slots=True)
class Task:
    """One unit of work in the backlog."""

    task_id: str
    title: str
    description: str
    expected_output: str = ""
    required_skills: frozenset[str] = frozenset()
    estimated_effort: float | None = None
    dependencies: frozenset[str] = frozenset()
    priority: int = DEFAULT_PRIORITY
    dynamic_priority: bool = True
    adaptable: bool = False
    split_strategy: str | None = None
    merge_compatible: bool = False
    resource_requirements: dict[str, Any] = field(default_factory=dict)
    quality_gates: tuple[str, ...] = ()
    external_validation_required: bool = False
    orchestration_rules: str = ""
    preferred_agent_id: str | None = None
    status: TaskStatus = TaskStatus.BACKLOG
    assigned_agent_id: str | None = None
    enqueued_at: float = 0.0
    unassigned_cycles: int = 0
    attempts: int = 0
    attempts_with_agent: int = 0
    excluded_agent_ids: frozenset[str] = frozenset()
    generated: bool = False
    addresses_task_id: str | None = None
    outcome: TaskOutcome | None = None
    failure_reason: str | None = None

    @property
    def in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def governance_details(self) -> dict[str, Any]:
        """Quality gates and rules an executor or reviewer must honor; empty keys omitted."""

        details: dict[str, Any] = {}
        if self.quality_gates:
            details["quality_gates"] = list(self.quality_gates)
        if self.external_validation_required:
            details["external_validation_required"] = True
        if self.orchestration_rules:
            details["orchestration_rules"] = self.orchestration_rules
        return details

    def adaptable_snapshot(self) -> dict[str, Any]:
        """Copy of the fields an adaptation is allowed to touch."""

        return {
            "description": self.description,
            "expected_output": self.expected_output,
            "resource_requirements": dict(self.resource_requirements),
        }


@dataclass(slots=True)
class Agent:
    """Capability profile of one team member."""

    agent_id: str
    name: str
    role: str = ""
    skills: frozenset[str] = frozenset()
    capacity: int = 1
    load: int = 0
    available: bool = True
    registration_index: int = 0

    @property
    def remaining_capacity(self) -> int:
        if not self.available:
            return 0
        return max(0, self.capacity - self.load)


@dataclass(frozen=True, slots=True)
class OrchestrationConfig:
    """Per-run orchestration settings, immutable once the run starts."""

    mode: OrchestrationMode = OrchestrationMode.ADAPTIVE
    continuous: bool = False
    max_active_tasks: int = 3
    prioritization: PrioritizationName = PrioritizationName.STATIC
    workload_distribution: DistributionName = DistributionName.SKILLS_BASED
    allow_task_generation: bool = False
    min_skill_match: float = 0.0
    max_unassigned_cycles: int = 3
    max_retries_per_agent: int = 1
    min_replan_interval_seconds: float = 0.0
    urgency_per_second: float = 1.0
    generation_match_threshold: float = 0.5
    max_generated_tasks: int = 5
    strategy: str = ""

    def to_details(self) -> dict[str, object]:
        """Serialize config for events and the run journal."""

        return {
            "mode": self.mode.value,
            "continuous": self.continuous,
            "max_active_tasks": self.max_active_tasks,
            "prioritization": self.prioritization.value,
            "workload_distribution": self.workload_distribution.value,
            "allow_task_generation": self.allow_task_generation,
            "min_skill_match": self.min_skill_match,
            "max_unassigned_cycles": self.max_unassigned_cycles,
            "max_retries_per_agent": self.max_retries_per_agent,
            "min_replan_interval_seconds": self.min_replan_interval_seconds,
            "urgency_per_second": self.urgency_per_second,
            "generation_match_threshold": self.generation_match_threshold,
            "max_generated_tasks": self.max_generated_tasks,
        }


@dataclass(slots=True)
class TeamDescriptor:
    """Validated team input supplied once per run."""

    name: str
    agents: list[Agent]
    backlog: list[Task]
    config: OrchestrationConfig


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Result produced by an executor for one task."""

    output: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Assignment:
    """One task bound to one agent within a planning cycle."""

    task_id: str
    agent_id: str
    skill_match: float


@dataclass(frozen=True, slots=True)
class AdaptationRecord:
    """Audit entry for one task rewrite."""

    task_id: str
    cycle_id: int
    reason: str
    before: dict[str, Any]
    after: dict[str, Any]


@dataclass(frozen=True, slots=True)
class GenerationRecord:
    """Audit entry for one synthesized task."""

    task_id: str
    cycle_id: int
    reason: str
    addresses_task_id: str | None
    missing_skills: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PlanningCycle:
    """Snapshot produced by one invocation of the orchestrator."""

    cycle_id: int
    selected_task_ids: tuple[str, ...]
    assignments: tuple[Assignment, ...]
    adaptations: tuple[AdaptationRecord, ...]
    generations: tuple[GenerationRecord, ...]
    unassigned_task_ids: tuple[str, ...]
    blocked_task_ids: tuple[str, ...]
    rationale: str
    confidence: float
    created_at: datetime

    def to_details(self) -> dict[str, object]:
        """Serialize cycle for events and the run journal."""

        return {
            "cycle_id": self.cycle_id,
            "selected_task_ids": list(self.selected_task_ids),
            "assignments": [
                {
                    "task_id": item.task_id,
                    "agent_id": item.agent_id,
                    "skill_match": round(item.skill_match, 4),
                }
                for item in self.assignments
            ],
            "adapted_task_ids": [item.task_id for item in self.adaptations],
            "generated_task_ids": [item.task_id for item in self.generations],
            "unassigned_task_ids": list(self.unassigned_task_ids),
            "blocked_task_ids": list(self.blocked_task_ids),
            "rationale": self.rationale,
            "confidence": round(self.confidence, 4),
        }


@dataclass(slots=True)
class RunSummary:
    """Aggregate counters reported at the end of a run."""

    run_id: str
    team_name: str
    status: RunStatus
    cycles: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    unscheduled: list[str] = field(default_factory=list)
    adapted: list[str] = field(default_factory=list)
    generated: list[str] = field(default_factory=list)
    events: int = 0


@dataclass(slots=True)
class RunView:
    """Journaled run row."""

    run_id: str
    team_name: str
    status: RunStatus
    mode: str
    continuous: bool
    started_at: datetime
    finished_at: datetime | None
    tasks_total: int
    cycles_count: int
    completed_count: int
    failed_count: int
    blocked_count: int
    unscheduled_count: int
    adapted_count: int
    generated_count: int
    error_summary: str | None
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PlanningCycleView:
    """Journaled planning cycle."""

    cycle_id: int
    selected_count: int
    assigned_count: int
    confidence: float
    rationale: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RunEventView:
    """Journaled orchestration event."""

    run_id: str
    sequence: int
    event_type: str
    cycle_id: int | None
    task_id: str | None
    agent_id: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RunDetails:
    """Run with its planning cycles and event stream."""

    run: RunView
    cycles: list[PlanningCycleView]
    events: list[RunEventView]

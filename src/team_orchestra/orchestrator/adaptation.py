"""Task adaptation policy and the guard that keeps adaptations non-structural."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from team_orchestra.orchestrator.errors import AdaptationConflictError
from team_orchestra.orchestrator.models import (
    ADAPTABLE_FIELDS,
    PROTECTED_FIELDS,
    OrchestrationMode,
    Task,
)

ADAPTED_MARKER = "adaptedInCycle"
ADAPTED_AT_ATTEMPT = "adaptedAtAttempt"


@dataclass(frozen=True, slots=True)
class AdaptationContext:
    """What the planner knows about a selected task when it may adapt it."""

    mode: OrchestrationMode
    cycle_id: int
    best_skill_match: float
    covered_skills: frozenset[str]
    missing_skills: frozenset[str]


@dataclass(slots=True)
class AdaptationProposal:
    """Field changes an adapter wants to apply, with a human readable reason."""

    reason: str
    changes: dict[str, Any] = field(default_factory=dict)


class TaskAdapter(Protocol):
    """Proposes a rewrite for a selected adaptable task, or ``None``."""

    def propose(self, task: Task, context: AdaptationContext) -> AdaptationProposal | None: ...


class RuleBasedAdapter:
    """Built-in adapter driven by the orchestration mode.

    ``adaptive`` narrows tasks the team only partially covers, ``innovative``
    rewrites every adaptable task, ``learning`` also revisits tasks that failed
    before. ``conservative`` never adapts.

    A task is adapted once; only ``learning`` adapts it again, and only after
    an attempt made since the previous adaptation has failed.
    """

    def propose(self, task: Task, context: AdaptationContext) -> AdaptationProposal | None:
        partial = bool(context.missing_skills)
        failed_before = task.failure_reason is not None or task.attempts > 0
        if context.mode == OrchestrationMode.CONSERVATIVE:
            return None
        if ADAPTED_MARKER in task.resource_requirements:
            failed_since = (
                task.failure_reason is not None
                and task.attempts > task.resource_requirements.get(ADAPTED_AT_ATTEMPT, 0)
            )
            if context.mode != OrchestrationMode.LEARNING or not failed_since:
                return None
            partial = False
        if context.mode == OrchestrationMode.ADAPTIVE and not partial:
            return None
        if context.mode == OrchestrationMode.LEARNING and not (partial or failed_before):
            return None

        if partial:
            missing = ", ".join(sorted(context.missing_skills))
            reason = f"partial skill coverage, missing: {missing}"
        elif failed_before:
            reason = f"previous attempt failed: {task.failure_reason or 'unknown'}"
        else:
            reason = "innovative mode refines every adaptable task"

        resources = dict(task.resource_requirements)
        resources[ADAPTED_MARKER] = context.cycle_id
        resources[ADAPTED_AT_ATTEMPT] = task.attempts
        if partial:
            resources["coveredSkills"] = sorted(context.covered_skills)
            resources["missingSkills"] = sorted(context.missing_skills)
        description = task.description
        if partial and context.covered_skills:
            description = (
                f"{task.description} Focus on the parts achievable with: "
                f"{', '.join(sorted(context.covered_skills))}."
            )
        elif partial:
            description = f"{task.description} Deliver a best-effort outline."
        elif failed_before:
            description = f"{task.description} Address the previous failure before continuing."
        expected_output = task.expected_output
        if context.mode == OrchestrationMode.INNOVATIVE and expected_output:
            expected_output = f"{expected_output} Include follow-up recommendations."
        return AdaptationProposal(
            reason=reason,
            changes={
                "description": description,
                "expected_output": expected_output,
                "resource_requirements": resources,
            },
        )


def apply_adaptation(task: Task, proposal: AdaptationProposal) -> tuple[dict, dict]:
    """Apply ``proposal`` to ``task`` and return (before, after) snapshots.

    Raises ``AdaptationConflictError`` without touching the task when the
    proposal names any field outside the adaptable set.
    """

    offending = tuple(
        sorted(name for name in proposal.changes if name not in ADAPTABLE_FIELDS),
    )
    if offending:
        protected_first = tuple(name for name in offending if name in PROTECTED_FIELDS)
        rest = tuple(name for name in offending if name not in PROTECTED_FIELDS)
        raise AdaptationConflictError(task.task_id, protected_first + rest)

    before = task.adaptable_snapshot()
    for name, value in proposal.changes.items():
        setattr(task, name, dict(value) if name == "resource_requirements" else value)
    return before, task.adaptable_snapshot()

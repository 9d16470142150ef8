"""Error taxonomy for orchestration runs.

Only ``ConfigurationError`` is meant to leave the library: it aborts a run
before any planning happens. The remaining errors are contained per task by
the orchestrator and the execution coordinator and surface as events.
"""

from __future__ import annotations


class OrchestrationError(Exception):
    """Base class for orchestration errors."""


class ConfigurationError(OrchestrationError, ValueError):
    """Invalid descriptor, mode or strategy value."""


class UnassignableTaskError(OrchestrationError):
    """No capable agent could take the task within the retry budget."""

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"Task {task_id!r} is unassignable: {reason}")
        self.task_id = task_id
        self.reason = reason


class AdaptationConflictError(OrchestrationError):
    """An adaptation tried to modify a structural task field."""

    def __init__(self, task_id: str, fields: tuple[str, ...]) -> None:
        super().__init__(
            f"Adaptation of task {task_id!r} would modify protected fields: {', '.join(fields)}",
        )
        self.task_id = task_id
        self.fields = fields


class ExecutionFailure(OrchestrationError):
    """Task execution failed on an agent."""

    def __init__(
        self,
        message: str,
        *,
        transient: bool | None = None,
        cancelled: bool = False,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.cancelled = cancelled

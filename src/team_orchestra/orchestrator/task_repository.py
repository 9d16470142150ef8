"""In-memory backlog store for one orchestration run."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from team_orchestra.orchestrator.errors import ConfigurationError
from team_orchestra.orchestrator.models import (
    IN_FLIGHT_STATUSES,
    TERMINAL_STATUSES,
    Task,
    TaskOutcome,
    TaskStatus,
)

logger = logging.getLogger(__name__)


class TaskRepository:
    """Backlog and lifecycle bookkeeping for tasks.

    Only the planning loop thread mutates the repository, so no locking is
    done here. Every transition is validated against the current status and
    invalid transitions raise ``ValueError`` except completion, which is
    idempotent.
    """

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._tasks: dict[str, Task] = {}
        for task in tasks:
            self.add_task(task)

    def add_task(self, task: Task) -> Task:
        if task.task_id in self._tasks:
            raise ConfigurationError(f"Duplicate task id: {task.task_id!r}")
        task.status = TaskStatus.BACKLOG
        task.enqueued_at = self._clock()
        self._tasks[task.task_id] = task
        return task

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError as error:
            raise KeyError(f"Unknown task id: {task_id!r}") from error

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def tasks(self) -> list[Task]:
        """All tasks in insertion order."""

        return list(self._tasks.values())

    def get_backlog(self) -> list[Task]:
        """Tasks waiting for selection, in insertion order."""

        return [task for task in self._tasks.values() if task.status == TaskStatus.BACKLOG]

    def completed_ids(self) -> frozenset[str]:
        return frozenset(
            task.task_id for task in self._tasks.values() if task.status == TaskStatus.COMPLETED
        )

    def in_flight(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.status in IN_FLIGHT_STATUSES]

    def eligible(self) -> list[Task]:
        """Backlog tasks whose dependencies are all completed."""

        done = self.completed_ids()
        return [task for task in self.get_backlog() if task.dependencies <= done]

    def mark_selected(self, task_id: str) -> Task:
        return self._transition(task_id, {TaskStatus.BACKLOG}, TaskStatus.SELECTED)

    def unselect(self, task_id: str) -> Task:
        """Return a selected task that found no agent to the backlog."""

        return self._transition(task_id, {TaskStatus.SELECTED}, TaskStatus.BACKLOG)

    def mark_assigned(self, task_id: str, agent_id: str) -> Task:
        task = self._transition(
            task_id,
            {TaskStatus.BACKLOG, TaskStatus.SELECTED, TaskStatus.ASSIGNED, TaskStatus.RUNNING},
            TaskStatus.ASSIGNED,
        )
        if task.assigned_agent_id != agent_id:
            task.attempts_with_agent = 0
        task.assigned_agent_id = agent_id
        task.unassigned_cycles = 0
        return task

    def mark_running(self, task_id: str) -> Task:
        task = self._transition(task_id, {TaskStatus.ASSIGNED}, TaskStatus.RUNNING)
        task.attempts += 1
        task.attempts_with_agent += 1
        return task

    def mark_completed(self, task_id: str, outcome: TaskOutcome) -> bool:
        """Record success; returns ``False`` for duplicate completion signals."""

        task = self.get(task_id)
        if task.status == TaskStatus.COMPLETED:
            logger.warning("Duplicate completion ignored for task %s", task_id)
            return False
        if task.status not in IN_FLIGHT_STATUSES:
            logger.warning(
                "Completion ignored for task %s in status %s",
                task_id,
                task.status.value,
            )
            return False
        task.status = TaskStatus.COMPLETED
        task.outcome = outcome
        task.failure_reason = None
        return True

    def mark_failed(self, task_id: str, reason: str) -> Task:
        task = self.get(task_id)
        if task.status in TERMINAL_STATUSES:
            raise ValueError(f"Task {task_id!r} is already {task.status.value}")
        task.status = TaskStatus.FAILED
        task.failure_reason = reason
        return task

    def requeue(self, task_id: str, *, exclude_agent_id: str | None = None) -> Task:
        """Put an in-flight task back into the backlog."""

        task = self._transition(task_id, IN_FLIGHT_STATUSES, TaskStatus.BACKLOG)
        if exclude_agent_id is not None:
            task.excluded_agent_ids = task.excluded_agent_ids | {exclude_agent_id}
        task.assigned_agent_id = None
        task.attempts_with_agent = 0
        task.enqueued_at = self._clock()
        return task

    def mark_blocked(self, task_id: str, reason: str) -> Task:
        task = self.get(task_id)
        if task.status in TERMINAL_STATUSES:
            raise ValueError(f"Task {task_id!r} is already {task.status.value}")
        task.status = TaskStatus.BLOCKED
        task.assigned_agent_id = None
        task.failure_reason = reason
        return task

    def dependents_of(self, task_id: str) -> list[Task]:
        """Transitive dependents of a task, in insertion order."""

        found: set[str] = set()
        frontier = {task_id}
        while frontier:
            direct = {
                task.task_id
                for task in self._tasks.values()
                if task.dependencies & frontier and task.task_id not in found
            }
            found |= direct
            frontier = direct
        return [task for task in self._tasks.values() if task.task_id in found]

    def is_drained(self) -> bool:
        """True when nothing waits in the backlog and nothing is in flight."""

        return all(task.status in TERMINAL_STATUSES for task in self._tasks.values())

    def _transition(
        self,
        task_id: str,
        allowed: Iterable[TaskStatus],
        target: TaskStatus,
    ) -> Task:
        task = self.get(task_id)
        if task.status not in set(allowed):
            raise ValueError(
                f"Task {task_id!r} cannot move from {task.status.value} to {target.value}",
            )
        task.status = target
        return task

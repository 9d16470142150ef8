"""Execution coordination: task state transitions and the retry policy."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from team_orchestra.orchestrator.agent_registry import AgentRegistry
from team_orchestra.orchestrator.engine import Orchestrator
from team_orchestra.orchestrator.events import EventEmitter, EventType
from team_orchestra.orchestrator.failure_classifier import (
    FailureClassification,
    classify_execution_failure,
)
from team_orchestra.orchestrator.models import (
    Assignment,
    OrchestrationConfig,
    PlanningCycle,
    Task,
    TaskOutcome,
    TaskStatus,
)
from team_orchestra.orchestrator.retry_policy import RetryAction, decide_retry
from team_orchestra.orchestrator.task_repository import TaskRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WorkTicket:
    """One dispatched attempt; results carrying an older ticket are ignored."""

    task_id: str
    agent_id: str
    serial: int


Submit = Callable[[WorkTicket], None]


class ExecutionCoordinator:
    """Drives assigned tasks to completion and applies the retry policy.

    ``submit`` hands a ticket to whatever executes work (agent worker threads
    in the runner, a list in tests). Every method must be called from the
    planning loop thread.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        registry: AgentRegistry,
        orchestrator: Orchestrator,
        config: OrchestrationConfig,
        submit: Submit,
        emitter: EventEmitter | None = None,
        classifier: Callable[[BaseException], FailureClassification] = (
            classify_execution_failure
        ),
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.orchestrator = orchestrator
        self.config = config
        self.submit = submit
        self.emitter = emitter or orchestrator.emitter
        self.classifier = classifier
        self._last_dispatched_cycle = 0
        self._serial = 0
        self._tickets: dict[str, WorkTicket] = {}
        # Initial-only runs: task id -> agent it failed on, waiting for a busy agent.
        self._deferred: dict[str, str | None] = {}

    @property
    def last_dispatched_cycle(self) -> int:
        return self._last_dispatched_cycle

    def dispatch(self, cycle: PlanningCycle) -> list[Assignment]:
        """Submit a cycle's assignments; stale cycles are discarded."""

        if cycle.cycle_id <= self._last_dispatched_cycle:
            logger.warning(
                "Discarding stale cycle %d (last dispatched %d)",
                cycle.cycle_id,
                self._last_dispatched_cycle,
            )
            self._rollback(cycle)
            return []
        self._last_dispatched_cycle = cycle.cycle_id
        for assignment in cycle.assignments:
            self._submit(assignment.task_id, assignment.agent_id)
        return list(cycle.assignments)

    def accepts(self, ticket: WorkTicket) -> bool:
        """True when ``ticket`` is the current attempt of its task."""

        return self._tickets.get(ticket.task_id) == ticket

    def start(self, task_id: str) -> Task:
        task = self.repository.mark_running(task_id)
        self.emitter.emit(
            EventType.TASK_STARTED,
            task_id=task_id,
            agent_id=task.assigned_agent_id,
            details={"attempt": task.attempts, "attempt_with_agent": task.attempts_with_agent},
        )
        return task

    def complete(self, task_id: str, outcome: TaskOutcome) -> bool:
        """Apply a success signal; duplicates change nothing and emit nothing."""

        agent_id = self.repository.get(task_id).assigned_agent_id
        if not self.repository.mark_completed(task_id, outcome):
            return False
        self._tickets.pop(task_id, None)
        if agent_id is not None:
            self.registry.release(agent_id)
        self.emitter.emit(
            EventType.TASK_COMPLETED,
            task_id=task_id,
            agent_id=agent_id,
            details={"output": outcome.output, **outcome.details},
        )
        self._hand_over_deferred()
        self.orchestrator.notify(EventType.TASK_COMPLETED, task_id)
        return True

    def fail(self, task_id: str, error: BaseException) -> RetryAction | None:
        """Apply a failure signal and return the action taken."""

        task = self.repository.get(task_id)
        if not task.in_flight:
            logger.warning(
                "Failure ignored for task %s in status %s",
                task_id,
                task.status.value,
            )
            return None
        agent_id = task.assigned_agent_id
        classification = self.classifier(error)
        self.emitter.emit(
            EventType.TASK_FAILED,
            task_id=task_id,
            agent_id=agent_id,
            details={
                "error": str(error),
                "attempt": task.attempts,
                **classification.to_event_details(agent_id=agent_id),
            },
        )

        excluded = task.excluded_agent_ids | ({agent_id} if agent_id else set())
        free = self.registry.rank_candidates(
            task.required_skills,
            min_skill_match=self.config.min_skill_match,
            excluded=frozenset(excluded),
        )
        busy = self.registry.rank_candidates(
            task.required_skills,
            min_skill_match=self.config.min_skill_match,
            excluded=frozenset(excluded),
            require_capacity=False,
        )
        decision = decide_retry(
            failure_class=classification.failure_class,
            attempts_with_agent=task.attempts_with_agent,
            max_retries_per_agent=self.config.max_retries_per_agent,
            has_free_candidate=bool(free),
            has_busy_candidate=bool(busy),
            can_replan=self.config.continuous,
        )
        logger.info("Task %s failed on %s: %s", task_id, agent_id, decision.reason)
        task.failure_reason = str(error) or classification.reason_code

        if decision.action == RetryAction.RETRY_SAME_AGENT and agent_id is not None:
            self.repository.mark_assigned(task_id, agent_id)
            self.emitter.emit(
                EventType.TASK_RETRIED,
                task_id=task_id,
                agent_id=agent_id,
                details={"reason": decision.reason},
            )
            self._submit(task_id, agent_id)
            return decision.action

        if agent_id is not None:
            self.registry.release(agent_id)
        self._tickets.pop(task_id, None)

        if decision.action == RetryAction.REASSIGN:
            target = free[0].agent.agent_id
            task.excluded_agent_ids = frozenset(excluded)
            self.registry.acquire(target)
            self.repository.mark_assigned(task_id, target)
            self.emitter.emit(
                EventType.TASK_REASSIGNED,
                task_id=task_id,
                agent_id=target,
                details={
                    "from_agent_id": agent_id,
                    "skill_match": round(free[0].skill_match, 4),
                    "reason": decision.reason,
                },
            )
            self._submit(task_id, target)
        elif decision.action == RetryAction.REQUEUE:
            self.repository.requeue(task_id, exclude_agent_id=agent_id)
            self.emitter.emit(
                EventType.TASK_REQUEUED,
                task_id=task_id,
                agent_id=agent_id,
                details={"reason": decision.reason},
            )
        elif decision.action == RetryAction.DEFER:
            self.repository.requeue(task_id, exclude_agent_id=agent_id)
            self._deferred[task_id] = agent_id
            self.emitter.emit(
                EventType.TASK_REQUEUED,
                task_id=task_id,
                agent_id=agent_id,
                details={
                    "reason": decision.reason,
                    "waiting_for": [item.agent.agent_id for item in busy],
                },
            )
        elif decision.action == RetryAction.CANCEL:
            self.repository.mark_failed(task_id, "cancelled")
            self.orchestrator.block_dependents(task_id)
        else:
            self.orchestrator.block_task(task_id, f"{decision.reason} Last error: {error}")

        self._hand_over_deferred()
        self.orchestrator.notify(EventType.TASK_FAILED, task_id)
        return decision.action

    def cancel_all(self, reason: str = "cancelled") -> list[str]:
        """Fail every in-flight task and release all capacity."""

        cancelled: list[str] = []
        for task in self.repository.in_flight():
            agent_id = task.assigned_agent_id
            self.repository.mark_failed(task.task_id, reason)
            if agent_id is not None:
                self.registry.release(agent_id)
            self.emitter.emit(
                EventType.TASK_FAILED,
                task_id=task.task_id,
                agent_id=agent_id,
                details={"error": reason, "failure_class": "cancelled"},
            )
            cancelled.append(task.task_id)
        self._tickets.clear()
        self._deferred.clear()
        self.orchestrator.finish()
        if cancelled:
            logger.warning("Cancelled %d in-flight tasks: %s", len(cancelled), reason)
        return cancelled

    def _hand_over_deferred(self) -> None:
        for task_id, from_agent_id in list(self._deferred.items()):
            task = self.repository.get(task_id)
            if task.status != TaskStatus.BACKLOG:
                del self._deferred[task_id]
                continue
            candidates = self.registry.rank_candidates(
                task.required_skills,
                min_skill_match=self.config.min_skill_match,
                excluded=task.excluded_agent_ids,
                require_capacity=False,
            )
            free = [item for item in candidates if item.agent.remaining_capacity > 0]
            if free:
                del self._deferred[task_id]
                target = free[0]
                self.registry.acquire(target.agent.agent_id)
                self.repository.mark_assigned(task_id, target.agent.agent_id)
                self.emitter.emit(
                    EventType.TASK_REASSIGNED,
                    task_id=task_id,
                    agent_id=target.agent.agent_id,
                    details={
                        "from_agent_id": from_agent_id,
                        "skill_match": round(target.skill_match, 4),
                        "reason": "Deferred task handed to a qualified agent that freed up.",
                    },
                )
                self._submit(task_id, target.agent.agent_id)
            elif not candidates:
                del self._deferred[task_id]
                self.orchestrator.block_task(task_id, "No qualified agent remains for this task.")

    def _submit(self, task_id: str, agent_id: str) -> None:
        self._serial += 1
        ticket = WorkTicket(task_id=task_id, agent_id=agent_id, serial=self._serial)
        self._tickets[task_id] = ticket
        self.submit(ticket)

    def _rollback(self, cycle: PlanningCycle) -> None:
        for assignment in cycle.assignments:
            task = self.repository.get(assignment.task_id)
            if task.status != TaskStatus.ASSIGNED or task.assigned_agent_id != assignment.agent_id:
                continue
            if assignment.task_id in self._tickets:
                continue
            self.registry.release(assignment.agent_id)
            self.repository.requeue(assignment.task_id)

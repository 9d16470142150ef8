"""Planning state machine: select, rank, adapt, generate and assign tasks."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from team_orchestra.orchestrator.adaptation import (
    AdaptationContext,
    RuleBasedAdapter,
    TaskAdapter,
    apply_adaptation,
)
from team_orchestra.orchestrator.agent_registry import AgentRegistry
from team_orchestra.orchestrator.distribution import DistributionStrategy, build_distribution
from team_orchestra.orchestrator.errors import AdaptationConflictError, UnassignableTaskError
from team_orchestra.orchestrator.events import EventEmitter, EventType
from team_orchestra.orchestrator.generation import TaskGenerator
from team_orchestra.orchestrator.models import (
    TERMINAL_STATUSES,
    AdaptationRecord,
    Assignment,
    GenerationRecord,
    OrchestrationConfig,
    OrchestrationMode,
    OrchestratorState,
    PlanningCycle,
    Task,
    TaskStatus,
)
from team_orchestra.orchestrator.prioritization import (
    PrioritizationStrategy,
    Ranker,
    build_prioritization,
)
from team_orchestra.orchestrator.task_repository import TaskRepository
from team_orchestra.storage.common import utc_now

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns planning cycles for one run.

    States move ``IDLE -> PLANNING -> ASSIGNING -> (WAITING | IDLE)``; a
    completion or failure in continuous mode moves to ``REPLANNING`` and the
    next ``plan()`` call starts a new cycle. ``DONE`` is terminal and reached
    when nothing waits in the backlog and nothing is in flight, or when an
    initial-only run has drained its single cycle.

    All methods must be called from the planning loop thread.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        registry: AgentRegistry,
        config: OrchestrationConfig,
        emitter: EventEmitter | None = None,
        prioritization: PrioritizationStrategy | None = None,
        distribution: DistributionStrategy | None = None,
        adapter: TaskAdapter | None = None,
        ranker: Ranker | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.config = config
        self.emitter = emitter or EventEmitter()
        self.prioritization = prioritization or build_prioritization(
            config.prioritization,
            urgency_per_second=config.urgency_per_second,
            ranker=ranker,
            universe=repository.tasks,
            clock=clock,
        )
        self.distribution = distribution or build_distribution(config.workload_distribution)
        self.adapter = adapter or RuleBasedAdapter()
        self.generator = TaskGenerator(
            match_threshold=config.generation_match_threshold,
            limit=config.max_generated_tasks,
            exists=lambda task_id: task_id in repository,
        )
        self.state = OrchestratorState.IDLE
        self.cycles: list[PlanningCycle] = []
        self.adaptations: list[AdaptationRecord] = []
        self.generations: list[GenerationRecord] = []
        self._clock = clock
        self._cycle_id = 0
        self._last_planned_at: float | None = None
        self._replan_requested = False

    @property
    def last_cycle_id(self) -> int:
        return self._cycle_id

    @property
    def done(self) -> bool:
        return self.state == OrchestratorState.DONE

    def plan(self) -> PlanningCycle | None:
        """Run one planning cycle; ``None`` when planning is no longer allowed."""

        if self.state == OrchestratorState.DONE:
            return None
        if not self.config.continuous and self._cycle_id >= 1:
            logger.debug("Initial-only run already planned; skipping cycle")
            return None

        self.state = OrchestratorState.PLANNING
        self._cycle_id += 1
        cycle_id = self._cycle_id
        self._replan_requested = False
        self._last_planned_at = self._clock()

        generations = self._generate(cycle_id) if self.config.allow_task_generation else []

        eligible = self.repository.eligible()
        ranking = self.prioritization.rank(eligible)
        if ranking.fallback_reason is not None:
            self.emitter.emit(
                EventType.PRIORITIZATION_FALLBACK,
                cycle_id=cycle_id,
                details={
                    "strategy": self.prioritization.name.value,
                    "reason": ranking.fallback_reason,
                },
            )

        slots = self.config.max_active_tasks - len(self.repository.in_flight())
        selected: list[str] = []
        assignments: list[Assignment] = []
        adaptations: list[AdaptationRecord] = []
        unassigned: list[str] = []
        blocked: list[str] = []

        self.state = OrchestratorState.ASSIGNING
        for task_id in ranking.task_ids:
            if slots <= 0 or self.registry.total_capacity() <= 0:
                break
            task = self.repository.mark_selected(task_id)
            selected.append(task_id)
            self.emitter.emit(
                EventType.TASK_SELECTED,
                cycle_id=cycle_id,
                task_id=task_id,
                details={"priority": task.priority, **task.governance_details()},
            )

            choice = self.distribution.choose(
                task,
                self.registry,
                min_skill_match=self.config.min_skill_match,
            )
            if choice is None:
                self.repository.unselect(task_id)
                if self._has_qualified_agent(task):
                    # Qualified agents exist but are busy right now.
                    continue
                unassigned.append(task_id)
                blocked.extend(self._record_unassigned(task, cycle_id))
                continue

            # Only tasks that actually leave the backlog are adapted.
            record = self._maybe_adapt(task, cycle_id)
            if record is not None:
                adaptations.append(record)

            self.registry.acquire(choice.agent.agent_id)
            self.repository.mark_assigned(task_id, choice.agent.agent_id)
            assignment = Assignment(
                task_id=task_id,
                agent_id=choice.agent.agent_id,
                skill_match=choice.skill_match,
            )
            assignments.append(assignment)
            slots -= 1
            self.emitter.emit(
                EventType.TASK_ASSIGNED,
                cycle_id=cycle_id,
                task_id=task_id,
                agent_id=choice.agent.agent_id,
                details={"skill_match": round(choice.skill_match, 4)},
            )

        confidence = 0.0
        if assignments:
            confidence = sum(item.skill_match for item in assignments) / len(assignments)
        cycle = PlanningCycle(
            cycle_id=cycle_id,
            selected_task_ids=tuple(selected),
            assignments=tuple(assignments),
            adaptations=tuple(adaptations),
            generations=tuple(generations),
            unassigned_task_ids=tuple(unassigned),
            blocked_task_ids=tuple(blocked),
            rationale=self._rationale(
                selected=selected,
                assignments=assignments,
                unassigned=unassigned,
                blocked=blocked,
            ),
            confidence=confidence,
            created_at=utc_now(),
        )
        self.cycles.append(cycle)
        self.emitter.emit(
            EventType.CYCLE_COMPLETED,
            cycle_id=cycle_id,
            details=cycle.to_details(),
        )
        logger.info(
            "Cycle %d: selected=%d assigned=%d unassigned=%d blocked=%d",
            cycle_id,
            len(selected),
            len(assignments),
            len(unassigned),
            len(blocked),
        )
        self.settle()
        return cycle

    def notify(self, event_type: EventType, task_id: str) -> None:
        """Feed a completion or failure signal back into planning."""

        logger.debug("Orchestrator notified: %s for %s", event_type.value, task_id)
        if self.state == OrchestratorState.DONE:
            return
        if self.config.continuous:
            self._replan_requested = True
            self.state = OrchestratorState.REPLANNING
            return
        self.settle()

    def should_replan(self, now: float | None = None) -> bool:
        """True when a continuous run should start another cycle now."""

        if not self.config.continuous or self.state == OrchestratorState.DONE:
            return False
        if self._cycle_id == 0:
            return True
        current = self._clock() if now is None else now
        if (
            self._last_planned_at is not None
            and current - self._last_planned_at < self.config.min_replan_interval_seconds
        ):
            return False
        if not self._replan_requested and self.repository.in_flight():
            return False
        return bool(self.repository.eligible())

    def settle(self) -> OrchestratorState:
        """Recompute the resting state after planning or an execution signal."""

        if self.state == OrchestratorState.DONE:
            return self.state
        in_flight = self.repository.in_flight()
        if self.repository.is_drained():
            self.state = OrchestratorState.DONE
        elif not self.config.continuous and self._cycle_id >= 1 and not in_flight:
            self.state = OrchestratorState.DONE
        elif in_flight and self._replan_requested:
            self.state = OrchestratorState.REPLANNING
        elif in_flight:
            self.state = OrchestratorState.WAITING
        else:
            self.state = OrchestratorState.IDLE
        return self.state

    def finish(self) -> None:
        """Force the terminal state, e.g. after cancellation."""

        self.state = OrchestratorState.DONE

    def unscheduled_task_ids(self) -> list[str]:
        """Tasks never driven to a terminal status."""

        return [
            task.task_id
            for task in self.repository.tasks()
            if task.status in {TaskStatus.BACKLOG, TaskStatus.SELECTED}
        ]

    def block_task(self, task_id: str, reason: str, *, cycle_id: int | None = None) -> list[str]:
        """Block a task and, transitively, every task depending on it."""

        blocked: list[str] = []
        task = self.repository.get(task_id)
        if task.status not in TERMINAL_STATUSES:
            self.repository.mark_blocked(task_id, reason)
            blocked.append(task_id)
            self.emitter.emit(
                EventType.TASK_BLOCKED,
                cycle_id=cycle_id,
                task_id=task_id,
                details={"reason": reason},
            )
        blocked.extend(self.block_dependents(task_id, cycle_id=cycle_id))
        return blocked

    def block_dependents(self, task_id: str, *, cycle_id: int | None = None) -> list[str]:
        """Block tasks that can never run because ``task_id`` will not complete."""

        blocked: list[str] = []
        for dependent in self.repository.dependents_of(task_id):
            if dependent.status in TERMINAL_STATUSES or dependent.in_flight:
                continue
            reason = f"dependency {task_id} will not complete"
            self.repository.mark_blocked(dependent.task_id, reason)
            blocked.append(dependent.task_id)
            self.emitter.emit(
                EventType.TASK_BLOCKED,
                cycle_id=cycle_id,
                task_id=dependent.task_id,
                details={"reason": reason, "blocked_by": task_id},
            )
        return blocked

    def _record_unassigned(self, task: Task, cycle_id: int) -> list[str]:
        task.unassigned_cycles += 1
        logger.info(
            "No qualified agent for task %s (%d/%d cycles)",
            task.task_id,
            task.unassigned_cycles,
            self.config.max_unassigned_cycles,
        )
        if task.unassigned_cycles < self.config.max_unassigned_cycles:
            return []
        error = UnassignableTaskError(
            task.task_id,
            f"no agent reached skill match {self.config.min_skill_match:.2f} "
            f"within {self.config.max_unassigned_cycles} cycles",
        )
        logger.warning("%s", error)
        return self.block_task(task.task_id, error.reason, cycle_id=cycle_id)

    def _has_qualified_agent(self, task: Task) -> bool:
        return bool(
            self.registry.rank_candidates(
                task.required_skills,
                min_skill_match=self.config.min_skill_match,
                excluded=task.excluded_agent_ids,
                require_capacity=False,
            ),
        )

    def _maybe_adapt(self, task: Task, cycle_id: int) -> AdaptationRecord | None:
        if not task.adaptable or self.config.mode == OrchestrationMode.CONSERVATIVE:
            return None
        covered = self.registry.covered_skills(task.required_skills)
        context = AdaptationContext(
            mode=self.config.mode,
            cycle_id=cycle_id,
            best_skill_match=self.registry.best_match(task.required_skills),
            covered_skills=covered,
            missing_skills=task.required_skills - covered,
        )
        proposal = self.adapter.propose(task, context)
        if proposal is None:
            return None
        try:
            before, after = apply_adaptation(task, proposal)
        except AdaptationConflictError as error:
            logger.warning("%s; original task kept", error)
            self.emitter.emit(
                EventType.ADAPTATION_REJECTED,
                cycle_id=cycle_id,
                task_id=task.task_id,
                details={"reason": proposal.reason, "fields": list(error.fields)},
            )
            return None
        record = AdaptationRecord(
            task_id=task.task_id,
            cycle_id=cycle_id,
            reason=proposal.reason,
            before=before,
            after=after,
        )
        self.adaptations.append(record)
        self.emitter.emit(
            EventType.TASK_ADAPTED,
            cycle_id=cycle_id,
            task_id=task.task_id,
            details={"reason": record.reason, "before": before, "after": after},
        )
        return record

    def _generate(self, cycle_id: int) -> list[GenerationRecord]:
        records: list[GenerationRecord] = []
        for task, record in self.generator.generate(
            self.repository.get_backlog(),
            self.registry,
            cycle_id=cycle_id,
        ):
            self.repository.add_task(task)
            records.append(record)
            self.generations.append(record)
            self.emitter.emit(
                EventType.TASK_GENERATED,
                cycle_id=cycle_id,
                task_id=task.task_id,
                details={
                    "reason": record.reason,
                    "addresses_task_id": record.addresses_task_id,
                    "missing_skills": list(record.missing_skills),
                    "required_skills": sorted(task.required_skills),
                },
            )
        return records

    def _rationale(
        self,
        *,
        selected: list[str],
        assignments: list[Assignment],
        unassigned: list[str],
        blocked: list[str],
    ) -> str:
        parts = [
            f"{self.prioritization.name.value} prioritization",
            f"{self.distribution.name.value} distribution",
            f"{len(assignments)} of {len(selected)} selected tasks assigned",
        ]
        if unassigned:
            parts.append(f"no qualified agent for {', '.join(unassigned)}")
        if blocked:
            parts.append(f"blocked {', '.join(blocked)}")
        if self.config.strategy:
            parts.append(f"strategy: {self.config.strategy}")
        return "; ".join(parts)

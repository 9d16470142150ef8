"""Synthesis of supporting tasks for work the team covers poorly."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from team_orchestra.orchestrator.agent_registry import AgentRegistry
from team_orchestra.orchestrator.models import HIGH_PRIORITY, GenerationRecord, Task

logger = logging.getLogger(__name__)


class TaskGenerator:
    """Creates one groundwork task per poorly covered high-priority task.

    A generated task has no dependencies and requires only the skills the team
    actually has, so it is always assignable. Each source task is addressed at
    most once and the total number of generated tasks per run is capped.
    """

    def __init__(
        self,
        *,
        match_threshold: float,
        limit: int,
        exists: Callable[[str], bool] = lambda _task_id: False,
    ) -> None:
        self.match_threshold = match_threshold
        self.limit = limit
        self._exists = exists
        self._addressed: set[str] = set()
        self.generated_count = 0

    @property
    def exhausted(self) -> bool:
        return self.generated_count >= self.limit

    def generate(
        self,
        backlog: Sequence[Task],
        registry: AgentRegistry,
        *,
        cycle_id: int,
    ) -> list[tuple[Task, GenerationRecord]]:
        created: list[tuple[Task, GenerationRecord]] = []
        for source in backlog:
            if self.exhausted:
                logger.info("Task generation limit reached (%d)", self.limit)
                break
            if source.generated or source.task_id in self._addressed:
                continue
            if source.priority < HIGH_PRIORITY:
                continue
            best = registry.best_match(source.required_skills)
            if best >= self.match_threshold:
                continue
            covered = registry.covered_skills(source.required_skills)
            missing = tuple(sorted(source.required_skills - covered))
            task = Task(
                task_id=self._next_id(source.task_id),
                title=f"Groundwork for {source.title}",
                description=(
                    f"Prepare what the team can for '{source.title}': {source.description}"
                ),
                expected_output=f"Notes and partial results that unblock {source.task_id}.",
                required_skills=covered,
                priority=source.priority,
                dynamic_priority=source.dynamic_priority,
                generated=True,
                addresses_task_id=source.task_id,
            )
            record = GenerationRecord(
                task_id=task.task_id,
                cycle_id=cycle_id,
                reason=f"best skill match {best:.2f} below {self.match_threshold:.2f}",
                addresses_task_id=source.task_id,
                missing_skills=missing,
            )
            self._addressed.add(source.task_id)
            self.generated_count += 1
            created.append((task, record))
        return created

    def _next_id(self, source_id: str) -> str:
        index = 1
        while True:
            candidate = f"{source_id}-gen-{index}"
            if not self._exists(candidate):
                return candidate
            index += 1

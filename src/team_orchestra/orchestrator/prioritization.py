"""Backlog ranking strategies."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from team_orchestra.orchestrator.models import PrioritizationName, Task

logger = logging.getLogger(__name__)

Ranker = Callable[[Sequence[Task]], Sequence[str]]


@dataclass(slots=True)
class Ranking:
    """Ordered task ids plus an optional note when the strategy degraded."""

    task_ids: list[str]
    fallback_reason: str | None = None


class PrioritizationStrategy(Protocol):
    """Orders eligible tasks; the first entries are selected first."""

    name: PrioritizationName

    def rank(self, tasks: Sequence[Task]) -> Ranking: ...


class StaticPrioritization:
    """Keeps backlog insertion order."""

    name = PrioritizationName.STATIC

    def rank(self, tasks: Sequence[Task]) -> Ranking:
        return Ranking(task_ids=[task.task_id for task in tasks])


class DynamicPrioritization:
    """Scores tasks by static priority plus accumulated waiting time.

    Tasks with ``dynamic_priority`` disabled keep their static priority so
    urgency never overtakes them. Ties keep insertion order.
    """

    name = PrioritizationName.DYNAMIC

    def __init__(
        self,
        *,
        urgency_per_second: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.urgency_per_second = urgency_per_second
        self._clock = clock

    def score(self, task: Task, *, now: float) -> float:
        if not task.dynamic_priority:
            return float(task.priority)
        waited = max(0.0, now - task.enqueued_at)
        return task.priority + self.urgency_per_second * waited

    def rank(self, tasks: Sequence[Task]) -> Ranking:
        now = self._clock()
        indexed = list(enumerate(tasks))
        indexed.sort(key=lambda item: (-self.score(item[1], now=now), item[0]))
        return Ranking(task_ids=[task.task_id for _, task in indexed])


class AiDrivenPrioritization:
    """Delegates ordering to an external ranker and repairs its answer."""

    name = PrioritizationName.AI_DRIVEN

    def __init__(self, ranker: Ranker | None = None) -> None:
        self.ranker = ranker or DependencyImpactRanker()

    def rank(self, tasks: Sequence[Task]) -> Ranking:
        input_ids = [task.task_id for task in tasks]
        try:
            proposed = list(self.ranker(tasks))
        except Exception as error:  # noqa: BLE001
            logger.warning("Task ranker failed, using static order: %s", error)
            return Ranking(task_ids=input_ids, fallback_reason=f"ranker failed: {error}")

        known = set(input_ids)
        ordered: list[str] = []
        dropped: list[str] = []
        for task_id in proposed:
            if task_id not in known:
                dropped.append(str(task_id))
                continue
            if task_id in ordered:
                continue
            ordered.append(task_id)
        if dropped:
            logger.warning("Task ranker returned unknown ids, dropped: %s", ", ".join(dropped))
        ordered.extend(task_id for task_id in input_ids if task_id not in ordered)
        return Ranking(task_ids=ordered)


class DependencyImpactRanker:
    """Ranks by number of transitive dependents, then by priority.

    Dependents are counted over ``universe`` (normally every task of the run)
    because the tasks being ranked are eligible ones, whose dependents are
    usually still waiting.
    """

    def __init__(self, universe: Callable[[], Iterable[Task]] | None = None) -> None:
        self._universe = universe

    def __call__(self, tasks: Sequence[Task]) -> list[str]:
        pool = list(self._universe()) if self._universe is not None else list(tasks)
        dependents: dict[str, set[str]] = {}
        for task in pool:
            for dependency in task.dependencies:
                dependents.setdefault(dependency, set()).add(task.task_id)

        def _impact(task_id: str) -> int:
            seen: set[str] = set()
            stack = list(dependents.get(task_id, ()))
            while stack:
                current = stack.pop()
                if current in seen:
                    continue
                seen.add(current)
                stack.extend(dependents.get(current, ()))
            return len(seen)

        indexed = list(enumerate(tasks))
        indexed.sort(key=lambda item: (-_impact(item[1].task_id), -item[1].priority, item[0]))
        return [task.task_id for _, task in indexed]


def build_prioritization(
    name: PrioritizationName,
    *,
    urgency_per_second: float = 1.0,
    ranker: Ranker | None = None,
    universe: Callable[[], Iterable[Task]] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> PrioritizationStrategy:
    """Resolve a configured prioritization name into a strategy object."""

    if name == PrioritizationName.STATIC:
        return StaticPrioritization()
    if name == PrioritizationName.DYNAMIC:
        return DynamicPrioritization(urgency_per_second=urgency_per_second, clock=clock)
    return AiDrivenPrioritization(ranker=ranker or DependencyImpactRanker(universe))

from __future__ import annotations

import allure

from team_orchestra.orchestrator.models import PrioritizationName
from team_orchestra.orchestrator.prioritization import (
    AiDrivenPrioritization,
    DependencyImpactRanker,
    DynamicPrioritization,
    StaticPrioritization,
    build_prioritization,
)
from team_orchestra.orchestrator.task_repository import TaskRepository

pytestmark = [
    allure.epic("Planning"),
    allure.feature("Prioritization"),
]


def test_static_order_is_deterministic(make_task) -> None:
    tasks = [make_task("T1", priority=10), make_task("T2", priority=90), make_task("T3")]
    strategy = StaticPrioritization()

    first = strategy.rank(tasks).task_ids
    second = strategy.rank(tasks).task_ids

    assert first == second == ["T1", "T2", "T3"]


def test_dynamic_priority_adds_waiting_time(make_task, clock) -> None:
    repository = TaskRepository(clock=clock)
    repository.add_task(make_task("old-low", priority=25))
    clock.advance(60)
    repository.add_task(make_task("new-high", priority=75))
    strategy = DynamicPrioritization(urgency_per_second=1.0, clock=clock)

    assert strategy.rank(repository.eligible()).task_ids == ["old-low", "new-high"]

    strategy.urgency_per_second = 0.1
    assert strategy.rank(repository.eligible()).task_ids == ["new-high", "old-low"]


def test_dynamic_priority_can_be_pinned_per_task(make_task, clock) -> None:
    repository = TaskRepository(clock=clock)
    repository.add_task(make_task("pinned", priority=25, dynamic_priority=False))
    clock.advance(600)
    repository.add_task(make_task("fresh", priority=75))
    strategy = DynamicPrioritization(urgency_per_second=1.0, clock=clock)

    assert strategy.score(repository.get("pinned"), now=clock.now) == 25.0
    assert strategy.rank(repository.eligible()).task_ids == ["fresh", "pinned"]


def test_dynamic_ties_keep_input_order(make_task, clock) -> None:
    repository = TaskRepository([make_task("a"), make_task("b"), make_task("c")], clock=clock)
    strategy = DynamicPrioritization(urgency_per_second=1.0, clock=clock)

    assert strategy.rank(repository.eligible()).task_ids == ["a", "b", "c"]


def test_ai_driven_falls_back_to_static_order_when_ranker_fails(make_task) -> None:
    def _broken(_tasks):
        raise RuntimeError("model offline")

    tasks = [make_task("T1"), make_task("T2")]

    ranking = AiDrivenPrioritization(ranker=_broken).rank(tasks)

    assert ranking.task_ids == ["T1", "T2"]
    assert ranking.fallback_reason == "ranker failed: model offline"


def test_ai_driven_repairs_ranker_output(make_task) -> None:
    tasks = [make_task("T1"), make_task("T2"), make_task("T3")]

    ranking = AiDrivenPrioritization(ranker=lambda _: ["T3", "ghost", "T3", "T1"]).rank(tasks)

    assert ranking.task_ids == ["T3", "T1", "T2"]
    assert ranking.fallback_reason is None


def test_dependency_impact_counts_dependents_across_all_tasks(make_task, clock) -> None:
    repository = TaskRepository(
        [
            make_task("leaf", priority=100),
            make_task("root"),
            make_task("mid", dependencies=["root"]),
            make_task("top", dependencies=["mid"]),
        ],
        clock=clock,
    )
    ranker = DependencyImpactRanker(universe=repository.tasks)

    assert ranker(repository.eligible()) == ["root", "leaf"]


def test_build_prioritization_resolves_names() -> None:
    assert build_prioritization(PrioritizationName.STATIC).name == PrioritizationName.STATIC
    assert build_prioritization(PrioritizationName.DYNAMIC).name == PrioritizationName.DYNAMIC
    strategy = build_prioritization(PrioritizationName.AI_DRIVEN)
    assert isinstance(strategy, AiDrivenPrioritization)
    assert isinstance(strategy.ranker, DependencyImpactRanker)

from __future__ import annotations

import allure
import pytest

from team_orchestra.orchestrator.agent_registry import (
    AgentRegistry,
    jaccard,
    normalize_skill,
    normalize_skills,
)
from team_orchestra.orchestrator.errors import ConfigurationError

pytestmark = [
    allure.epic("Planning"),
    allure.feature("Agents & Workload Distribution"),
]


def test_normalize_skill_collapses_case_and_separators() -> None:
    assert normalize_skill("  Data Analysis ") == "data_analysis"
    assert normalize_skill("data-analysis") == "data_analysis"
    assert normalize_skills(["Writing", "", "  "]) == frozenset({"writing"})


def test_jaccard_similarity() -> None:
    assert jaccard(frozenset({"a", "b"}), frozenset({"b", "c"})) == pytest.approx(1 / 3)
    assert jaccard(frozenset(), frozenset()) == 1.0
    assert jaccard(frozenset({"a"}), frozenset()) == 1.0
    assert jaccard(frozenset(), frozenset({"a"})) == 0.0


def test_register_rejects_duplicates_and_zero_capacity(make_agent) -> None:
    registry = AgentRegistry([make_agent("a1")])

    with pytest.raises(ConfigurationError, match="Duplicate agent id"):
        registry.register(make_agent("a1"))
    with pytest.raises(ConfigurationError, match="capacity >= 1"):
        registry.register(make_agent("a2", capacity=0))


def test_rank_candidates_orders_by_match_then_load_then_registration(make_agent) -> None:
    registry = AgentRegistry(
        [
            make_agent("partial", skills=["writing"], capacity=2),
            make_agent("busy", skills=["writing", "editing"], capacity=2),
            make_agent("idle", skills=["writing", "editing"], capacity=2),
        ],
    )
    registry.acquire("busy")

    ranked = registry.rank_candidates(frozenset({"writing", "editing"}))

    assert [item.agent.agent_id for item in ranked] == ["idle", "busy", "partial"]
    assert ranked[0].skill_match == 1.0
    assert ranked[2].skill_match == 0.5


def test_rank_candidates_filters_threshold_exclusions_and_capacity(make_agent) -> None:
    registry = AgentRegistry(
        [
            make_agent("weak", skills=["writing"]),
            make_agent("strong", skills=["writing", "editing"]),
            make_agent("excluded", skills=["writing", "editing"]),
        ],
    )
    registry.acquire("strong")
    required = frozenset({"writing", "editing"})

    free = registry.rank_candidates(
        required,
        min_skill_match=0.75,
        excluded=frozenset({"excluded"}),
    )
    any_load = registry.rank_candidates(
        required,
        min_skill_match=0.75,
        excluded=frozenset({"excluded"}),
        require_capacity=False,
    )

    assert free == []
    assert [item.agent.agent_id for item in any_load] == ["strong"]


def test_acquire_and_release_track_capacity(make_agent) -> None:
    registry = AgentRegistry([make_agent("a1", capacity=2)])

    registry.acquire("a1")
    registry.acquire("a1")

    assert registry.capacity_of("a1") == 0
    assert registry.total_capacity() == 0
    with pytest.raises(RuntimeError, match="no remaining capacity"):
        registry.acquire("a1")

    registry.release("a1")
    registry.release("a1")
    registry.release("a1")
    assert registry.capacity_of("a1") == 2


def test_unavailable_agent_has_no_capacity(make_agent) -> None:
    registry = AgentRegistry([make_agent("a1", skills=["writing"])])

    registry.set_available("a1", False)

    assert registry.capacity_of("a1") == 0
    assert registry.rank_candidates(frozenset({"writing"}), require_capacity=False) == []


def test_best_match_and_covered_skills(make_agent) -> None:
    registry = AgentRegistry(
        [
            make_agent("a1", skills=["writing"]),
            make_agent("a2", skills=["research", "writing"]),
        ],
    )
    required = frozenset({"research", "security"})

    assert registry.best_match(required) == pytest.approx(1 / 3)
    assert registry.covered_skills(required) == frozenset({"research"})


def test_get_unknown_agent_raises_key_error(make_agent) -> None:
    registry = AgentRegistry([make_agent("a1")])

    with pytest.raises(KeyError, match="Unknown agent id"):
        registry.get("ghost")

"""Workload distribution strategies choosing an agent for a task."""

from __future__ import annotations

from typing import Protocol

from team_orchestra.orchestrator.agent_registry import AgentRegistry, Candidate
from team_orchestra.orchestrator.models import DistributionName, Task


class DistributionStrategy(Protocol):
    """Picks one agent with free capacity for a task, or ``None``."""

    name: DistributionName

    def choose(
        self,
        task: Task,
        registry: AgentRegistry,
        *,
        min_skill_match: float,
    ) -> Candidate | None: ...


def qualified_candidates(
    task: Task,
    registry: AgentRegistry,
    *,
    min_skill_match: float,
) -> list[Candidate]:
    """Agents with free capacity that meet the threshold and were not excluded."""

    return registry.rank_candidates(
        task.required_skills,
        min_skill_match=min_skill_match,
        excluded=task.excluded_agent_ids,
    )


def preferred_candidate(task: Task, candidates: list[Candidate]) -> Candidate | None:
    """The task's preferred agent when it is among ``candidates``."""

    if task.preferred_agent_id is None:
        return None
    for item in candidates:
        if item.agent.agent_id == task.preferred_agent_id:
            return item
    return None


class SkillsBasedDistribution:
    """Preferred agent first, then best skill match, lowest load, registration order."""

    name = DistributionName.SKILLS_BASED

    def choose(
        self,
        task: Task,
        registry: AgentRegistry,
        *,
        min_skill_match: float,
    ) -> Candidate | None:
        candidates = qualified_candidates(task, registry, min_skill_match=min_skill_match)
        if not candidates:
            return None
        return preferred_candidate(task, candidates) or candidates[0]


class BalancedDistribution:
    """Preferred agent first, then lowest current load, then registration order."""

    name = DistributionName.BALANCED

    def choose(
        self,
        task: Task,
        registry: AgentRegistry,
        *,
        min_skill_match: float,
    ) -> Candidate | None:
        candidates = qualified_candidates(task, registry, min_skill_match=min_skill_match)
        if not candidates:
            return None
        return preferred_candidate(task, candidates) or min(
            candidates,
            key=lambda item: (item.agent.load, item.agent.registration_index),
        )


class AvailabilityDistribution:
    """Preferred agent first, then the first free agent in registration order."""

    name = DistributionName.AVAILABILITY

    def choose(
        self,
        task: Task,
        registry: AgentRegistry,
        *,
        min_skill_match: float,
    ) -> Candidate | None:
        candidates = qualified_candidates(task, registry, min_skill_match=min_skill_match)
        if not candidates:
            return None
        return preferred_candidate(task, candidates) or min(
            candidates,
            key=lambda item: item.agent.registration_index,
        )


def build_distribution(name: DistributionName) -> DistributionStrategy:
    """Resolve a configured distribution name into a strategy object."""

    if name == DistributionName.SKILLS_BASED:
        return SkillsBasedDistribution()
    if name == DistributionName.BALANCED:
        return BalancedDistribution()
    if name == DistributionName.AVAILABILITY:
        return AvailabilityDistribution()
    raise ValueError(
        f"Unsupported workload distribution: {name!r}. "
        f"Use one of {tuple(item.value for item in DistributionName)}.",
    )

"""Agent capability profiles and skill matching."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from team_orchestra.orchestrator.errors import ConfigurationError
from team_orchestra.orchestrator.models import Agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Candidate:
    """Agent considered for a task together with its skill match."""

    agent: Agent
    skill_match: float


def normalize_skill(value: str) -> str:
    """Lowercase and collapse separators so `Data Analysis` matches `data-analysis`."""

    return "_".join(value.strip().lower().replace("-", " ").split())


def normalize_skills(values: Iterable[str]) -> frozenset[str]:
    return frozenset(skill for skill in (normalize_skill(item) for item in values) if skill)


def jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    """Jaccard similarity; a task without required skills matches everyone."""

    if not right:
        return 1.0
    union = left | right
    if not union:
        return 1.0
    return len(left & right) / len(union)


class AgentRegistry:
    """In-memory registry of team members for one run.

    Agents are never removed during a run; availability is toggled instead so
    capacity accounting stays consistent for in-flight tasks.
    """

    def __init__(self, agents: Iterable[Agent] = ()) -> None:
        self._agents: dict[str, Agent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        if agent.agent_id in self._agents:
            raise ConfigurationError(f"Duplicate agent id: {agent.agent_id!r}")
        if agent.capacity < 1:
            raise ConfigurationError(f"Agent {agent.agent_id!r} must have capacity >= 1")
        agent.registration_index = len(self._agents)
        self._agents[agent.agent_id] = agent

    def get_agents(self) -> list[Agent]:
        """Agents in registration order."""

        return list(self._agents.values())

    def get(self, agent_id: str) -> Agent:
        try:
            return self._agents[agent_id]
        except KeyError as error:
            raise KeyError(f"Unknown agent id: {agent_id!r}") from error

    def capacity_of(self, agent_id: str) -> int:
        """Remaining capacity; zero for unavailable agents."""

        return self.get(agent_id).remaining_capacity

    def total_capacity(self) -> int:
        return sum(agent.remaining_capacity for agent in self._agents.values())

    def skill_match(self, agent_id: str, required_skills: frozenset[str]) -> float:
        return jaccard(self.get(agent_id).skills, required_skills)

    def best_match(self, required_skills: frozenset[str]) -> float:
        """Best skill match over all registered agents, ignoring load."""

        return max(
            (jaccard(agent.skills, required_skills) for agent in self._agents.values()),
            default=0.0,
        )

    def covered_skills(self, required_skills: frozenset[str]) -> frozenset[str]:
        """Required skills that at least one agent has."""

        team_skills: set[str] = set()
        for agent in self._agents.values():
            team_skills |= agent.skills
        return frozenset(required_skills & team_skills)

    def rank_candidates(
        self,
        required_skills: frozenset[str],
        *,
        min_skill_match: float = 0.0,
        excluded: frozenset[str] = frozenset(),
        require_capacity: bool = True,
    ) -> list[Candidate]:
        """Qualified agents ordered by score desc, then lowest load, then registration."""

        candidates = [
            Candidate(agent=agent, skill_match=jaccard(agent.skills, required_skills))
            for agent in self._agents.values()
            if agent.available and agent.agent_id not in excluded
        ]
        candidates = [item for item in candidates if item.skill_match >= min_skill_match]
        if require_capacity:
            candidates = [item for item in candidates if item.agent.remaining_capacity > 0]
        candidates.sort(
            key=lambda item: (
                -item.skill_match,
                item.agent.load,
                item.agent.registration_index,
            ),
        )
        return candidates

    def acquire(self, agent_id: str) -> None:
        agent = self.get(agent_id)
        if agent.remaining_capacity <= 0:
            raise RuntimeError(f"Agent {agent_id!r} has no remaining capacity")
        agent.load += 1

    def release(self, agent_id: str) -> None:
        agent = self.get(agent_id)
        if agent.load <= 0:
            logger.warning("Release ignored for idle agent %s", agent_id)
            return
        agent.load -= 1

    def set_available(self, agent_id: str, available: bool) -> None:
        self.get(agent_id).available = available

"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from team_orchestra.orchestrator.agent_registry import normalize_skills
from team_orchestra.orchestrator.models import Agent, Task


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_task() -> Callable[..., Task]:
    def _make(task_id: str, *, skills=(), dependencies=(), **kwargs) -> Task:
        kwargs.setdefault("title", task_id.upper())
        kwargs.setdefault("description", f"Work on {task_id}.")
        return Task(
            task_id=task_id,
            required_skills=normalize_skills(skills),
            dependencies=frozenset(dependencies),
            **kwargs,
        )

    return _make


@pytest.fixture()
def make_agent() -> Callable[..., Agent]:
    def _make(agent_id: str, *, skills=(), capacity: int = 1, **kwargs) -> Agent:
        kwargs.setdefault("name", agent_id.title())
        return Agent(
            agent_id=agent_id,
            skills=normalize_skills(skills),
            capacity=capacity,
            **kwargs,
        )

    return _make


@pytest.fixture()
def descriptor_payload() -> dict:
    """Three tasks where T2 waits for T1, served by a single writer."""

    return {
        "name": "Docs Team",
        "agents": [
            {"id": "writer", "name": "Wren", "role": "Writer", "skills": ["writing"]},
        ],
        "backlogTasks": [
            {
                "id": "T1",
                "title": "Outline",
                "description": "Outline the guide.",
                "expectedOutput": "Outline",
                "requiredSkills": ["writing"],
            },
            {
                "id": "T2",
                "title": "Draft",
                "description": "Draft the guide from the outline.",
                "requiredSkills": ["writing"],
                "dependencies": ["T1"],
            },
            {
                "id": "T3",
                "title": "Glossary",
                "description": "Collect glossary terms.",
                "requiredSkills": ["writing"],
            },
        ],
        "orchestrationConfig": {
            "mode": "conservative",
            "continuousOrchestration": True,
            "maxActiveTasks": 2,
            "taskPrioritization": "static",
            "workloadDistribution": "skills-based",
        },
    }


@pytest.fixture()
def write_descriptor(tmp_path: Path) -> Callable[[dict], Path]:
    def _write(payload: dict, name: str = "team.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload), "utf-8")
        return path

    return _write

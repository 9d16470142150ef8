from __future__ import annotations

import copy
from pathlib import Path

import allure
import pytest

from team_orchestra.config import OrchestratorSettings
from team_orchestra.orchestrator.descriptor import (
    parse_effort,
    parse_priority,
    parse_team_descriptor,
    read_team_descriptor,
)
from team_orchestra.orchestrator.errors import ConfigurationError
from team_orchestra.orchestrator.models import (
    DEFAULT_PRIORITY,
    DistributionName,
    OrchestrationMode,
    PrioritizationName,
)

pytestmark = [
    allure.epic("Team Input"),
    allure.feature("Descriptor Validation"),
]


def test_parse_descriptor_builds_agents_tasks_and_config(descriptor_payload: dict) -> None:
    descriptor = parse_team_descriptor(descriptor_payload)

    assert descriptor.name == "Docs Team"
    assert [agent.agent_id for agent in descriptor.agents] == ["writer"]
    assert [task.task_id for task in descriptor.backlog] == ["T1", "T2", "T3"]
    assert descriptor.backlog[1].dependencies == frozenset({"T1"})
    assert descriptor.config.mode == OrchestrationMode.CONSERVATIVE
    assert descriptor.config.continuous is True
    assert descriptor.config.max_active_tasks == 2
    assert descriptor.config.prioritization == PrioritizationName.STATIC
    assert descriptor.config.workload_distribution == DistributionName.SKILLS_BASED


def test_agent_capacity_defaults_to_max_active_tasks(descriptor_payload: dict) -> None:
    descriptor = parse_team_descriptor(descriptor_payload)

    assert descriptor.agents[0].capacity == 2


def test_resource_requirements_supply_skills_and_dependencies(descriptor_payload: dict) -> None:
    payload = copy.deepcopy(descriptor_payload)
    payload["backlogTasks"][2] = {
        "id": "T3",
        "description": "Collect glossary terms.",
        "resourceRequirements": {
            "skillsRequired": ["Data Analysis", "writing"],
            "dependencies": ["T1"],
            "estimatedTime": "2-4 hours",
            "budget": "small",
        },
    }

    task = parse_team_descriptor(payload).backlog[2]

    assert task.required_skills == frozenset({"data_analysis", "writing"})
    assert task.dependencies == frozenset({"T1"})
    assert task.estimated_effort == 3.0
    assert task.resource_requirements == {
        "dependencies": ["T1"],
        "estimatedTime": "2-4 hours",
        "budget": "small",
    }
    assert task.title == "T3"
    assert task.priority == DEFAULT_PRIORITY
    assert task.preferred_agent_id is None


def test_outside_prerequisites_stay_as_resource_metadata(descriptor_payload: dict) -> None:
    payload = copy.deepcopy(descriptor_payload)
    payload["agents"].append(
        {"id": "frontendDeveloper", "name": "Fran", "skills": ["react", "d3js"]},
    )
    payload["backlogTasks"].append(
        {
            "id": "dashboard",
            "title": "Real-time Dashboard Development",
            "description": "Build the live analytics dashboard.",
            "agent": "frontendDeveloper",
            "resourceRequirements": {
                "skillsRequired": ["react", "d3js", "websockets"],
                "dependencies": ["api_endpoints", "T3"],
            },
        },
    )

    task = parse_team_descriptor(payload).backlog[-1]

    assert task.dependencies == frozenset({"T3"})
    assert task.resource_requirements["dependencies"] == ["api_endpoints", "T3"]
    assert task.preferred_agent_id == "frontendDeveloper"


def test_top_level_config_keys_are_used_without_orchestration_config(
    descriptor_payload: dict,
) -> None:
    payload = copy.deepcopy(descriptor_payload)
    del payload["orchestrationConfig"]
    payload["mode"] = "innovative"
    payload["taskPrioritization"] = "ai-driven"

    config = parse_team_descriptor(payload).config

    assert config.mode == OrchestrationMode.INNOVATIVE
    assert config.prioritization == PrioritizationName.AI_DRIVEN
    assert config.continuous is False


def test_settings_defaults_fill_missing_knobs(descriptor_payload: dict) -> None:
    defaults = OrchestratorSettings(min_skill_match=0.4, max_retries_per_agent=3)

    config = parse_team_descriptor(descriptor_payload, defaults=defaults).config

    assert config.min_skill_match == 0.4
    assert config.max_retries_per_agent == 3


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda p: p.update(agents=[]), "agents must be a non-empty array"),
        (
            lambda p: p["agents"].append(dict(p["agents"][0])),
            "Duplicate agent id",
        ),
        (
            lambda p: p["backlogTasks"].append(dict(p["backlogTasks"][0])),
            "Duplicate task id",
        ),
        (
            lambda p: p["backlogTasks"][0].update(dependencies=["missing"]),
            "depends on unknown tasks: missing",
        ),
        (
            lambda p: p["backlogTasks"][0].update(dependencies=["T1"]),
            "depends on itself",
        ),
        (
            lambda p: p["backlogTasks"][0].update(dependencies=["T2"]),
            "Dependency cycle detected",
        ),
        (lambda p: p["orchestrationConfig"].update(mode="chaotic"), "Unsupported mode"),
        (
            lambda p: p["orchestrationConfig"].update(workloadDistribution="random"),
            "Unsupported workloadDistribution",
        ),
        (lambda p: p["orchestrationConfig"].update(maxActiveTasks=0), "must be >= 1"),
        (
            lambda p: p["orchestrationConfig"].update(minSkillMatch=1.5),
            "minSkillMatch must be within",
        ),
        (lambda p: p["backlogTasks"][0].pop("description"), "description must be"),
        (lambda p: p["backlogTasks"][0].update(splitStrategy="magic"), "splitStrategy"),
        (lambda p: p["backlogTasks"][0].update(priority="urgent"), "Unsupported task priority"),
        (lambda p: p["backlogTasks"][0].update(agent="ghost"), "prefers unknown agent 'ghost'"),
        (lambda p: p["backlogTasks"][0].update(agent=7), "agent must be an agent id or null"),
    ],
)
def test_invalid_descriptors_raise_configuration_error(
    descriptor_payload: dict,
    mutate,
    message: str,
) -> None:
    payload = copy.deepcopy(descriptor_payload)
    mutate(payload)

    with pytest.raises(ConfigurationError, match=message):
        parse_team_descriptor(payload)


def test_read_descriptor_wraps_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", "utf-8")

    with pytest.raises(ConfigurationError, match="not valid JSON"):
        read_team_descriptor(path)


def test_read_descriptor_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="Descriptor not found"):
        read_team_descriptor(tmp_path / "absent.json")


def test_shipped_example_descriptors_are_valid() -> None:
    teams_dir = Path(__file__).resolve().parents[1] / "examples" / "teams"
    paths = sorted(teams_dir.glob("*.json"))

    assert paths
    for path in paths:
        descriptor = read_team_descriptor(path)
        assert descriptor.agents
        assert descriptor.backlog


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        (5, 5.0),
        ("2-4 hours", 3.0),
        ("1 day", 8.0),
        ("30 minutes", 0.5),
        ("2 weeks", 80.0),
        ("6", 6.0),
        ("whenever", None),
        ("3 fortnights", None),
    ],
)
def test_parse_effort(value: object, expected: float | None) -> None:
    assert parse_effort(value) == expected


def test_parse_priority_accepts_labels_and_integers() -> None:
    assert parse_priority("Critical") == 100
    assert parse_priority("low") == 25
    assert parse_priority(7) == 7
    assert parse_priority(None) == DEFAULT_PRIORITY
    with pytest.raises(ConfigurationError):
        parse_priority(-1)
    with pytest.raises(ConfigurationError):
        parse_priority(True)

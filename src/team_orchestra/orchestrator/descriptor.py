"""Team descriptor parsing and validation.

A descriptor is plain JSON with the same vocabulary as the team definitions it
replaces (camelCase keys, ``resourceRequirements.skillsRequired`` and friends).
Everything is validated up front so malformed input fails with
``ConfigurationError`` before any planning starts.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from team_orchestra.config import OrchestratorSettings
from team_orchestra.orchestrator.agent_registry import normalize_skills
from team_orchestra.orchestrator.errors import ConfigurationError
from team_orchestra.orchestrator.models import (
    DEFAULT_PRIORITY,
    PRIORITY_LABELS,
    Agent,
    DistributionName,
    OrchestrationConfig,
    OrchestrationMode,
    PrioritizationName,
    Task,
    TeamDescriptor,
)

_CONFIG_KEYS = (
    "mode",
    "continuousOrchestration",
    "maxActiveTasks",
    "taskPrioritization",
    "workloadDistribution",
    "allowTaskGeneration",
    "minSkillMatch",
    "maxUnassignedCycles",
    "maxRetriesPerAgent",
    "minReplanIntervalSeconds",
    "urgencyPerSecond",
    "generationMatchThreshold",
    "maxGeneratedTasks",
    "orchestrationStrategy",
)
_SPLIT_STRATEGIES = ("auto", "manual")
_EFFORT_PATTERN = re.compile(
    r"^\s*(?P<low>\d+(?:\.\d+)?)(?:\s*-\s*(?P<high>\d+(?:\.\d+)?))?\s*(?P<unit>[a-zA-Z]+)?",
)
_EFFORT_UNITS_IN_HOURS = {
    "m": 1 / 60,
    "min": 1 / 60,
    "mins": 1 / 60,
    "minute": 1 / 60,
    "minutes": 1 / 60,
    "h": 1.0,
    "hr": 1.0,
    "hrs": 1.0,
    "hour": 1.0,
    "hours": 1.0,
    "d": 8.0,
    "day": 8.0,
    "days": 8.0,
    "w": 40.0,
    "week": 40.0,
    "weeks": 40.0,
}


def read_team_descriptor(
    path: Path,
    *,
    defaults: OrchestratorSettings | None = None,
) -> TeamDescriptor:
    """Load a descriptor file and validate it."""

    try:
        raw = json.loads(path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise ConfigurationError(f"Descriptor not found: {path}") from error
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"Descriptor {path} is not valid JSON: {error}") from error
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Expected JSON object in {path}")
    return parse_team_descriptor(raw, defaults=defaults)


def parse_team_descriptor(
    raw: dict[str, Any],
    *,
    defaults: OrchestratorSettings | None = None,
) -> TeamDescriptor:
    """Validate a decoded descriptor and build domain objects."""

    name = raw.get("name", "team")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError("descriptor.name must be a non-empty string")

    raw_config = raw.get("orchestrationConfig")
    if raw_config is None:
        raw_config = {key: raw[key] for key in _CONFIG_KEYS if key in raw}
    if not isinstance(raw_config, dict):
        raise ConfigurationError("descriptor.orchestrationConfig must be an object")
    config = parse_orchestration_config(raw_config, defaults=defaults or OrchestratorSettings())

    raw_agents = raw.get("agents")
    if not isinstance(raw_agents, list) or not raw_agents:
        raise ConfigurationError("descriptor.agents must be a non-empty array")
    agents = [
        _parse_agent(item, index=index, default_capacity=config.max_active_tasks)
        for index, item in enumerate(raw_agents)
    ]
    _ensure_unique([agent.agent_id for agent in agents], label="agent id")

    raw_tasks = raw.get("backlogTasks", [])
    if not isinstance(raw_tasks, list):
        raise ConfigurationError("descriptor.backlogTasks must be an array")
    tasks = [_parse_task(item, index=index) for index, item in enumerate(raw_tasks)]
    _ensure_unique([task.task_id for task in tasks], label="task id")
    _link_tasks(tasks, {agent.agent_id for agent in agents})
    _validate_dependency_graph(tasks)

    return TeamDescriptor(name=name.strip(), agents=agents, backlog=tasks, config=config)


def parse_orchestration_config(
    raw: dict[str, Any],
    *,
    defaults: OrchestratorSettings,
) -> OrchestrationConfig:
    """Validate orchestration knobs, falling back to settings defaults."""

    mode = _parse_enum(raw.get("mode", "adaptive"), OrchestrationMode, "mode")
    prioritization = _parse_enum(
        raw.get("taskPrioritization", "static"),
        PrioritizationName,
        "taskPrioritization",
    )
    distribution = _parse_enum(
        raw.get("workloadDistribution", "skills-based"),
        DistributionName,
        "workloadDistribution",
    )
    strategy = raw.get("orchestrationStrategy", "")
    if not isinstance(strategy, str):
        raise ConfigurationError("orchestrationStrategy must be a string")

    return OrchestrationConfig(
        mode=mode,
        continuous=_bool(raw, "continuousOrchestration", default=False),
        max_active_tasks=_int(raw, "maxActiveTasks", default=3, minimum=1),
        prioritization=prioritization,
        workload_distribution=distribution,
        allow_task_generation=_bool(raw, "allowTaskGeneration", default=False),
        min_skill_match=_ratio(raw, "minSkillMatch", default=defaults.min_skill_match),
        max_unassigned_cycles=_int(
            raw,
            "maxUnassignedCycles",
            default=defaults.max_unassigned_cycles,
            minimum=1,
        ),
        max_retries_per_agent=_int(
            raw,
            "maxRetriesPerAgent",
            default=defaults.max_retries_per_agent,
            minimum=0,
        ),
        min_replan_interval_seconds=_float(
            raw,
            "minReplanIntervalSeconds",
            default=defaults.min_replan_interval_seconds,
        ),
        urgency_per_second=_float(
            raw,
            "urgencyPerSecond",
            default=defaults.urgency_per_second,
        ),
        generation_match_threshold=_ratio(
            raw,
            "generationMatchThreshold",
            default=defaults.generation_match_threshold,
        ),
        max_generated_tasks=_int(
            raw,
            "maxGeneratedTasks",
            default=defaults.max_generated_tasks,
            minimum=0,
        ),
        strategy=strategy.strip(),
    )


def parse_effort(value: object) -> float | None:
    """Convert an effort estimate to hours; ranges resolve to their midpoint."""

    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigurationError("estimated effort must be a number or a duration string")
    if isinstance(value, int | float):
        if value < 0:
            raise ConfigurationError("estimated effort must be >= 0")
        return float(value)
    if not isinstance(value, str):
        raise ConfigurationError("estimated effort must be a number or a duration string")
    match = _EFFORT_PATTERN.match(value)
    if match is None:
        return None
    low = float(match.group("low"))
    high = float(match.group("high")) if match.group("high") else low
    unit = (match.group("unit") or "hours").lower()
    multiplier = _EFFORT_UNITS_IN_HOURS.get(unit)
    if multiplier is None:
        return None
    return round((low + high) / 2 * multiplier, 4)


def parse_priority(value: object) -> int:
    """Accept priority labels (critical/high/medium/low) or integer weights."""

    if value is None:
        return DEFAULT_PRIORITY
    if isinstance(value, bool):
        raise ConfigurationError("task priority must be a label or an integer")
    if isinstance(value, int):
        if value < 0:
            raise ConfigurationError("task priority must be >= 0")
        return value
    if isinstance(value, str):
        label = value.strip().lower()
        if label in PRIORITY_LABELS:
            return PRIORITY_LABELS[label]
        raise ConfigurationError(
            f"Unsupported task priority {value!r}. Use one of {tuple(PRIORITY_LABELS)}.",
        )
    raise ConfigurationError("task priority must be a label or an integer")


def _parse_agent(raw: object, *, index: int, default_capacity: int) -> Agent:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"agents[{index}] must be an object")
    agent_id = raw.get("id")
    if not isinstance(agent_id, str) or not agent_id.strip():
        raise ConfigurationError(f"agents[{index}].id must be a non-empty string")
    name = raw.get("name", agent_id)
    role = raw.get("role", "")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"agents[{index}].name must be a non-empty string")
    if not isinstance(role, str):
        raise ConfigurationError(f"agents[{index}].role must be a string")
    skills = _string_list(raw.get("skills", []), f"agents[{index}].skills")
    capacity = _int(raw, "capacity", default=default_capacity, minimum=1, where=f"agents[{index}]")
    available = _bool(raw, "available", default=True, where=f"agents[{index}]")
    return Agent(
        agent_id=agent_id.strip(),
        name=name.strip(),
        role=role.strip(),
        skills=normalize_skills(skills),
        capacity=capacity,
        available=available,
        registration_index=index,
    )


def _parse_task(raw: object, *, index: int) -> Task:
    where = f"backlogTasks[{index}]"
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{where} must be an object")
    task_id = raw.get("id")
    if not isinstance(task_id, str) or not task_id.strip():
        raise ConfigurationError(f"{where}.id must be a non-empty string")
    description = raw.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ConfigurationError(f"{where}.description must be a non-empty string")
    title = raw.get("title", task_id)
    expected_output = raw.get("expectedOutput", "")
    orchestration_rules = raw.get("orchestrationRules", "")
    for field_name, value in (
        ("title", title),
        ("expectedOutput", expected_output),
        ("orchestrationRules", orchestration_rules),
    ):
        if not isinstance(value, str):
            raise ConfigurationError(f"{where}.{field_name} must be a string")

    resources = raw.get("resourceRequirements", {})
    if not isinstance(resources, dict):
        raise ConfigurationError(f"{where}.resourceRequirements must be an object")
    resources = dict(resources)
    skills = _string_list(raw.get("requiredSkills", []), f"{where}.requiredSkills")
    skills += _string_list(
        resources.pop("skillsRequired", []),
        f"{where}.resourceRequirements.skillsRequired",
    )
    dependencies = _string_list(raw.get("dependencies", []), f"{where}.dependencies")
    if "dependencies" in resources:
        resources["dependencies"] = _string_list(
            resources["dependencies"],
            f"{where}.resourceRequirements.dependencies",
        )
    preferred_agent = raw.get("agent")
    if preferred_agent is not None and (
        not isinstance(preferred_agent, str) or not preferred_agent.strip()
    ):
        raise ConfigurationError(f"{where}.agent must be an agent id or null")
    effort_raw = raw.get("estimatedEffort", resources.get("estimatedTime"))
    try:
        effort = parse_effort(effort_raw)
        priority = parse_priority(raw.get("priority"))
    except ConfigurationError as error:
        raise ConfigurationError(f"{where}: {error}") from error

    split_strategy = raw.get("splitStrategy")
    if split_strategy is not None and split_strategy not in _SPLIT_STRATEGIES:
        raise ConfigurationError(f"{where}.splitStrategy must be one of {_SPLIT_STRATEGIES}")

    return Task(
        task_id=task_id.strip(),
        title=title.strip() or task_id.strip(),
        description=description.strip(),
        expected_output=expected_output.strip(),
        required_skills=normalize_skills(skills),
        estimated_effort=effort,
        dependencies=frozenset(item.strip() for item in dependencies if item.strip()),
        priority=priority,
        dynamic_priority=_bool(raw, "dynamicPriority", default=True, where=where),
        adaptable=_bool(raw, "adaptable", default=False, where=where),
        split_strategy=split_strategy,
        merge_compatible=_bool(raw, "mergeCompatible", default=False, where=where),
        resource_requirements=resources,
        quality_gates=tuple(_string_list(raw.get("qualityGates", []), f"{where}.qualityGates")),
        external_validation_required=_bool(
            raw,
            "externalValidationRequired",
            default=False,
            where=where,
        ),
        orchestration_rules=orchestration_rules.strip(),
        preferred_agent_id=preferred_agent.strip() if preferred_agent else None,
    )


def _link_tasks(tasks: list[Task], agent_ids: set[str]) -> None:
    """Resolve preferred agents and promote backlog prerequisites to dependencies.

    ``resourceRequirements.dependencies`` mostly names outside prerequisites
    (``"api_endpoints"``); only entries that are task ids of this backlog
    gate scheduling. The full list stays in ``resource_requirements``.
    """

    known = {task.task_id for task in tasks}
    for task in tasks:
        if task.preferred_agent_id is not None and task.preferred_agent_id not in agent_ids:
            raise ConfigurationError(
                f"Task {task.task_id!r} prefers unknown agent {task.preferred_agent_id!r}",
            )
        prerequisites = task.resource_requirements.get("dependencies", [])
        promoted = {item.strip() for item in prerequisites if item.strip() in known}
        if promoted:
            task.dependencies = task.dependencies | promoted


def _validate_dependency_graph(tasks: list[Task]) -> None:
    known = {task.task_id for task in tasks}
    for task in tasks:
        if task.task_id in task.dependencies:
            raise ConfigurationError(f"Task {task.task_id!r} depends on itself")
        unknown = sorted(task.dependencies - known)
        if unknown:
            raise ConfigurationError(
                f"Task {task.task_id!r} depends on unknown tasks: {', '.join(unknown)}",
            )

    graph = {task.task_id: sorted(task.dependencies) for task in tasks}
    visiting: set[str] = set()
    visited: set[str] = set()

    def _visit(node: str, path: list[str]) -> None:
        if node in visited:
            return
        if node in visiting:
            cycle = " -> ".join([*path[path.index(node) :], node])
            raise ConfigurationError(f"Dependency cycle detected: {cycle}")
        visiting.add(node)
        for dependency in graph[node]:
            _visit(dependency, [*path, node])
        visiting.discard(node)
        visited.add(node)

    for task_id in graph:
        _visit(task_id, [])


def _ensure_unique(values: list[str], *, label: str) -> None:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            raise ConfigurationError(f"Duplicate {label}: {value!r}")
        seen.add(value)


def _parse_enum(value: object, enum_type: type, field_name: str):
    if not isinstance(value, str):
        raise ConfigurationError(f"{field_name} must be a string")
    normalized = value.strip().lower()
    try:
        return enum_type(normalized)
    except ValueError as error:
        allowed = ", ".join(item.value for item in enum_type)
        raise ConfigurationError(
            f"Unsupported {field_name} {value!r}. Use one of: {allowed}.",
        ) from error


def _string_list(value: object, field_name: str) -> list[str]:
    if not isinstance(value, list):
        raise ConfigurationError(f"{field_name} must be an array of strings")
    for item in value:
        if not isinstance(item, str):
            raise ConfigurationError(f"{field_name} must be an array of strings")
    return list(value)


def _bool(raw: dict[str, Any], key: str, *, default: bool, where: str = "config") -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{where}.{key} must be a boolean")
    return value


def _int(
    raw: dict[str, Any],
    key: str,
    *,
    default: int,
    minimum: int,
    where: str = "config",
) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{where}.{key} must be an integer")
    if value < minimum:
        raise ConfigurationError(f"{where}.{key} must be >= {minimum}")
    return value


def _float(raw: dict[str, Any], key: str, *, default: float) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigurationError(f"config.{key} must be a number")
    if value < 0:
        raise ConfigurationError(f"config.{key} must be >= 0")
    return float(value)


def _ratio(raw: dict[str, Any], key: str, *, default: float) -> float:
    value = _float(raw, key, default=default)
    if value > 1.0:
        raise ConfigurationError(f"config.{key} must be within [0, 1]")
    return value

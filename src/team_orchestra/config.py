"""Runtime configuration for orchestration runs and the run journal."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(slots=True)
class OrchestratorSettings:
    """Defaults for the orchestration knobs a descriptor may leave out."""

    min_skill_match: float = 0.0
    max_unassigned_cycles: int = 3
    max_retries_per_agent: int = 1
    min_replan_interval_seconds: float = 0.0
    urgency_per_second: float = 1.0
    generation_match_threshold: float = 0.5
    max_generated_tasks: int = 5
    run_timeout_seconds: float = 0.0
    completion_poll_seconds: float = 0.5


@dataclass(slots=True)
class ExecutorSettings:
    """Settings for the built-in echo executor used by the CLI."""

    delay_seconds: float = 0.0
    transient_failures: int = 0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".team_orchestra.db")
    log_level: str = "WARNING"
    journal_enabled: bool = True
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults suitable for local runs."""

        return cls(
            db_path=db_path or Path(os.getenv("TEAM_ORCHESTRA_DB_PATH", ".team_orchestra.db")),
            log_level=os.getenv("TEAM_ORCHESTRA_LOG_LEVEL", "WARNING").strip().upper(),
            journal_enabled=_env_bool("TEAM_ORCHESTRA_JOURNAL_ENABLED", default=True),
            orchestrator=OrchestratorSettings(
                min_skill_match=float(os.getenv("TEAM_ORCHESTRA_MIN_SKILL_MATCH", "0.0")),
                max_unassigned_cycles=int(
                    os.getenv("TEAM_ORCHESTRA_MAX_UNASSIGNED_CYCLES", "3"),
                ),
                max_retries_per_agent=int(
                    os.getenv("TEAM_ORCHESTRA_MAX_RETRIES_PER_AGENT", "1"),
                ),
                min_replan_interval_seconds=float(
                    os.getenv("TEAM_ORCHESTRA_MIN_REPLAN_INTERVAL_SECONDS", "0.0"),
                ),
                urgency_per_second=float(os.getenv("TEAM_ORCHESTRA_URGENCY_PER_SECOND", "1.0")),
                generation_match_threshold=float(
                    os.getenv("TEAM_ORCHESTRA_GENERATION_MATCH_THRESHOLD", "0.5"),
                ),
                max_generated_tasks=int(os.getenv("TEAM_ORCHESTRA_MAX_GENERATED_TASKS", "5")),
                run_timeout_seconds=float(os.getenv("TEAM_ORCHESTRA_RUN_TIMEOUT_SECONDS", "0")),
                completion_poll_seconds=float(
                    os.getenv("TEAM_ORCHESTRA_COMPLETION_POLL_SECONDS", "0.5"),
                ),
            ),
            executor=ExecutorSettings(
                delay_seconds=float(os.getenv("TEAM_ORCHESTRA_ECHO_DELAY_SECONDS", "0.0")),
                transient_failures=int(
                    os.getenv("TEAM_ORCHESTRA_ECHO_TRANSIENT_FAILURES", "0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"TEAM_ORCHESTRA_LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, "
                f"got {self.log_level!r}.",
            )
        orchestrator = self.orchestrator
        if not 0.0 <= orchestrator.min_skill_match <= 1.0:
            raise ValueError("TEAM_ORCHESTRA_MIN_SKILL_MATCH must be within [0, 1].")
        if orchestrator.max_unassigned_cycles < 1:
            raise ValueError("TEAM_ORCHESTRA_MAX_UNASSIGNED_CYCLES must be >= 1.")
        if orchestrator.max_retries_per_agent < 0:
            raise ValueError("TEAM_ORCHESTRA_MAX_RETRIES_PER_AGENT must be >= 0.")
        if orchestrator.min_replan_interval_seconds < 0:
            raise ValueError("TEAM_ORCHESTRA_MIN_REPLAN_INTERVAL_SECONDS must be >= 0.")
        if orchestrator.urgency_per_second < 0:
            raise ValueError("TEAM_ORCHESTRA_URGENCY_PER_SECOND must be >= 0.")
        if not 0.0 <= orchestrator.generation_match_threshold <= 1.0:
            raise ValueError("TEAM_ORCHESTRA_GENERATION_MATCH_THRESHOLD must be within [0, 1].")
        if orchestrator.max_generated_tasks < 0:
            raise ValueError("TEAM_ORCHESTRA_MAX_GENERATED_TASKS must be >= 0.")
        if orchestrator.run_timeout_seconds < 0:
            raise ValueError("TEAM_ORCHESTRA_RUN_TIMEOUT_SECONDS must be >= 0.")
        if orchestrator.completion_poll_seconds <= 0:
            raise ValueError("TEAM_ORCHESTRA_COMPLETION_POLL_SECONDS must be > 0.")
        if self.executor.delay_seconds < 0:
            raise ValueError("TEAM_ORCHESTRA_ECHO_DELAY_SECONDS must be >= 0.")
        if self.executor.transient_failures < 0:
            raise ValueError("TEAM_ORCHESTRA_ECHO_TRANSIENT_FAILURES must be >= 0.")


def _env_bool(name: str, default: bool) -> bool:
    """Parse a boolean environment variable."""

    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")

from __future__ import annotations

from pathlib import Path

import allure
import pytest

from team_orchestra.config import ExecutorSettings, OrchestratorSettings, Settings

pytestmark = [
    allure.epic("Team Input"),
    allure.feature("Settings"),
]


def test_from_env_defaults(monkeypatch) -> None:
    for name in ("TEAM_ORCHESTRA_DB_PATH", "TEAM_ORCHESTRA_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".team_orchestra.db")
    assert settings.log_level == "WARNING"
    assert settings.journal_enabled is True
    assert settings.orchestrator.max_retries_per_agent == 1
    settings.validate()


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TEAM_ORCHESTRA_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("TEAM_ORCHESTRA_LOG_LEVEL", "debug")
    monkeypatch.setenv("TEAM_ORCHESTRA_JOURNAL_ENABLED", "off")
    monkeypatch.setenv("TEAM_ORCHESTRA_MAX_RETRIES_PER_AGENT", "4")
    monkeypatch.setenv("TEAM_ORCHESTRA_ECHO_TRANSIENT_FAILURES", "2")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.log_level == "DEBUG"
    assert settings.journal_enabled is False
    assert settings.orchestrator.max_retries_per_agent == 4
    assert settings.executor.transient_failures == 2


def test_explicit_db_path_wins_over_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TEAM_ORCHESTRA_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


def test_invalid_boolean_env_raises(monkeypatch) -> None:
    monkeypatch.setenv("TEAM_ORCHESTRA_JOURNAL_ENABLED", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(log_level="LOUD"), "TEAM_ORCHESTRA_LOG_LEVEL"),
        (
            Settings(orchestrator=OrchestratorSettings(min_skill_match=2.0)),
            "MIN_SKILL_MATCH",
        ),
        (
            Settings(orchestrator=OrchestratorSettings(max_unassigned_cycles=0)),
            "MAX_UNASSIGNED_CYCLES",
        ),
        (
            Settings(orchestrator=OrchestratorSettings(completion_poll_seconds=0)),
            "COMPLETION_POLL_SECONDS",
        ),
        (Settings(executor=ExecutorSettings(delay_seconds=-1)), "ECHO_DELAY_SECONDS"),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()

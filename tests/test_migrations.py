from pathlib import Path

import allure
from sqlalchemy import inspect

from team_orchestra.orchestrator.journal import RunJournalRepository
from team_orchestra.storage.alembic_runner import current_revision

pytestmark = [
    allure.epic("Run Journal"),
    allure.feature("Schema & Persistence"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "migrations.db"
    repository = RunJournalRepository(db_path)
    repository.init_schema()
    repository.init_schema()

    assert current_revision(db_path) == "20261019_0001"

    inspector = inspect(repository.engine)
    assert {"orchestration_runs", "planning_cycles", "run_events"} <= set(
        inspector.get_table_names(),
    )
    event_indexes = {index["name"] for index in inspector.get_indexes("run_events")}
    assert "idx_run_events_run_type" in event_indexes
    repository.close()

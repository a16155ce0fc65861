from pathlib import Path

import allure
from sqlalchemy import text

from mcoda.jobs.repository import JobRepository
from mcoda.routing.repository import RoutingRepository

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = JobRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table' AND name != 'alembic_version'
                ORDER BY name
                """,
            ),
        ).scalars().all()
    repository.close()

    assert version == "20260301_0002"
    assert list(tables) == [
        "agent_capabilities",
        "agent_health",
        "agents",
        "command_runs",
        "jobs",
        "routing_defaults",
        "task_run_logs",
        "task_runs",
        "token_usage",
    ]


def test_job_store_and_registry_share_one_database(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.db"
    jobs = JobRepository(db_path)
    jobs.init_schema()
    registry = RoutingRepository(db_path)
    registry.init_schema()

    try:
        assert jobs.list_jobs() == []
        assert registry.list_agents() == []
    finally:
        jobs.close()
        registry.close()

from __future__ import annotations

from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from mcoda.jobs.engine import JobEngine
from mcoda.jobs.repository import JobRepository
from mcoda.main import mcoda

pytestmark = [
    allure.epic("Runtime Core"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli_workspace(workspace: Path, monkeypatch) -> Path:
    monkeypatch.setenv("MCODA_WORKSPACE_ID", "ws-cli")
    return workspace


def _run(*args: str) -> str:
    result = CliRunner().invoke(mcoda, list(args))
    assert result.exit_code == 0, result.output
    return result.output


def test_jobs_commands_show_state_and_checkpoints(cli_workspace: Path) -> None:
    repository = JobRepository(cli_workspace / ".mcoda" / "mcoda.db")
    repository.init_schema()
    engine = JobEngine(repository, workspace_root=cli_workspace, workspace_id="ws-cli")
    started = engine.start_job("work-on-tasks", "job-cli", {}, total_units=3)
    engine.checkpoint(started.session, "implement", {"task": "T-1"}, completed_units=1)
    repository.close()
    root = str(cli_workspace)

    listing = _run("jobs", "list", "--workspace-root", root)
    status = _run("jobs", "status", "job-cli", "--workspace-root", root)
    checkpoints = _run("jobs", "checkpoints", "job-cli", "--workspace-root", root)

    assert "Jobs: 1" in listing
    assert "job-cli command=work-on-tasks type=work state=running progress=1/3" in listing
    assert "Checkpoint: seq=2 stage=implement status=running" in status
    assert "Command runs: 1" in status
    assert "Checkpoints for job-cli: 2" in checkpoints
    assert "000001 stage=started" in checkpoints
    assert "000002 stage=implement" in checkpoints


def test_jobs_resume_reports_latest_checkpoint(cli_workspace: Path) -> None:
    repository = JobRepository(cli_workspace / ".mcoda" / "mcoda.db")
    repository.init_schema()
    engine = JobEngine(repository, workspace_root=cli_workspace, workspace_id="ws-cli")
    paused = engine.start_job("work-on-tasks", "job-paused", {}, total_units=2)
    engine.checkpoint(paused.session, "implement", {"task": "T-1"}, completed_units=1)
    engine.pause(paused.session, reason="user stop")
    engine.start_job("qa-tasks", "job-live", {})
    repository.close()
    root = str(cli_workspace)

    output = _run("jobs", "resume", "job-paused", "--workspace-root", root)
    refused = CliRunner().invoke(mcoda, ["jobs", "resume", "job-live", "--workspace-root", root])

    assert "Job job-paused is resumable (state=paused)" in output
    assert "Resume from: seq=3 stage=paused status=paused" in output
    assert "Reason: user stop" in output
    assert 'Payload: {"task": "T-1"}' in output
    assert refused.exit_code == 1
    assert "only paused or failed" in refused.output


def test_jobs_status_for_unknown_job(cli_workspace: Path) -> None:
    output = _run("jobs", "status", "ghost", "--workspace-root", str(cli_workspace))

    assert "Job not found: ghost" in output


def test_agents_and_routing_commands_roundtrip(cli_workspace: Path) -> None:
    root = str(cli_workspace)
    _run(
        "agents",
        "add",
        "qa-bot",
        "--capability",
        "qa_interpretation",
        "--model",
        "gpt-5",
        "--workspace-root",
        root,
    )
    _run("agents", "health", "qa-bot", "degraded", "--latency-ms", "40", "--workspace-root", root)

    updated = _run(
        "routing",
        "set",
        "qa_tasks=qa-bot",
        "--qa-profile",
        "unit",
        "--workspace-root",
        root,
    )
    defaults = _run("routing", "defaults", "--workspace-root", root)
    preview = _run("routing", "preview", "qa-tasks", "--workspace-root", root)

    assert "Routing defaults updated for ws-cli: 1 binding(s)" in updated
    assert "qa-tasks -> qa-bot qa_profile=unit docdex_scope=-" in defaults
    assert "Required capabilities: qa_interpretation" in preview
    assert "workspace_default qa-bot health=degraded missing=- verdict=ok" in preview
    assert "Selected: qa-bot (source=workspace_default)" in preview


def test_routing_set_rejects_deficient_agent(cli_workspace: Path) -> None:
    root = str(cli_workspace)
    _run("agents", "add", "plain", "--capability", "code_write", "--workspace-root", root)

    result = CliRunner().invoke(
        mcoda,
        ["routing", "set", "qa-tasks=plain", "--workspace-root", root],
    )

    assert result.exit_code == 1
    assert "missing required" in result.output
    assert _run("routing", "defaults", "--workspace-root", root).splitlines()[0].endswith(": 0")


def test_routing_set_rejects_malformed_binding(cli_workspace: Path) -> None:
    result = CliRunner().invoke(
        mcoda,
        ["routing", "set", "qa-tasks", "--workspace-root", str(cli_workspace)],
    )

    assert result.exit_code == 1
    assert "COMMAND=AGENT" in result.output


def test_agents_health_for_unknown_agent_fails(cli_workspace: Path) -> None:
    result = CliRunner().invoke(
        mcoda,
        ["agents", "health", "ghost", "healthy", "--workspace-root", str(cli_workspace)],
    )

    assert result.exit_code == 1
    assert "Agent ghost not found" in result.output


def test_version_option() -> None:
    result = CliRunner().invoke(mcoda, ["--version"])

    assert result.exit_code == 0
    assert "mcoda" in result.output

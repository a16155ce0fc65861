"""Controllers for job inspection CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from mcoda.config import Settings
from mcoda.jobs.engine import JobEngine
from mcoda.jobs.repository import JobRepository


@dataclass(slots=True)
class JobsListCommand:
    """CLI input for job listing."""

    workspace_root: Path | None
    limit: int
    all_workspaces: bool = False


@dataclass(slots=True)
class JobStatusCommand:
    workspace_root: Path | None
    job_id: str


class JobsCliController:
    """Read-only views over the job store and checkpoint files."""

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        workspace_id = None if command.all_workspaces else settings.resolved_workspace_id
        with _repository(settings) as repository:
            jobs = repository.list_jobs(limit=command.limit, workspace_id=workspace_id)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            progress = _progress(job.completed_units, job.total_units)
            lines.append(
                f"  {job.job_id} command={job.command_name} type={job.job_type} "
                f"state={job.state.value} progress={progress} "
                f"updated_at={job.updated_at.isoformat()}",
            )
        return lines

    def status(self, command: JobStatusCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        with _repository(settings) as repository:
            job = repository.get_job(command.job_id)
            if job is None:
                return [f"Job not found: {command.job_id}"]
            runs = repository.list_command_runs(command.job_id)
            latest = JobEngine.from_settings(settings, repository).load_checkpoint(command.job_id)

        lines = [
            f"Job: {job.job_id}",
            f"Command: {job.command_name}",
            f"Type: {job.job_type}",
            f"State: {job.state.value}",
            f"Detail: {job.state_detail or '-'}",
            f"Progress: {_progress(job.completed_units, job.total_units)}",
            f"Resume supported: {'yes' if job.resume_supported else 'no'}",
            f"Started: {job.started_at.isoformat() if job.started_at else '-'}",
            f"Last checkpoint: "
            f"{job.last_checkpoint_at.isoformat() if job.last_checkpoint_at else '-'}",
            f"Completed: {job.completed_at.isoformat() if job.completed_at else '-'}",
        ]
        if job.error_code or job.error_message:
            lines.append(f"Error: {job.error_code or '-'} {job.error_message or ''}".rstrip())
        if latest is None:
            lines.append("Checkpoint: -")
        else:
            lines.append(
                f"Checkpoint: seq={latest.checkpoint_seq} stage={latest.stage} "
                f"status={latest.status.value}{' (legacy)' if latest.legacy else ''}",
            )
        lines.append(f"Command runs: {len(runs)}")
        for run in runs:
            completed = run.completed_at.isoformat() if run.completed_at else "-"
            lines.append(
                f"  #{run.command_run_id} status={run.status} "
                f"started_at={run.started_at.isoformat()} completed_at={completed} "
                f"summary={run.summary or '-'}",
            )
        return lines

    def checkpoints(self, command: JobStatusCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        with _repository(settings) as repository:
            views = JobEngine.from_settings(settings, repository).list_checkpoints(
                command.job_id,
            )

        lines = [f"Checkpoints for {command.job_id}: {len(views)}"]
        for view in views:
            lines.append(
                f"  {view.checkpoint_seq:06d} stage={view.stage} status={view.status.value} "
                f"created_at={view.created_at or '-'}",
            )
        return lines

    def resume(self, command: JobStatusCommand) -> list[str]:
        """Check that a job can resume and show where it would pick up."""

        settings = Settings.from_env(workspace_root=command.workspace_root)
        with _repository(settings) as repository:
            engine = JobEngine.from_settings(settings, repository)
            job = engine.assert_resumable(command.job_id)
            latest = engine.load_checkpoint(command.job_id)

        lines = [f"Job {job.job_id} is resumable (state={job.state.value})"]
        if latest is not None:
            lines.extend(
                [
                    f"Resume from: seq={latest.checkpoint_seq} stage={latest.stage} "
                    f"status={latest.status.value}{' (legacy)' if latest.legacy else ''}",
                    f"Reason: {latest.reason or '-'}",
                    f"Payload: {json.dumps(latest.payload, ensure_ascii=False, sort_keys=True)}",
                ],
            )
        return lines


def _progress(completed: int | None, total: int | None) -> str:
    if total is None:
        return str(completed or 0)
    return f"{completed or 0}/{total}"


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        settings.resolved_db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()

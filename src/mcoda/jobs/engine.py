"""Job engine: crash-safe lifecycle, sequenced checkpoints and resume checks."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any
from uuid import uuid4

from mcoda import __version__
from mcoda.config import Settings
from mcoda.errors import CheckpointMismatchError, JobNotResumableError
from mcoda.jobs.contracts import (
    JobPaths,
    list_checkpoint_files,
    next_checkpoint_seq,
    read_checkpoint,
    read_legacy_checkpoint,
    read_manifest,
    write_checkpoint,
    write_manifest,
)
from mcoda.jobs.models import (
    TERMINAL_STATES,
    CheckpointRecord,
    CheckpointView,
    JobManifest,
    JobSession,
    JobState,
    JobUpsert,
    JobView,
    StartJobResult,
    TaskRunWrite,
    TokenUsageWrite,
    job_type_for_command,
    normalize_job_state,
)
from mcoda.jobs.repository import JobRepository
from mcoda.storage.common import utc_now

logger = logging.getLogger(__name__)

_NOT_RESUMABLE_ACTIVE = frozenset({JobState.QUEUED, JobState.RUNNING, JobState.CHECKPOINTING})


class JobEngine:
    """Job lifecycle for one workspace.

    One writer per job is assumed: checkpoint sequence numbers come from a
    directory scan and are not locked across processes.
    """

    def __init__(
        self,
        repository: JobRepository,
        *,
        workspace_root: Path,
        workspace_id: str | None = None,
        runtime_version: str = __version__,
    ) -> None:
        self.repository = repository
        self.workspace_root = workspace_root
        self.workspace_id = workspace_id or str(workspace_root)
        self.runtime_version = runtime_version

    @classmethod
    def from_settings(cls, settings: Settings, repository: JobRepository) -> JobEngine:
        return cls(
            repository,
            workspace_root=settings.workspace_root,
            workspace_id=settings.resolved_workspace_id,
            runtime_version=settings.jobs.runtime_version,
        )

    def paths(self, job_id: str) -> JobPaths:
        return JobPaths.for_job(self.workspace_root, job_id)

    def start_job(
        self,
        command: str,
        job_id: str,
        payload: dict[str, Any],
        *,
        job_type: str | None = None,
        resume_supported: bool = True,
        project_id: str | None = None,
        agent_id: str | None = None,
        total_units: int | None = None,
        completed_units: int | None = None,
    ) -> StartJobResult:
        """Create or re-enter a job and write its initial checkpoint."""

        resolved_type = job_type or job_type_for_command(command)
        paths = self.paths(job_id)
        paths.ensure()

        if paths.manifest.exists():
            manifest = read_manifest(paths.manifest)
            if manifest.job_id != job_id:
                raise CheckpointMismatchError(
                    expected_job_id=job_id,
                    found_job_id=manifest.job_id,
                    source="manifest",
                )
        else:
            write_manifest(
                paths.manifest,
                JobManifest(
                    job_id=job_id,
                    workspace_root=str(self.workspace_root),
                    workspace_id=self.workspace_id,
                    command_name=command,
                    job_type=resolved_type,
                    created_at=utc_now().isoformat(),
                    resume_supported=resume_supported,
                    payload=payload,
                ),
            )

        self.repository.upsert_job(
            JobUpsert(
                job_id=job_id,
                job_type=resolved_type,
                command_name=command,
                workspace_id=self.workspace_id,
                state=JobState.RUNNING,
                resume_supported=resume_supported,
                checkpoint_path=str(paths.checkpoints_dir),
                payload=payload,
                project_id=project_id,
                agent_id=agent_id,
                total_units=total_units,
                completed_units=completed_units,
            ),
        )
        command_run_id = self.repository.create_command_run(
            command=command,
            job_id=job_id,
            workspace=self.workspace_id,
            agent=agent_id,
        )
        session = JobSession(
            job_id=job_id,
            command_name=command,
            job_type=resolved_type,
            resume_supported=resume_supported,
            command_run_id=command_run_id,
        )
        checkpoint_path = self._write_checkpoint(
            session,
            "started",
            payload,
            total_units=total_units,
            completed_units=completed_units,
            progress_step=0,
        )
        logger.info(
            "Job %s started: command=%s type=%s command_run=%d",
            job_id,
            command,
            resolved_type,
            command_run_id,
        )
        return StartJobResult(
            job_id=job_id,
            command_run_id=command_run_id,
            checkpoint_path=checkpoint_path,
            manifest_path=paths.manifest,
            session=session,
        )

    def checkpoint(
        self,
        session: JobSession,
        stage: str,
        payload: dict[str, Any],
        *,
        status: str | JobState = JobState.RUNNING,
        reason: str | None = None,
        total_units: int | None = None,
        completed_units: int | None = None,
        tags: list[str] | None = None,
        cursor: str | None = None,
        parents: list[str] | None = None,
    ) -> Path:
        """Write the next sequenced checkpoint, then sync the job row."""

        return self._write_checkpoint(
            session,
            stage,
            payload,
            status=status,
            reason=reason,
            total_units=total_units,
            completed_units=completed_units,
            tags=tags,
            cursor=cursor,
            parents=parents,
        )

    def _write_checkpoint(  # noqa: PLR0913
        self,
        session: JobSession,
        stage: str,
        payload: dict[str, Any],
        *,
        status: str | JobState = JobState.RUNNING,
        reason: str | None = None,
        total_units: int | None = None,
        completed_units: int | None = None,
        tags: list[str] | None = None,
        cursor: str | None = None,
        parents: list[str] | None = None,
        progress_step: int | None = None,
    ) -> Path:
        # progress_step only shapes the file; the job row gets completed_units as given.
        state = normalize_job_state(status)
        paths = self.paths(session.job_id)
        paths.ensure()
        seq = next_checkpoint_seq(paths.checkpoints_dir)

        job = self.repository.get_job(session.job_id)
        step = progress_step if progress_step is not None else completed_units
        if step is None:
            step = job.completed_units if job is not None and job.completed_units else 0
        total = total_units
        if total is None and job is not None:
            total = job.total_units

        now = utc_now()
        target = paths.checkpoint_file(seq)
        write_checkpoint(
            target,
            CheckpointRecord(
                job_id=session.job_id,
                command_name=session.command_name,
                job_type=session.job_type,
                checkpoint_seq=seq,
                checkpoint_id=str(uuid4()),
                created_at=now.isoformat(),
                status=state,
                stage=stage,
                payload=payload,
                runtime_version=self.runtime_version,
                platform=sys.platform,
                reason=reason,
                progress_step=step,
                estimated_total_steps=total,
                tags=list(tags) if tags is not None else [stage],
                cursor=cursor,
                parents=list(parents or []),
            ),
        )

        row_state = JobState.RUNNING if state == JobState.CHECKPOINTING else state
        self.repository.update_job(
            session.job_id,
            state=row_state,
            state_detail=stage,
            total_units=total_units,
            completed_units=completed_units,
            last_checkpoint_at=now,
        )
        logger.debug(
            "Job %s checkpoint %06d stage=%s status=%s",
            session.job_id,
            seq,
            stage,
            state.value,
        )
        return target

    def load_checkpoint(self, job_id: str) -> CheckpointView | None:
        """Latest checkpoint of a job, falling back to the legacy single file."""

        paths = self.paths(job_id)
        manifest: JobManifest | None = None
        if paths.manifest.exists():
            manifest = read_manifest(paths.manifest)
            if manifest.job_id != job_id:
                raise CheckpointMismatchError(
                    expected_job_id=job_id,
                    found_job_id=manifest.job_id,
                    source="manifest",
                )

        files = list_checkpoint_files(paths.checkpoints_dir)
        if files:
            record = read_checkpoint(files[-1])
            if record.job_id != job_id:
                raise CheckpointMismatchError(
                    expected_job_id=job_id,
                    found_job_id=record.job_id,
                    source="checkpoint",
                )
            return _to_checkpoint_view(record, files[-1], manifest)

        if not paths.legacy_checkpoint.exists():
            return None
        legacy = read_legacy_checkpoint(paths.legacy_checkpoint)
        if legacy["job_id"] != job_id:
            raise CheckpointMismatchError(
                expected_job_id=job_id,
                found_job_id=legacy["job_id"],
                source="legacy checkpoint",
            )
        return CheckpointView(
            job_id=job_id,
            command_name=legacy["command_name"],
            stage=legacy["stage"],
            status=JobState.RUNNING,
            checkpoint_seq=1,
            payload=legacy["payload"],
            created_at=legacy["updated_at"],
            path=paths.legacy_checkpoint,
            legacy=True,
            command_run_id=legacy["command_run_id"],
            manifest=manifest,
        )

    def list_checkpoints(self, job_id: str) -> list[CheckpointView]:
        """Every sequenced checkpoint of a job in write order."""

        files = list_checkpoint_files(self.paths(job_id).checkpoints_dir)
        return [_to_checkpoint_view(read_checkpoint(path), path) for path in files]

    def finalize(
        self,
        session: JobSession,
        status: str | JobState,
        summary: str | None = None,
        output_path: str | None = None,
        *,
        result: dict[str, Any] | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> JobView | None:
        """Mark the command run and job terminal."""

        state = normalize_job_state(status)
        if state not in TERMINAL_STATES:
            raise ValueError(
                f"Unsupported final status {status!r}. Use completed, failed or cancelled.",
            )

        if state == JobState.FAILED and error_message is None:
            error_message = summary
        now = utc_now()
        self.repository.complete_command_run(
            session.command_run_id,
            status=state,
            summary=summary,
            output_path=output_path,
        )
        view = self.repository.update_job(
            session.job_id,
            state=state,
            state_detail=summary,
            completed_at=now,
            result=result,
            error_code=error_code,
            error_message=error_message,
        )
        log = logger.warning if state == JobState.FAILED else logger.info
        log("Job %s finalized: status=%s summary=%s", session.job_id, state.value, summary or "-")
        return view

    def pause(self, session: JobSession, reason: str | None = None) -> Path:
        """Suspend a job at its latest checkpoint payload."""

        latest = self.load_checkpoint(session.job_id)
        payload = latest.payload if latest is not None else {}
        path = self.checkpoint(session, "paused", payload, status=JobState.PAUSED, reason=reason)
        logger.info("Job %s paused: %s", session.job_id, reason or "-")
        return path

    def update_progress(
        self,
        session: JobSession,
        *,
        total_units: int | None = None,
        completed_units: int | None = None,
        stage_detail: str | None = None,
    ) -> JobView | None:
        if stage_detail is None:
            return self.repository.update_job(
                session.job_id,
                total_units=total_units,
                completed_units=completed_units,
            )
        return self.repository.update_job(
            session.job_id,
            total_units=total_units,
            completed_units=completed_units,
            state_detail=stage_detail,
        )

    def log_phase(
        self,
        session: JobSession,
        phase: str,
        status: str,
        details: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> int:
        return self.repository.add_task_run_log(
            command_run_id=session.command_run_id,
            phase=phase,
            status=status,
            details=details,
            task_id=task_id,
        )

    def record_token_usage(self, session: JobSession, usage: TokenUsageWrite) -> int:
        usage.job_id = usage.job_id or session.job_id
        usage.command_run_id = usage.command_run_id or session.command_run_id
        usage.workspace = usage.workspace or self.workspace_id
        usage.command = usage.command or session.command_name
        return self.repository.record_token_usage(usage)

    def record_task_run(self, session: JobSession, run: TaskRunWrite) -> int:
        run.job_id = run.job_id or session.job_id
        run.workspace = run.workspace or self.workspace_id
        return self.repository.record_task_run(run)

    def assert_resumable(self, job_id: str) -> JobView:
        """Raise unless the job can be picked up from its latest checkpoint."""

        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotResumableError(f"Job {job_id} not found")
        if job.state in {JobState.COMPLETED, JobState.CANCELLED}:
            raise JobNotResumableError(f"Job {job_id} is already {job.state.value}")
        if job.state in _NOT_RESUMABLE_ACTIVE:
            raise JobNotResumableError(
                f"Job {job_id} is {job.state.value}; only paused or failed jobs can resume",
            )
        if not job.resume_supported:
            raise JobNotResumableError(f"Job {job_id} does not support resume")

        paths = self.paths(job_id)
        if not paths.manifest.exists():
            raise JobNotResumableError(f"Job {job_id} has no manifest at {paths.manifest}")
        manifest = read_manifest(paths.manifest)
        if manifest.job_id != job_id:
            raise CheckpointMismatchError(
                expected_job_id=job_id,
                found_job_id=manifest.job_id,
                source="manifest",
            )
        if manifest.job_type != job.job_type or manifest.command_name != job.command_name:
            raise CheckpointMismatchError(
                expected_job_id=job_id,
                found_job_id=manifest.job_id,
                source=f"manifest for {manifest.command_name}/{manifest.job_type}",
            )
        if self.load_checkpoint(job_id) is None:
            raise JobNotResumableError(f"No checkpoints found for job {job_id}; cannot resume")
        return job


def _to_checkpoint_view(
    record: CheckpointRecord,
    path: Path,
    manifest: JobManifest | None = None,
) -> CheckpointView:
    return CheckpointView(
        job_id=record.job_id,
        command_name=record.command_name,
        stage=record.stage,
        status=record.status,
        checkpoint_seq=record.checkpoint_seq,
        payload=record.payload,
        created_at=record.created_at,
        path=path,
        checkpoint_id=record.checkpoint_id,
        reason=record.reason,
        manifest=manifest,
    )

"""Job store repository backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlmodel import Session, col, select

from mcoda.jobs.models import (
    CommandRunView,
    JobState,
    JobUpsert,
    JobView,
    TaskRunLogView,
    TaskRunWrite,
    TokenUsageView,
    TokenUsageWrite,
)
from mcoda.storage.alembic_runner import upgrade_head
from mcoda.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from mcoda.storage.sqlmodel_models import (
    CommandRunRow,
    JobRow,
    TaskRunLogRow,
    TaskRunRow,
    TokenUsageRow,
)

_UNSET: Any = object()


class JobRepository:
    """Persistence facade for jobs, command runs and run telemetry."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def upsert_job(self, payload: JobUpsert) -> JobView:
        """Insert a job or merge onto the existing row, keeping creation timestamps."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(JobRow, payload.job_id)
            if row is None:
                row = JobRow(
                    id=payload.job_id,
                    type=payload.job_type,
                    command_name=payload.command_name,
                    workspace_id=payload.workspace_id,
                    job_state=payload.state.value,
                    created_at=now,
                    updated_at=now,
                )
            row.type = payload.job_type
            row.command_name = payload.command_name
            row.workspace_id = payload.workspace_id
            row.job_state = payload.state.value
            row.resume_supported = payload.resume_supported
            row.updated_at = now
            row.row_version = (row.row_version or 0) + 1
            if row.started_at is None and payload.state == JobState.RUNNING:
                row.started_at = now
            if payload.checkpoint_path is not None:
                row.checkpoint_path = payload.checkpoint_path
            if payload.payload is not None:
                row.payload_json = json.dumps(payload.payload, ensure_ascii=False, sort_keys=True)
            if payload.project_id is not None:
                row.project_id = payload.project_id
            if payload.agent_id is not None:
                row.agent_id = payload.agent_id
            if payload.total_units is not None:
                row.total_units = payload.total_units
            if payload.completed_units is not None:
                row.completed_units = payload.completed_units
            if payload.state_detail is not None:
                row.job_state_detail = payload.state_detail
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def update_job(
        self,
        job_id: str,
        *,
        state: JobState | None = None,
        state_detail: str | None = _UNSET,
        total_units: int | None = None,
        completed_units: int | None = None,
        last_checkpoint_at: datetime | None = None,
        completed_at: datetime | None = None,
        result: dict[str, Any] | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> JobView | None:
        """Patch selected job fields. Returns ``None`` when the job is missing."""

        with Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            if row is None:
                return None
            if state is not None:
                row.job_state = state.value
            if state_detail is not _UNSET:
                row.job_state_detail = state_detail
            if total_units is not None:
                row.total_units = total_units
            if completed_units is not None:
                row.completed_units = completed_units
            if last_checkpoint_at is not None:
                row.last_checkpoint_at = to_db_datetime(last_checkpoint_at)
            if completed_at is not None:
                row.completed_at = to_db_datetime(completed_at)
            if result is not None:
                row.result_json = json.dumps(result, ensure_ascii=False, sort_keys=True)
            if error_code is not None:
                row.error_code = error_code
            if error_message is not None:
                row.error_message = error_message
            row.updated_at = to_db_datetime(utc_now())
            row.row_version = (row.row_version or 0) + 1
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(JobRow, job_id)
            return _to_job_view(row) if row is not None else None

    def list_jobs(self, *, limit: int = 20, workspace_id: str | None = None) -> list[JobView]:
        """Most recently updated jobs first."""

        with Session(self.engine) as session:
            query = select(JobRow)
            if workspace_id is not None:
                query = query.where(JobRow.workspace_id == workspace_id)
            rows = session.exec(
                query.order_by(col(JobRow.updated_at).desc()).limit(max(1, limit)),
            ).all()
            return [_to_job_view(row) for row in rows]

    def create_command_run(
        self,
        *,
        command: str,
        job_id: str | None,
        workspace: str | None,
        agent: str | None = None,
        git_branch: str | None = None,
        git_base_branch: str | None = None,
    ) -> int:
        """Open a running command-run row and return its id."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = CommandRunRow(
                command=command,
                job_id=job_id,
                workspace=workspace,
                status=JobState.RUNNING.value,
                agent=agent,
                git_branch=git_branch,
                git_base_branch=git_base_branch,
                started_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            if row.id is None:
                raise RuntimeError("Failed to allocate command run id.")
            return row.id

    def complete_command_run(
        self,
        command_run_id: int,
        *,
        status: JobState,
        summary: str | None = None,
        output_path: str | None = None,
    ) -> CommandRunView | None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(CommandRunRow, command_run_id)
            if row is None:
                return None
            row.status = status.value
            row.summary = summary
            row.output_path = output_path
            row.completed_at = now
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_command_run_view(row)

    def get_command_run(self, command_run_id: int) -> CommandRunView | None:
        with Session(self.engine) as session:
            row = session.get(CommandRunRow, command_run_id)
            return _to_command_run_view(row) if row is not None else None

    def list_command_runs(self, job_id: str) -> list[CommandRunView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CommandRunRow)
                .where(CommandRunRow.job_id == job_id)
                .order_by(col(CommandRunRow.id).asc()),
            ).all()
            return [_to_command_run_view(row) for row in rows]

    def add_task_run_log(
        self,
        *,
        command_run_id: int | None,
        phase: str,
        status: str,
        details: dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> int:
        with Session(self.engine) as session:
            row = TaskRunLogRow(
                command_run_id=command_run_id,
                task_id=task_id,
                phase=phase,
                status=status,
                details_json=(
                    json.dumps(details, ensure_ascii=False, sort_keys=True)
                    if details is not None
                    else None
                ),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def list_task_run_logs(self, command_run_id: int) -> list[TaskRunLogView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRunLogRow)
                .where(TaskRunLogRow.command_run_id == command_run_id)
                .order_by(col(TaskRunLogRow.id).asc()),
            ).all()
            return [
                TaskRunLogView(
                    log_id=int(row.id or 0),
                    command_run_id=row.command_run_id,
                    task_id=row.task_id,
                    phase=row.phase,
                    status=row.status,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=_load_json_object(row.details_json) or {},
                )
                for row in rows
            ]

    def record_task_run(self, payload: TaskRunWrite) -> int:
        with Session(self.engine) as session:
            row = TaskRunRow(
                task_id=payload.task_id,
                command=payload.command,
                status=payload.status,
                story_points=payload.story_points,
                duration_seconds=payload.duration_seconds,
                workspace=payload.workspace,
                job_id=payload.job_id,
                notes=payload.notes,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def count_task_runs(self, job_id: str) -> int:
        with Session(self.engine) as session:
            return len(session.exec(select(TaskRunRow).where(TaskRunRow.job_id == job_id)).all())

    def record_token_usage(self, payload: TokenUsageWrite) -> int:
        with Session(self.engine) as session:
            row = TokenUsageRow(
                command=payload.command,
                agent=payload.agent,
                action=payload.action,
                model=payload.model,
                workspace=payload.workspace,
                task_id=payload.task_id,
                job_id=payload.job_id,
                command_run_id=payload.command_run_id,
                task_run_id=payload.task_run_id,
                prompt_tokens=payload.prompt_tokens,
                completion_tokens=payload.completion_tokens,
                cost_estimate=payload.cost_estimate,
                recorded_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.id or 0)

    def list_token_usage(self, job_id: str) -> list[TokenUsageView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TokenUsageRow)
                .where(TokenUsageRow.job_id == job_id)
                .order_by(col(TokenUsageRow.id).asc()),
            ).all()
            return [
                TokenUsageView(
                    usage_id=int(row.id or 0),
                    job_id=row.job_id,
                    command_run_id=row.command_run_id,
                    command=row.command,
                    agent=row.agent,
                    model=row.model,
                    workspace=row.workspace,
                    task_id=row.task_id,
                    prompt_tokens=row.prompt_tokens,
                    completion_tokens=row.completion_tokens,
                    cost_estimate=row.cost_estimate,
                    recorded_at=to_utc_aware_datetime(row.recorded_at),
                )
                for row in rows
            ]


def _load_json_object(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None


def _to_job_view(row: JobRow) -> JobView:
    return JobView(
        job_id=row.id,
        job_type=row.type,
        command_name=row.command_name,
        workspace_id=row.workspace_id,
        state=JobState(row.job_state),
        state_detail=row.job_state_detail,
        project_id=row.project_id,
        agent_id=row.agent_id,
        total_units=row.total_units,
        completed_units=row.completed_units,
        payload=_load_json_object(row.payload_json),
        result=_load_json_object(row.result_json),
        error_code=row.error_code,
        error_message=row.error_message,
        resume_supported=row.resume_supported,
        checkpoint_path=row.checkpoint_path,
        started_at=optional_utc(row.started_at),
        last_checkpoint_at=optional_utc(row.last_checkpoint_at),
        completed_at=optional_utc(row.completed_at),
        row_version=row.row_version,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_command_run_view(row: CommandRunRow) -> CommandRunView:
    return CommandRunView(
        command_run_id=int(row.id or 0),
        command=row.command,
        job_id=row.job_id,
        workspace=row.workspace,
        status=row.status,
        summary=row.summary,
        output_path=row.output_path,
        agent=row.agent,
        git_branch=row.git_branch,
        git_base_branch=row.git_base_branch,
        started_at=to_utc_aware_datetime(row.started_at),
        completed_at=optional_utc(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )

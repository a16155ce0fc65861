"""Domain models for job lifecycle, checkpoints and run telemetry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class JobState(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    CHECKPOINTING = "checkpointing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

COMMAND_JOB_TYPES = {
    "create-tasks": "task_creation",
    "refine-tasks": "task_refinement",
    "work-on-tasks": "work",
    "code-review": "review",
    "qa-tasks": "qa",
    "openapi-change": "openapi_change",
}
DEFAULT_JOB_TYPE = "other"


def normalize_job_state(value: str | JobState | None) -> JobState:
    """Map a caller-supplied status onto a known job state.

    ``succeeded`` is an alias of ``completed``; unknown values become ``queued``.
    """

    if isinstance(value, JobState):
        return value
    normalized = (value or "").strip().lower()
    if normalized == "succeeded":
        return JobState.COMPLETED
    try:
        return JobState(normalized)
    except ValueError:
        return JobState.QUEUED


def job_type_for_command(command_name: str) -> str:
    return COMMAND_JOB_TYPES.get(command_name, DEFAULT_JOB_TYPE)


@dataclass(slots=True)
class JobSession:
    """Explicit per-invocation handle passed to every engine call."""

    job_id: str
    command_name: str
    job_type: str
    resume_supported: bool
    command_run_id: int


@dataclass(slots=True)
class StartJobResult:
    job_id: str
    command_run_id: int
    checkpoint_path: Path
    manifest_path: Path
    session: JobSession


@dataclass(slots=True)
class JobUpsert:
    """Job row fields merged by ``JobRepository.upsert_job``."""

    job_id: str
    job_type: str
    command_name: str
    workspace_id: str
    state: JobState
    resume_supported: bool = True
    checkpoint_path: str | None = None
    payload: dict[str, Any] | None = None
    project_id: str | None = None
    agent_id: str | None = None
    total_units: int | None = None
    completed_units: int | None = None
    state_detail: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable job row."""

    job_id: str
    job_type: str
    command_name: str
    workspace_id: str
    state: JobState
    state_detail: str | None
    project_id: str | None
    agent_id: str | None
    total_units: int | None
    completed_units: int | None
    payload: dict[str, Any] | None
    result: dict[str, Any] | None
    error_code: str | None
    error_message: str | None
    resume_supported: bool
    checkpoint_path: str | None
    started_at: datetime | None
    last_checkpoint_at: datetime | None
    completed_at: datetime | None
    row_version: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class CommandRunView:
    command_run_id: int
    command: str
    job_id: str | None
    workspace: str | None
    status: str
    summary: str | None
    output_path: str | None
    agent: str | None
    git_branch: str | None
    git_base_branch: str | None
    started_at: datetime
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class TaskRunWrite:
    """Per-task execution record."""

    task_id: str
    command: str
    status: str
    story_points: float | None = None
    duration_seconds: float | None = None
    workspace: str | None = None
    job_id: str | None = None
    notes: str | None = None


@dataclass(slots=True)
class TaskRunLogView:
    log_id: int
    command_run_id: int | None
    task_id: str | None
    phase: str
    status: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TokenUsageWrite:
    """Token accounting entry produced by an agent invocation."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    command: str | None = None
    agent: str | None = None
    action: str | None = None
    model: str | None = None
    workspace: str | None = None
    task_id: str | None = None
    job_id: str | None = None
    command_run_id: int | None = None
    task_run_id: int | None = None
    cost_estimate: float | None = None


@dataclass(slots=True)
class TokenUsageView:
    usage_id: int
    job_id: str | None
    command_run_id: int | None
    command: str | None
    agent: str | None
    model: str | None
    workspace: str | None
    task_id: str | None
    prompt_tokens: int
    completion_tokens: int
    cost_estimate: float | None
    recorded_at: datetime


@dataclass(slots=True)
class JobManifest:
    """Immutable identity record written once at job start."""

    job_id: str
    workspace_root: str
    workspace_id: str
    command_name: str
    job_type: str
    created_at: str
    resume_supported: bool
    payload: dict[str, Any]
    schema_version: int = 1


@dataclass(slots=True)
class CheckpointRecord:
    """One immutable sequenced checkpoint file."""

    job_id: str
    command_name: str
    job_type: str
    checkpoint_seq: int
    checkpoint_id: str
    created_at: str
    status: JobState
    stage: str
    payload: dict[str, Any]
    runtime_version: str
    platform: str
    reason: str | None = None
    progress_step: int = 0
    estimated_total_steps: int | None = None
    tags: list[str] = field(default_factory=list)
    cursor: str | None = None
    parents: list[str] = field(default_factory=list)
    schema_version: int = 1


@dataclass(slots=True)
class CheckpointView:
    """Latest resumable position of a job."""

    job_id: str
    command_name: str
    stage: str
    status: JobState
    checkpoint_seq: int
    payload: dict[str, Any]
    created_at: str
    path: Path
    legacy: bool = False
    checkpoint_id: str | None = None
    command_run_id: int | None = None
    reason: str | None = None
    manifest: JobManifest | None = None

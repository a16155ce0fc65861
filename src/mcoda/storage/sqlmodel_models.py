"""SQLModel ORM tables for the workspace job store and agent registry."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class JobRow(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    type: str = Field(index=True)
    command_name: str = Field(index=True)
    workspace_id: str = Field(index=True)
    job_state: str = Field(index=True)
    job_state_detail: str | None = Field(default=None, sa_column=Column(Text))
    project_id: str | None = None
    agent_id: str | None = None
    total_units: int | None = None
    completed_units: int | None = None
    payload_json: str | None = Field(default=None, sa_column=Column(Text))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    error_code: str | None = None
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    resume_supported: bool = True
    checkpoint_path: str | None = None
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    last_checkpoint_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    row_version: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CommandRunRow(SQLModel, table=True):
    __tablename__ = "command_runs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    command: str = Field(index=True)
    job_id: str | None = Field(default=None, index=True)
    workspace: str | None = None
    status: str = Field(index=True)
    output_path: str | None = None
    agent: str | None = None
    git_branch: str | None = None
    git_base_branch: str | None = None
    summary: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRunRow(SQLModel, table=True):
    __tablename__ = "task_runs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(index=True)
    command: str = Field(index=True)
    status: str
    story_points: float | None = None
    duration_seconds: float | None = None
    workspace: str | None = None
    job_id: str | None = Field(default=None, index=True)
    notes: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRunLogRow(SQLModel, table=True):
    __tablename__ = "task_run_logs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    command_run_id: int | None = Field(default=None, index=True)
    task_id: str | None = None
    phase: str
    status: str
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TokenUsageRow(SQLModel, table=True):
    __tablename__ = "token_usage"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_token_usage_job_time", "job_id", "recorded_at"),)

    id: int | None = Field(default=None, primary_key=True)
    command: str | None = None
    agent: str | None = None
    action: str | None = None
    model: str | None = None
    workspace: str | None = None
    task_id: str | None = None
    job_id: str | None = None
    command_run_id: int | None = None
    task_run_id: int | None = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_estimate: float | None = None
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentRow(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    slug: str = Field(unique=True, index=True)
    adapter: str
    default_model: str | None = None
    rating: float | None = None
    cost_per_million: float | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentCapabilityRow(SQLModel, table=True):
    __tablename__ = "agent_capabilities"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "agent_id",
            "capability",
            name="uq_agent_capabilities_agent_capability",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    agent_id: str = Field(
        sa_column=Column(
            ForeignKey("agents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    capability: str


class AgentHealthRow(SQLModel, table=True):
    __tablename__ = "agent_health"  # type: ignore[bad-override]

    agent_id: str = Field(
        sa_column=Column(
            ForeignKey("agents.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    status: str
    latency_ms: int | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    checked_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RoutingDefaultRow(SQLModel, table=True):
    __tablename__ = "routing_defaults"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "command_name",
            name="uq_routing_defaults_workspace_command",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    workspace_id: str = Field(index=True)
    command_name: str
    agent_id: str = Field(
        sa_column=Column(
            ForeignKey("agents.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    qa_profile: str | None = None
    docdex_scope: str | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

"""Context lane domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from mcoda.storage.common import from_iso, utc_now


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(slots=True)
class ContextMessage:
    """One message of a lane history."""

    role: MessageRole
    content: str
    ts: datetime = field(default_factory=utc_now)
    name: str | None = None
    model: str | None = None
    tokens: int | None = None

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "ts": self.ts.isoformat(),
        }
        if self.name is not None:
            record["name"] = self.name
        if self.model is not None:
            record["model"] = self.model
        if self.tokens is not None:
            record["tokens"] = self.tokens
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ContextMessage:
        raw_role = str(record.get("role", MessageRole.USER.value)).strip().lower()
        try:
            role = MessageRole(raw_role)
        except ValueError:
            role = MessageRole.USER
        raw_ts = record.get("ts")
        tokens = record.get("tokens")
        return cls(
            role=role,
            content=str(record.get("content", "")),
            ts=from_iso(raw_ts) if isinstance(raw_ts, str) and raw_ts else utc_now(),
            name=record.get("name"),
            model=record.get("model"),
            tokens=tokens if isinstance(tokens, int) else None,
        )


@dataclass(slots=True)
class LaneScope:
    """Identity of a lane: job or run, task and role."""

    role: str
    job_id: str | None = None
    run_id: str | None = None
    task_id: str | None = None
    task_key: str | None = None
    ephemeral: bool = False


def build_lane_id(scope: LaneScope) -> str:
    owner = scope.job_id or scope.run_id or "run"
    task = scope.task_id or scope.task_key or "ad-hoc"
    return f"{owner}:{task}:{scope.role}"


@dataclass(slots=True)
class LaneSnapshot:
    """Persisted state of one lane as read from the store."""

    lane_id: str
    messages: list[ContextMessage]
    message_count: int
    byte_size: int
    updated_at: datetime | None = None


@dataclass(slots=True)
class ContextLane:
    """In-memory lane owned by the manager."""

    lane_id: str
    role: str
    persisted: bool
    messages: list[ContextMessage] = field(default_factory=list)
    token_estimate: int = 0
    redaction_count: int = 0
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class SummaryOutcome:
    """Result of one summarize-if-needed call."""

    lane_id: str
    iterations: int
    before_messages: int
    after_messages: int
    before_tokens: int
    after_tokens: int
    model_limit: int
    over_budget: bool

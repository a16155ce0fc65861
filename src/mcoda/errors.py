"""Error taxonomy shared by job, routing and context components."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class McodaError(RuntimeError):
    """Base class for failures surfaced to calling workflow commands."""


class CheckpointMismatchError(McodaError):
    """Resume target disagrees with the job id recorded on disk."""

    def __init__(self, *, expected_job_id: str, found_job_id: str, source: str) -> None:
        super().__init__(
            f"Checkpoint mismatch: expected job {expected_job_id}, "
            f"found {source} for {found_job_id}",
        )
        self.expected_job_id = expected_job_id
        self.found_job_id = found_job_id
        self.source = source


class JobNotResumableError(McodaError):
    """Job exists but its state or metadata does not allow resume."""


class StorageIOError(McodaError):
    """Durable write or read of a job artifact failed."""

    def __init__(self, message: str, *, path: Path) -> None:
        super().__init__(f"{message}: {path}")
        self.path = path


class RoutingError(McodaError):
    """Agent routing could not produce a usable agent."""

    def __init__(self, message: str, *, command_name: str) -> None:
        super().__init__(message)
        self.command_name = command_name


class MissingCapabilityError(RoutingError):
    """Agent lacks capabilities required by a command."""

    def __init__(
        self,
        *,
        command_name: str,
        missing: Iterable[str],
        agent_slug: str | None = None,
    ) -> None:
        self.missing = tuple(missing)
        self.agent_slug = agent_slug
        subject = f"Agent {agent_slug}" if agent_slug else "No routed agent"
        super().__init__(
            f"{subject} missing required capabilities for {command_name}: "
            f"{', '.join(self.missing)}",
            command_name=command_name,
        )


class AgentUnreachableError(RoutingError):
    """Every otherwise-suitable candidate reported unreachable health."""

    def __init__(self, *, command_name: str, agent_slug: str) -> None:
        super().__init__(
            f"Agent {agent_slug} is unreachable and no fallback is available "
            f"for {command_name}",
            command_name=command_name,
        )
        self.agent_slug = agent_slug


class NoRoutingDefaultsError(RoutingError):
    """Neither override nor any default binding exists for a command."""

    def __init__(self, *, command_name: str) -> None:
        super().__init__(
            f"No routing defaults or overrides found for command {command_name}",
            command_name=command_name,
        )


class UnknownAgentError(RoutingError):
    """Agent id or slug is not present in the capability registry."""

    def __init__(self, *, agent: str, command_name: str = "") -> None:
        super().__init__(f"Agent {agent} not found", command_name=command_name)
        self.agent = agent


class UnknownProfileError(RoutingError):
    """QA profile or docdex scope outside the known value set."""

    def __init__(self, *, field: str, value: str, known: Iterable[str]) -> None:
        self.field = field
        self.value = value
        self.known = tuple(sorted(known))
        super().__init__(
            f"Unknown {field} {value!r}. Use one of: {', '.join(self.known)}",
            command_name="",
        )


class RoutingApiError(RoutingError):
    """Remote routing API returned a non-success response."""

    def __init__(self, *, status_code: int, body: str, reason: str = "request failed") -> None:
        super().__init__(
            f"Routing API {reason} ({status_code}): {body}",
            command_name="",
        )
        self.status_code = status_code


class SummarizerError(McodaError):
    """Summarization provider failed or returned empty content."""

"""Controllers for routing and agent registry CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from mcoda.config import Settings
from mcoda.errors import UnknownAgentError
from mcoda.routing.backend import build_routing_backend
from mcoda.routing.models import AgentWrite, HealthStatus, RoutingDefaultsUpdate
from mcoda.routing.repository import RoutingRepository
from mcoda.routing.service import RoutingService


@dataclass(slots=True)
class RoutingDefaultsCommand:
    """CLI input for listing workspace bindings."""

    workspace_root: Path | None
    workspace_id: str | None


@dataclass(slots=True)
class RoutingPreviewCommand:
    workspace_root: Path | None
    workspace_id: str | None
    command_name: str
    task_type: str | None = None
    agent: str | None = None


@dataclass(slots=True)
class RoutingSetCommand:
    """CLI input for a batch defaults update."""

    workspace_root: Path | None
    workspace_id: str | None
    bindings: tuple[str, ...]
    reset: tuple[str, ...] = ()
    qa_profile: str | None = None
    docdex_scope: str | None = None


@dataclass(slots=True)
class AgentAddCommand:
    workspace_root: Path | None
    slug: str
    capabilities: tuple[str, ...]
    adapter: str = "local"
    model: str | None = None


@dataclass(slots=True)
class AgentHealthCommand:
    workspace_root: Path | None
    slug: str
    status: str
    latency_ms: int | None = None


class RoutingCliController:
    """Inspect and edit routing defaults through the configured backend."""

    def defaults(self, command: RoutingDefaultsCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        workspace_id = command.workspace_id or settings.resolved_workspace_id
        with _service(settings) as service:
            defaults = service.get_workspace_defaults(workspace_id)

        lines = [f"Routing defaults for {workspace_id}: {len(defaults)}"]
        for item in defaults:
            lines.append(
                f"  {item.command_name} -> {item.agent_slug or item.agent_id} "
                f"qa_profile={item.qa_profile or '-'} docdex_scope={item.docdex_scope or '-'}",
            )
        return lines

    def preview(self, command: RoutingPreviewCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        workspace_id = command.workspace_id or settings.resolved_workspace_id
        with _service(settings) as service:
            preview = service.preview(
                workspace_id,
                command.command_name,
                task_type=command.task_type,
                override_agent_slug=command.agent,
            )

        required = ", ".join(preview.required_capabilities) or "-"
        lines = [
            f"Command: {preview.command_name}",
            f"Required capabilities: {required}",
            f"Candidates: {len(preview.candidates)}",
        ]
        for candidate in preview.candidates:
            verdict = candidate.rejected.value if candidate.rejected is not None else "ok"
            missing = ", ".join(candidate.missing_capabilities) or "-"
            lines.append(
                f"  {candidate.source.value} {candidate.agent_slug or candidate.agent_id or '-'} "
                f"health={candidate.health_status.value} missing={missing} verdict={verdict}",
            )
        selected = preview.selected
        if selected is None:
            lines.append("Selected: none")
        else:
            lines.append(
                f"Selected: {selected.agent_slug or selected.agent_id} "
                f"(source={selected.source.value})",
            )
        if preview.notes:
            lines.append(f"Notes: {preview.notes}")
        return lines

    def set_defaults(self, command: RoutingSetCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        workspace_id = command.workspace_id or settings.resolved_workspace_id
        update = RoutingDefaultsUpdate(
            set=parse_bindings(command.bindings),
            reset=list(command.reset),
            qa_profile=command.qa_profile,
            docdex_scope=command.docdex_scope,
        )
        with _service(settings) as service:
            defaults = service.update_workspace_defaults(workspace_id, update)
        return [f"Routing defaults updated for {workspace_id}: {len(defaults)} binding(s)"]

    def add_agent(self, command: AgentAddCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        with _registry(settings) as repository:
            agent = repository.upsert_agent(
                AgentWrite(
                    slug=command.slug,
                    adapter=command.adapter,
                    capabilities=command.capabilities,
                    default_model=command.model,
                ),
            )
        return [
            f"Agent registered: {agent.slug} ({agent.id})",
            f"Capabilities: {', '.join(agent.capabilities) or '-'}",
        ]

    def set_health(self, command: AgentHealthCommand) -> list[str]:
        settings = Settings.from_env(workspace_root=command.workspace_root)
        status = HealthStatus(command.status.strip().lower())
        with _registry(settings) as repository:
            agent = repository.get_agent(command.slug)
            if agent is None:
                raise UnknownAgentError(agent=command.slug)
            repository.set_health(agent.id, status=status, latency_ms=command.latency_ms)
        return [f"Agent {agent.slug} health: {status.value}"]


def parse_bindings(raw: tuple[str, ...]) -> dict[str, str]:
    """Parse ``COMMAND=AGENT`` pairs."""

    bindings: dict[str, str] = {}
    for item in raw:
        command_name, separator, agent = item.partition("=")
        if not separator or not command_name.strip() or not agent.strip():
            raise ValueError(f"Invalid binding {item!r}. Expected format 'COMMAND=AGENT'.")
        bindings[command_name.strip()] = agent.strip()
    return bindings


@contextmanager
def _service(settings: Settings) -> Iterator[RoutingService]:
    service = RoutingService.from_settings(settings, build_routing_backend(settings))
    try:
        yield service
    finally:
        service.close()


@contextmanager
def _registry(settings: Settings) -> Iterator[RoutingRepository]:
    repository = RoutingRepository(
        settings.resolved_db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()

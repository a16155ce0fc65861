"""Domain models for the agent capability registry and routing resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from mcoda.storage.common import from_iso

GLOBAL_WORKSPACE_ID = "__GLOBAL__"
DEFAULT_COMMAND = "default"


class HealthStatus(str, Enum):
    """Agent health as reported by the registry."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


class RoutingSource(str, Enum):
    """Which tier supplied the resolved agent."""

    OVERRIDE = "override"
    WORKSPACE_DEFAULT = "workspace_default"
    GLOBAL_DEFAULT = "global_default"


class RejectionReason(str, Enum):
    UNKNOWN_AGENT = "unknown_agent"
    MISSING_CAPABILITIES = "missing_capabilities"
    UNREACHABLE = "unreachable"


@dataclass(slots=True)
class AgentHealthView:
    status: HealthStatus
    checked_at: datetime | None = None
    latency_ms: int | None = None


@dataclass(slots=True)
class AgentView:
    """Registry entry; read-only to the resolver."""

    id: str
    slug: str
    adapter: str
    capabilities: tuple[str, ...] = ()
    default_model: str | None = None
    health: AgentHealthView | None = None
    rating: float | None = None
    cost_per_million: float | None = None

    @property
    def health_status(self) -> HealthStatus:
        return self.health.status if self.health is not None else HealthStatus.UNKNOWN


@dataclass(slots=True)
class AgentWrite:
    """Input payload for registering or updating an agent."""

    slug: str
    adapter: str = "local"
    capabilities: tuple[str, ...] = ()
    default_model: str | None = None
    rating: float | None = None
    cost_per_million: float | None = None


@dataclass(slots=True)
class RoutingDefault:
    """(workspace, command) -> agent binding."""

    workspace_id: str
    command_name: str
    agent_id: str
    agent_slug: str | None = None
    qa_profile: str | None = None
    docdex_scope: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class RoutingDefaultsUpdate:
    """Batch of binding changes for one workspace."""

    set: dict[str, str] = field(default_factory=dict)
    reset: list[str] = field(default_factory=list)
    qa_profile: str | None = None
    docdex_scope: str | None = None


@dataclass(slots=True)
class RoutingPreviewRequest:
    workspace_id: str
    command_name: str
    required_capabilities: tuple[str, ...] = ()
    agent_override: str | None = None
    task_type: str | None = None


@dataclass(slots=True)
class RoutingCandidate:
    """One evaluated tier of the routing chain."""

    source: RoutingSource
    agent_id: str | None
    agent_slug: str | None
    capabilities: tuple[str, ...] = ()
    missing_capabilities: tuple[str, ...] = ()
    health_status: HealthStatus = HealthStatus.UNKNOWN
    rejected: RejectionReason | None = None
    binding_workspace_id: str | None = None
    binding_command: str | None = None
    qa_profile: str | None = None
    docdex_scope: str | None = None


@dataclass(slots=True)
class RoutingPreview:
    """Every evaluated candidate plus the one that would be selected."""

    workspace_id: str
    command_name: str
    required_capabilities: tuple[str, ...]
    candidates: list[RoutingCandidate]
    selected: RoutingCandidate | None = None
    resolved_agent: AgentView | None = None
    qa_profile: str | None = None
    docdex_scope: str | None = None
    notes: str | None = None


@dataclass(slots=True)
class ResolvedAgent:
    agent: AgentView
    capabilities: tuple[str, ...]
    health_status: HealthStatus
    source: RoutingSource
    required_capabilities: tuple[str, ...]
    command_name: str
    qa_profile: str | None = None
    docdex_scope: str | None = None


def agent_to_payload(agent: AgentView) -> dict[str, Any]:
    """Serialize an agent into the routing API wire shape."""

    return {
        "id": agent.id,
        "slug": agent.slug,
        "adapter": agent.adapter,
        "defaultModel": agent.default_model,
        "capabilities": list(agent.capabilities),
        "health": _health_to_payload(agent.health),
        "rating": agent.rating,
        "costPerMillion": agent.cost_per_million,
    }


def agent_from_payload(raw: dict[str, Any]) -> AgentView:
    agent_id = raw.get("id")
    slug = raw.get("slug")
    if not isinstance(agent_id, str) or not agent_id:
        raise ValueError("agent.id must be a non-empty string")
    capabilities = raw.get("capabilities") or []
    if not isinstance(capabilities, list):
        raise TypeError("agent.capabilities must be an array")
    health = raw.get("health")
    return AgentView(
        id=agent_id,
        slug=slug if isinstance(slug, str) and slug else agent_id,
        adapter=str(raw.get("adapter") or ""),
        capabilities=tuple(str(item) for item in capabilities),
        default_model=raw.get("defaultModel"),
        health=_health_from_payload(health) if isinstance(health, dict) else None,
        rating=raw.get("rating"),
        cost_per_million=raw.get("costPerMillion"),
    )


def default_to_payload(binding: RoutingDefault) -> dict[str, Any]:
    return {
        "workspaceId": binding.workspace_id,
        "commandName": binding.command_name,
        "agentId": binding.agent_id,
        "agentSlug": binding.agent_slug,
        "qaProfile": binding.qa_profile,
        "docdexScope": binding.docdex_scope,
        "updatedAt": binding.updated_at.isoformat() if binding.updated_at else None,
    }


def default_from_payload(raw: dict[str, Any]) -> RoutingDefault:
    workspace_id = raw.get("workspaceId")
    command_name = raw.get("commandName")
    agent_id = raw.get("agentId")
    for name, value in (
        ("workspaceId", workspace_id),
        ("commandName", command_name),
        ("agentId", agent_id),
    ):
        if not isinstance(value, str) or not value:
            raise ValueError(f"routing default {name} must be a non-empty string")
    updated_at = raw.get("updatedAt")
    return RoutingDefault(
        workspace_id=str(workspace_id),
        command_name=str(command_name),
        agent_id=str(agent_id),
        agent_slug=raw.get("agentSlug"),
        qa_profile=raw.get("qaProfile"),
        docdex_scope=raw.get("docdexScope"),
        updated_at=from_iso(updated_at) if isinstance(updated_at, str) and updated_at else None,
    )


def update_to_payload(update: RoutingDefaultsUpdate) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if update.set:
        payload["set"] = dict(update.set)
    if update.reset:
        payload["reset"] = list(update.reset)
    if update.qa_profile is not None:
        payload["qaProfile"] = update.qa_profile
    if update.docdex_scope is not None:
        payload["docdexScope"] = update.docdex_scope
    return payload


def preview_request_to_payload(request: RoutingPreviewRequest) -> dict[str, Any]:
    return {
        "workspaceId": request.workspace_id,
        "commandName": request.command_name,
        "agentOverride": request.agent_override,
        "taskType": request.task_type,
        "requiredCapabilities": list(request.required_capabilities),
    }


def preview_from_payload(raw: dict[str, Any], request: RoutingPreviewRequest) -> RoutingPreview:
    """Parse a remote preview, filling gaps from the originating request."""

    candidates = [
        _candidate_from_payload(item)
        for item in raw.get("candidates") or []
        if isinstance(item, dict)
    ]
    resolved_raw = raw.get("resolvedAgent")
    resolved = agent_from_payload(resolved_raw) if isinstance(resolved_raw, dict) else None
    selected: RoutingCandidate | None = None
    if resolved is not None:
        selected = next(
            (item for item in candidates if item.agent_id == resolved.id and item.rejected is None),
            None,
        )
        if selected is None:
            provenance = raw.get("provenance") or RoutingSource.WORKSPACE_DEFAULT.value
            selected = RoutingCandidate(
                source=RoutingSource(provenance),
                agent_id=resolved.id,
                agent_slug=resolved.slug,
                capabilities=resolved.capabilities,
                health_status=resolved.health_status,
            )
    required = raw.get("requiredCapabilities")
    return RoutingPreview(
        workspace_id=str(raw.get("workspaceId") or request.workspace_id),
        command_name=str(raw.get("commandName") or request.command_name),
        required_capabilities=(
            tuple(required) if isinstance(required, list) else request.required_capabilities
        ),
        candidates=candidates,
        selected=selected,
        resolved_agent=resolved,
        qa_profile=raw.get("qaProfile"),
        docdex_scope=raw.get("docdexScope"),
        notes=raw.get("notes"),
    )


def _candidate_from_payload(raw: dict[str, Any]) -> RoutingCandidate:
    health = raw.get("health")
    notes = raw.get("notes")
    rejected = None
    if notes in {reason.value for reason in RejectionReason}:
        rejected = RejectionReason(notes)
    return RoutingCandidate(
        source=RoutingSource(raw.get("source") or RoutingSource.WORKSPACE_DEFAULT.value),
        agent_id=raw.get("agentId"),
        agent_slug=raw.get("agentSlug"),
        capabilities=tuple(raw.get("capabilities") or ()),
        missing_capabilities=tuple(raw.get("missingCapabilities") or ()),
        health_status=(
            _health_from_payload(health).status
            if isinstance(health, dict)
            else HealthStatus.UNKNOWN
        ),
        rejected=rejected,
    )


def _health_to_payload(health: AgentHealthView | None) -> dict[str, Any] | None:
    if health is None:
        return None
    return {
        "status": health.status.value,
        "lastCheckedAt": health.checked_at.isoformat() if health.checked_at else None,
        "latencyMs": health.latency_ms,
    }


def _health_from_payload(raw: dict[str, Any]) -> AgentHealthView:
    checked_at = raw.get("lastCheckedAt")
    return AgentHealthView(
        status=normalize_health_status(raw.get("status")),
        checked_at=from_iso(checked_at) if isinstance(checked_at, str) and checked_at else None,
        latency_ms=raw.get("latencyMs"),
    )


def normalize_health_status(value: str | None) -> HealthStatus:
    try:
        return HealthStatus((value or "").strip().lower())
    except ValueError:
        return HealthStatus.UNKNOWN

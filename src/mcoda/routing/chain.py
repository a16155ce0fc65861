"""Tiered candidate evaluation shared by routing backends."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from mcoda.routing.metadata import canonical_command_name, missing_capabilities
from mcoda.routing.models import (
    DEFAULT_COMMAND,
    GLOBAL_WORKSPACE_ID,
    AgentView,
    HealthStatus,
    RejectionReason,
    RoutingCandidate,
    RoutingDefault,
    RoutingPreview,
    RoutingPreviewRequest,
    RoutingSource,
)

AgentLookup = Callable[[str], AgentView | None]


def routing_tiers(workspace_id: str, command_name: str) -> list[tuple[str, str, RoutingSource]]:
    """Fallback chain in evaluation order, without duplicate tiers."""

    tiers = [
        (workspace_id, command_name, RoutingSource.WORKSPACE_DEFAULT),
        (GLOBAL_WORKSPACE_ID, command_name, RoutingSource.GLOBAL_DEFAULT),
        (workspace_id, DEFAULT_COMMAND, RoutingSource.WORKSPACE_DEFAULT),
        (GLOBAL_WORKSPACE_ID, DEFAULT_COMMAND, RoutingSource.GLOBAL_DEFAULT),
    ]
    seen: set[tuple[str, str]] = set()
    unique: list[tuple[str, str, RoutingSource]] = []
    for tier_workspace, tier_command, source in tiers:
        key = (tier_workspace, tier_command)
        if key in seen:
            continue
        seen.add(key)
        if tier_workspace == GLOBAL_WORKSPACE_ID:
            source = RoutingSource.GLOBAL_DEFAULT
        unique.append((tier_workspace, tier_command, source))
    return unique


def evaluate_agent(
    agent: AgentView,
    *,
    required: tuple[str, ...],
    source: RoutingSource,
    binding: RoutingDefault | None = None,
) -> RoutingCandidate:
    missing = missing_capabilities(required, agent.capabilities)
    health = agent.health_status
    rejected = None
    if missing:
        rejected = RejectionReason.MISSING_CAPABILITIES
    elif health == HealthStatus.UNREACHABLE:
        rejected = RejectionReason.UNREACHABLE
    return RoutingCandidate(
        source=source,
        agent_id=agent.id,
        agent_slug=agent.slug,
        capabilities=agent.capabilities,
        missing_capabilities=missing,
        health_status=health,
        rejected=rejected,
        binding_workspace_id=binding.workspace_id if binding else None,
        binding_command=binding.command_name if binding else None,
        qa_profile=binding.qa_profile if binding else None,
        docdex_scope=binding.docdex_scope if binding else None,
    )


def build_preview(
    request: RoutingPreviewRequest,
    *,
    bindings: Iterable[RoutingDefault],
    lookup_agent: AgentLookup,
) -> RoutingPreview:
    """Evaluate override and every default tier; the first acceptable one wins."""

    command_name = canonical_command_name(request.command_name)
    required = tuple(request.required_capabilities)
    index: dict[tuple[str, str], RoutingDefault] = {}
    for binding in bindings:
        index[(binding.workspace_id, canonical_command_name(binding.command_name))] = binding

    candidates: list[RoutingCandidate] = []
    if request.agent_override:
        override = lookup_agent(request.agent_override)
        if override is None:
            candidates.append(
                RoutingCandidate(
                    source=RoutingSource.OVERRIDE,
                    agent_id=None,
                    agent_slug=request.agent_override,
                    rejected=RejectionReason.UNKNOWN_AGENT,
                ),
            )
        else:
            candidates.append(
                evaluate_agent(override, required=required, source=RoutingSource.OVERRIDE),
            )

    tier_bindings: list[RoutingDefault] = []
    for tier_workspace, tier_command, source in routing_tiers(request.workspace_id, command_name):
        binding = index.get((tier_workspace, tier_command))
        if binding is None:
            continue
        tier_bindings.append(binding)
        agent = lookup_agent(binding.agent_id)
        if agent is None:
            candidates.append(
                RoutingCandidate(
                    source=source,
                    agent_id=binding.agent_id,
                    agent_slug=binding.agent_slug,
                    rejected=RejectionReason.UNKNOWN_AGENT,
                    binding_workspace_id=binding.workspace_id,
                    binding_command=binding.command_name,
                ),
            )
            continue
        candidates.append(evaluate_agent(agent, required=required, source=source, binding=binding))

    selected = next((item for item in candidates if item.rejected is None), None)
    resolved = lookup_agent(selected.agent_id) if selected and selected.agent_id else None
    qa_profile = selected.qa_profile if selected else None
    docdex_scope = selected.docdex_scope if selected else None
    if qa_profile is None:
        qa_profile = next((b.qa_profile for b in tier_bindings if b.qa_profile), None)
    if docdex_scope is None:
        docdex_scope = next((b.docdex_scope for b in tier_bindings if b.docdex_scope), None)
    return RoutingPreview(
        workspace_id=request.workspace_id,
        command_name=command_name,
        required_capabilities=required,
        candidates=candidates,
        selected=selected,
        resolved_agent=resolved,
        qa_profile=qa_profile,
        docdex_scope=docdex_scope,
    )

"""Routing resolver: pick an agent for a command with tiered fallback."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from mcoda.config import DEFAULT_DOCDEX_SCOPES, DEFAULT_QA_PROFILES, Settings
from mcoda.errors import (
    AgentUnreachableError,
    MissingCapabilityError,
    NoRoutingDefaultsError,
    UnknownAgentError,
)
from mcoda.routing.backend import RoutingBackend
from mcoda.routing.metadata import (
    canonical_command_name,
    missing_capabilities,
    required_capabilities,
    validate_docdex_scope,
    validate_qa_profile,
)
from mcoda.routing.models import (
    HealthStatus,
    RejectionReason,
    ResolvedAgent,
    RoutingCandidate,
    RoutingDefault,
    RoutingDefaultsUpdate,
    RoutingPreview,
    RoutingPreviewRequest,
)

logger = logging.getLogger(__name__)


class RoutingService:
    """Resolve agents for workflow commands against a routing backend."""

    def __init__(
        self,
        backend: RoutingBackend,
        *,
        qa_profiles: Iterable[str] = DEFAULT_QA_PROFILES,
        docdex_scopes: Iterable[str] = DEFAULT_DOCDEX_SCOPES,
    ) -> None:
        self.backend = backend
        self.qa_profiles = tuple(qa_profiles)
        self.docdex_scopes = tuple(docdex_scopes)

    @classmethod
    def from_settings(cls, settings: Settings, backend: RoutingBackend) -> RoutingService:
        return cls(
            backend,
            qa_profiles=settings.routing.qa_profiles,
            docdex_scopes=settings.routing.docdex_scopes,
        )

    def close(self) -> None:
        self.backend.close()

    def preview(
        self,
        workspace_id: str,
        command_name: str,
        *,
        task_type: str | None = None,
        override_agent_slug: str | None = None,
    ) -> RoutingPreview:
        """Evaluate every candidate without raising for routing failures."""

        canonical = canonical_command_name(command_name)
        request = RoutingPreviewRequest(
            workspace_id=workspace_id,
            command_name=canonical,
            required_capabilities=required_capabilities(canonical, task_type),
            agent_override=override_agent_slug,
            task_type=task_type,
        )
        return self.backend.preview(request)

    def resolve_agent_for_command(
        self,
        workspace_id: str,
        command_name: str,
        *,
        task_type: str | None = None,
        override_agent_slug: str | None = None,
    ) -> ResolvedAgent:
        """Return the first acceptable agent from override and default tiers.

        Raises ``MissingCapabilityError``, ``AgentUnreachableError`` or
        ``NoRoutingDefaultsError`` when the chain is exhausted.
        """

        preview = self.preview(
            workspace_id,
            command_name,
            task_type=task_type,
            override_agent_slug=override_agent_slug,
        )
        for candidate in preview.candidates:
            if candidate.rejected is not None:
                logger.warning(
                    "Routing %s: skipped %s candidate %s (%s%s)",
                    preview.command_name,
                    candidate.source.value,
                    candidate.agent_slug or candidate.agent_id or "-",
                    candidate.rejected.value,
                    _missing_suffix(candidate),
                )

        selected = preview.selected
        if selected is None or selected.agent_id is None:
            raise _exhausted_error(preview)

        agent = preview.resolved_agent or self.backend.get_agent(selected.agent_id)
        if agent is None:
            raise UnknownAgentError(agent=selected.agent_id, command_name=preview.command_name)
        capabilities = selected.capabilities or agent.capabilities
        missing = missing_capabilities(preview.required_capabilities, capabilities)
        if missing:
            raise MissingCapabilityError(
                command_name=preview.command_name,
                missing=missing,
                agent_slug=agent.slug,
            )
        if HealthStatus.UNREACHABLE in {selected.health_status, agent.health_status}:
            raise AgentUnreachableError(command_name=preview.command_name, agent_slug=agent.slug)

        logger.info(
            "Routing %s -> %s (source=%s health=%s)",
            preview.command_name,
            agent.slug,
            selected.source.value,
            selected.health_status.value,
        )
        return ResolvedAgent(
            agent=agent,
            capabilities=tuple(capabilities),
            health_status=selected.health_status,
            source=selected.source,
            required_capabilities=preview.required_capabilities,
            command_name=preview.command_name,
            qa_profile=preview.qa_profile,
            docdex_scope=preview.docdex_scope,
        )

    def get_workspace_defaults(self, workspace_id: str) -> list[RoutingDefault]:
        return self.backend.get_workspace_defaults(workspace_id)

    def update_workspace_defaults(
        self,
        workspace_id: str,
        update: RoutingDefaultsUpdate,
    ) -> list[RoutingDefault]:
        """Validate every binding, then persist the whole batch or nothing."""

        qa_profile = validate_qa_profile(update.qa_profile, self.qa_profiles)
        docdex_scope = validate_docdex_scope(update.docdex_scope, self.docdex_scopes)

        normalized_set: dict[str, str] = {}
        for command_name, agent_slug in update.set.items():
            canonical = canonical_command_name(command_name)
            agent = self.backend.get_agent(agent_slug)
            if agent is None:
                raise UnknownAgentError(agent=agent_slug, command_name=canonical)
            missing = missing_capabilities(required_capabilities(canonical), agent.capabilities)
            if missing:
                raise MissingCapabilityError(
                    command_name=canonical,
                    missing=missing,
                    agent_slug=agent.slug,
                )
            normalized_set[canonical] = agent.slug

        normalized_reset = list(dict.fromkeys(canonical_command_name(c) for c in update.reset))
        updated = self.backend.update_workspace_defaults(
            workspace_id,
            RoutingDefaultsUpdate(
                set=normalized_set,
                reset=normalized_reset,
                qa_profile=qa_profile,
                docdex_scope=docdex_scope,
            ),
        )
        logger.info(
            "Routing defaults updated for %s: set=%s reset=%s",
            workspace_id,
            ",".join(sorted(normalized_set)) or "-",
            ",".join(normalized_reset) or "-",
        )
        return updated


def _missing_suffix(candidate: RoutingCandidate) -> str:
    if not candidate.missing_capabilities:
        return ""
    return ": " + ", ".join(candidate.missing_capabilities)


def _exhausted_error(
    preview: RoutingPreview,
) -> MissingCapabilityError | AgentUnreachableError | NoRoutingDefaultsError:
    """Classify why no candidate was acceptable.

    Unknown agents count as absent candidates.
    """

    known = [
        item for item in preview.candidates if item.rejected != RejectionReason.UNKNOWN_AGENT
    ]
    if not known:
        return NoRoutingDefaultsError(command_name=preview.command_name)
    if all(
        item.rejected == RejectionReason.UNREACHABLE
        or (item.rejected is None and item.health_status == HealthStatus.UNREACHABLE)
        for item in known
    ):
        return AgentUnreachableError(
            command_name=preview.command_name,
            agent_slug=known[0].agent_slug or known[0].agent_id or "-",
        )
    deficient = next((item for item in known if item.missing_capabilities), None)
    if deficient is not None:
        return MissingCapabilityError(
            command_name=preview.command_name,
            missing=deficient.missing_capabilities,
            agent_slug=deficient.agent_slug,
        )
    return NoRoutingDefaultsError(command_name=preview.command_name)

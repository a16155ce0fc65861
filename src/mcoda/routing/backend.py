"""Routing backends: local SQLite registry and remote routing API."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from mcoda.config import Settings
from mcoda.errors import RoutingApiError, UnknownAgentError
from mcoda.routing.chain import build_preview
from mcoda.routing.models import (
    GLOBAL_WORKSPACE_ID,
    AgentView,
    RoutingDefault,
    RoutingDefaultsUpdate,
    RoutingPreview,
    RoutingPreviewRequest,
    agent_from_payload,
    default_from_payload,
    preview_from_payload,
    preview_request_to_payload,
    update_to_payload,
)
from mcoda.routing.repository import RoutingRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2


class RoutingBackend(Protocol):
    """Capability/health provider consumed by the routing resolver."""

    def preview(self, request: RoutingPreviewRequest) -> RoutingPreview:
        """Evaluate the routing chain for one command."""

    def get_workspace_defaults(self, workspace_id: str) -> list[RoutingDefault]:
        """Return the bindings stored for a workspace."""

    def update_workspace_defaults(
        self,
        workspace_id: str,
        update: RoutingDefaultsUpdate,
    ) -> list[RoutingDefault]:
        """Persist a validated batch of binding changes."""

    def get_agent(self, id_or_slug: str) -> AgentView | None:
        """Look up one agent with capabilities and health."""

    def close(self) -> None:
        """Release backend resources."""


class LocalRoutingBackend:
    """Routing backed by the workspace SQLite registry."""

    def __init__(self, repository: RoutingRepository) -> None:
        self.repository = repository

    def preview(self, request: RoutingPreviewRequest) -> RoutingPreview:
        bindings = self.repository.list_defaults(request.workspace_id)
        if request.workspace_id != GLOBAL_WORKSPACE_ID:
            bindings.extend(self.repository.list_defaults(GLOBAL_WORKSPACE_ID))
        return build_preview(request, bindings=bindings, lookup_agent=self.repository.get_agent)

    def get_workspace_defaults(self, workspace_id: str) -> list[RoutingDefault]:
        return self.repository.list_defaults(workspace_id)

    def update_workspace_defaults(
        self,
        workspace_id: str,
        update: RoutingDefaultsUpdate,
    ) -> list[RoutingDefault]:
        bindings: dict[str, str] = {}
        for command_name, agent_ref in update.set.items():
            agent = self.repository.get_agent(agent_ref)
            if agent is None:
                raise UnknownAgentError(agent=agent_ref, command_name=command_name)
            bindings[command_name] = agent.id
        return self.repository.apply_defaults_update(
            workspace_id,
            bindings=bindings,
            reset=list(update.reset),
            qa_profile=update.qa_profile,
            docdex_scope=update.docdex_scope,
        )

    def get_agent(self, id_or_slug: str) -> AgentView | None:
        return self.repository.get_agent(id_or_slug)

    def close(self) -> None:
        self.repository.close()


class RemoteRoutingBackend:
    """Routing delegated to the mcoda routing API over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Accept": "application/json"},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def preview(self, request: RoutingPreviewRequest) -> RoutingPreview:
        preview = self._request(
            "POST",
            "/routing/preview",
            json=preview_request_to_payload(request),
            parse=lambda payload: (
                preview_from_payload(payload, request) if isinstance(payload, dict) else None
            ),
        )
        if preview is None:
            return RoutingPreview(
                workspace_id=request.workspace_id,
                command_name=request.command_name,
                required_capabilities=request.required_capabilities,
                candidates=[],
                notes="routing API returned no preview",
            )
        return preview

    def get_workspace_defaults(self, workspace_id: str) -> list[RoutingDefault]:
        defaults = self._request(
            "GET",
            f"/workspaces/{quote(workspace_id, safe='')}/defaults",
            parse=_parse_defaults,
        )
        return defaults or []

    def update_workspace_defaults(
        self,
        workspace_id: str,
        update: RoutingDefaultsUpdate,
    ) -> list[RoutingDefault]:
        defaults = self._request(
            "PUT",
            f"/workspaces/{quote(workspace_id, safe='')}/defaults",
            json=update_to_payload(update),
            parse=_parse_defaults,
        )
        return defaults or []

    def get_agent(self, id_or_slug: str) -> AgentView | None:
        return self._request(
            "GET",
            f"/agents/{quote(id_or_slug, safe='')}",
            parse=lambda payload: (
                agent_from_payload(payload) if isinstance(payload, dict) else None
            ),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RemoteRoutingBackend:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        parse: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Send one request; 404 and 204 yield ``None``.

        Bodies that are not JSON or that ``parse`` rejects raise ``RoutingApiError``.
        """

        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Routing API %s %s failed: %s", method, path, exc)
            raise RoutingApiError(status_code=0, body=str(exc)) from exc
        if response.status_code in {204, 404}:
            return None
        if not response.is_success:
            raise RoutingApiError(status_code=response.status_code, body=response.text)
        try:
            payload = response.json()
            return parse(payload) if parse is not None else payload
        except (TypeError, ValueError) as exc:
            logger.warning("Routing API %s %s returned a malformed body: %s", method, path, exc)
            raise RoutingApiError(
                status_code=response.status_code,
                body=str(exc),
                reason="response is malformed",
            ) from exc


def _parse_defaults(payload: Any) -> list[RoutingDefault]:
    items = payload.get("defaults") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise TypeError("routing defaults response must be an array")
    return [default_from_payload(item) for item in items if isinstance(item, dict)]


def build_routing_backend(
    settings: Settings,
    *,
    repository: RoutingRepository | None = None,
) -> RoutingBackend:
    """Remote backend when an API base URL is configured, else the local registry."""

    if settings.routing.api_base_url:
        logger.info("Using remote routing API at %s", settings.routing.api_base_url)
        return RemoteRoutingBackend(
            settings.routing.api_base_url,
            timeout_seconds=settings.routing.request_timeout_seconds,
        )
    if repository is None:
        repository = RoutingRepository(
            settings.resolved_db_path,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
    return LocalRoutingBackend(repository)

from __future__ import annotations

import json
from pathlib import Path

import allure
import httpx
import pytest

from mcoda.config import RoutingSettings, Settings
from mcoda.errors import AgentUnreachableError, RoutingApiError
from mcoda.routing.backend import LocalRoutingBackend, RemoteRoutingBackend, build_routing_backend
from mcoda.routing.models import RoutingDefaultsUpdate, RoutingSource
from mcoda.routing.service import RoutingService

pytestmark = [
    allure.epic("Routing Resolver"),
    allure.feature("Remote Routing API"),
]

_AGENT = {
    "id": "agent-1",
    "slug": "reviewer",
    "adapter": "codex-cli",
    "defaultModel": "gpt-5",
    "capabilities": ["code_review"],
    "health": {"status": "healthy", "lastCheckedAt": "2026-01-01T00:00:00Z", "latencyMs": 12},
}


def _backend(handler) -> RemoteRoutingBackend:
    return RemoteRoutingBackend("http://routing.test/api", transport=httpx.MockTransport(handler))


def test_preview_posts_request_and_parses_resolved_agent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "workspaceId": "ws-1",
                "commandName": "code-review",
                "resolvedAgent": _AGENT,
                "provenance": "global_default",
                "requiredCapabilities": ["code_review"],
                "candidates": [
                    {
                        "agentId": "agent-1",
                        "agentSlug": "reviewer",
                        "source": "global_default",
                        "capabilities": ["code_review"],
                        "health": {"status": "healthy"},
                    },
                ],
            },
        )

    with _backend(handler) as backend:
        resolved = RoutingService(backend).resolve_agent_for_command("ws-1", "code_review")

    assert resolved.agent.slug == "reviewer"
    assert resolved.source == RoutingSource.GLOBAL_DEFAULT
    assert resolved.agent.default_model == "gpt-5"
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/routing/preview"
    body = json.loads(seen[0].content)
    assert body["commandName"] == "code-review"
    assert body["requiredCapabilities"] == ["code_review"]


def test_get_agent_returns_none_on_404() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/agents/ghost"
        return httpx.Response(404, text="not found")

    with _backend(handler) as backend:
        assert backend.get_agent("ghost") is None


def test_workspace_defaults_roundtrip_through_put() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/api/agents/reviewer":
            return httpx.Response(200, json=_AGENT)
        assert request.method == "PUT"
        assert request.url.path == "/api/workspaces/ws-1/defaults"
        payload = json.loads(request.content)
        assert payload == {"set": {"code-review": "reviewer"}, "qaProfile": "unit"}
        return httpx.Response(
            200,
            json=[
                {
                    "workspaceId": "ws-1",
                    "commandName": "code-review",
                    "agentId": "agent-1",
                    "qaProfile": "unit",
                    "updatedAt": "2026-01-01T00:00:00Z",
                },
            ],
        )

    with _backend(handler) as backend:
        defaults = RoutingService(backend).update_workspace_defaults(
            "ws-1",
            RoutingDefaultsUpdate(set={"code_review": "reviewer"}, qa_profile="unit"),
        )

    assert len(defaults) == 1
    assert defaults[0].agent_id == "agent-1"
    assert defaults[0].qa_profile == "unit"
    assert defaults[0].updated_at is not None


def test_server_error_raises_routing_api_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with _backend(handler) as backend, pytest.raises(RoutingApiError) as error:
        backend.get_workspace_defaults("ws-1")

    assert error.value.status_code == 500
    assert "boom" in str(error.value)


def test_transport_error_raises_routing_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _backend(handler) as backend, pytest.raises(RoutingApiError):
        backend.get_agent("reviewer")


def test_build_routing_backend_picks_remote_when_url_configured(tmp_path: Path) -> None:
    settings = Settings(
        workspace_root=tmp_path,
        routing=RoutingSettings(api_base_url="http://routing.test"),
    )

    backend = build_routing_backend(settings)
    try:
        assert isinstance(backend, RemoteRoutingBackend)
    finally:
        backend.close()


def test_build_routing_backend_defaults_to_local_registry(tmp_path: Path) -> None:
    backend = build_routing_backend(Settings(workspace_root=tmp_path))
    try:
        assert isinstance(backend, LocalRoutingBackend)
        assert (tmp_path / ".mcoda" / "mcoda.db").exists()
    finally:
        backend.close()


@pytest.mark.parametrize(
    ("path", "body"),
    [
        ("/api/workspaces/ws-1/defaults", {"defaults": "not-a-list"}),
        ("/api/workspaces/ws-1/defaults", [{"workspaceId": "ws-1", "commandName": "qa-tasks"}]),
        ("/api/agents/reviewer", {"slug": "reviewer"}),
        (
            "/api/routing/preview",
            {"resolvedAgent": _AGENT, "provenance": "somewhere_else", "candidates": []},
        ),
    ],
)
def test_malformed_responses_raise_routing_api_error(path: str, body: object) -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with _backend(handler) as backend, pytest.raises(RoutingApiError, match="malformed"):
        if path.startswith("/api/workspaces"):
            backend.get_workspace_defaults("ws-1")
        elif path.startswith("/api/agents"):
            backend.get_agent("reviewer")
        else:
            RoutingService(backend).preview("ws-1", "code-review")


def test_non_json_body_raises_routing_api_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with _backend(handler) as backend, pytest.raises(RoutingApiError) as error:
        backend.get_agent("reviewer")

    assert error.value.status_code == 200


def test_unreachable_remote_selection_is_rejected() -> None:
    unreachable = {**_AGENT, "health": {"status": "unreachable"}}

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "resolvedAgent": unreachable,
                "provenance": "workspace_default",
                "requiredCapabilities": ["code_review"],
                "candidates": [],
            },
        )

    with _backend(handler) as backend, pytest.raises(AgentUnreachableError) as error:
        RoutingService(backend).resolve_agent_for_command("ws-1", "code-review")

    assert error.value.agent_slug == "reviewer"

"""Tests for the FastMCP server and its HTTP routes.

Tests cover:
- Tool registration and annotations
- Server lifespan cleanup
- OAuth callback and refresh trigger routes
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import T0, make_response
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.routing import Route
from starlette.testclient import TestClient

from mcp_gateway.agent import PlannedStep
from mcp_gateway.auth.models import Token
from mcp_gateway.gateway.client import ProtocolSessionGateway
from mcp_gateway.scheduler.signing import SIGNATURE_HEADER, sign_body
from mcp_gateway.server import (
    CALLBACK_PATH,
    REFRESH_PATH,
    _make_lifespan,
    create_server,
    handle_oauth_callback,
    handle_refresh_trigger,
)
from mcp_gateway.utils.errors import PublishError

AUTH_TOOLS = ["gateway_get_auth_status", "gateway_authorize", "gateway_logout"]
PROVIDER_TOOLS = ["gateway_list_tools", "gateway_call_tool"]


class NullPlanner:
    def select_providers(self, prompt, statuses):
        return []

    def plan(self, prompt, tools):
        return []


class PinnedPlanner:
    def select_providers(self, prompt, statuses):
        return ["alpha"]

    def plan(self, prompt, tools):
        return [PlannedStep(name=tool.name) for tool in tools]


def _route_app(gateway) -> Starlette:
    async def callback(request: Request):
        return await handle_oauth_callback(gateway, request)

    async def refresh(request: Request):
        return await handle_refresh_trigger(gateway, request)

    return Starlette(
        routes=[
            Route(CALLBACK_PATH, callback, methods=["GET"]),
            Route(REFRESH_PATH, refresh, methods=["POST"]),
        ]
    )


@pytest.fixture
def client(gateway) -> TestClient:
    return TestClient(_route_app(gateway))


def _issue_state(gateway, provider_id="alpha", user_id="alice") -> str:
    url = gateway.engine.get_authorization_url(provider_id, user_id)
    return parse_qs(urlparse(url).query)["state"][0]


class TestToolRegistration:
    """Tests for tool registration verification."""

    def test_five_tools_without_planner(self, gateway) -> None:
        """Test that the auth and provider tools are registered."""
        server = create_server(gateway)
        tool_names = [tool.name for tool in server._tool_manager.list_tools()]

        assert server.name == "mcp-gateway"
        assert sorted(tool_names) == sorted(AUTH_TOOLS + PROVIDER_TOOLS)

    def test_run_tools_with_planner(self, gateway) -> None:
        """Test that gateway_run and per-provider tools are registered with a planner."""
        server = create_server(gateway, planner=NullPlanner())
        tool_names = [tool.name for tool in server._tool_manager.list_tools()]

        assert sorted(tool_names) == sorted(
            AUTH_TOOLS
            + PROVIDER_TOOLS
            + ["gateway_run", "use_alpha", "use_beta", "use_open"]
        )

    @pytest.mark.asyncio
    async def test_provider_tool_pins_run(self, gateway) -> None:
        """Test use_<provider> runs the agent against that provider only."""
        gateway.sessions = MagicMock(spec=ProtocolSessionGateway)
        gateway.sessions.get_provider_tools.return_value = [{"name": "search"}]
        gateway.sessions.execute_provider_tool.return_value = {"content": []}
        server = create_server(gateway, planner=PinnedPlanner())

        result = await server._tool_manager.call_tool("use_open", {"prompt": "find"})

        assert result["status"] == "success"
        assert [step["providerId"] for step in result["data"]] == ["open"]


    def test_read_only_annotations(self, gateway) -> None:
        """Test that status and listing tools are marked read-only."""
        server = create_server(gateway)

        for tool in server._tool_manager.list_tools():
            assert tool.annotations is not None, f"{tool.name} has no annotations"
            expected = tool.name in ("gateway_get_auth_status", "gateway_list_tools")
            assert tool.annotations.readOnlyHint is expected, tool.name

    def test_logout_is_destructive(self, gateway) -> None:
        """Test that logout is marked destructive and idempotent."""
        server = create_server(gateway)
        tools = {tool.name: tool for tool in server._tool_manager.list_tools()}

        assert tools["gateway_logout"].annotations.destructiveHint is True
        assert tools["gateway_logout"].annotations.idempotentHint is True


class TestServerLifespan:
    """Tests for server lifespan and cleanup."""

    @pytest.mark.asyncio
    async def test_lifespan_cleans_up_expired_states(self) -> None:
        """Test that startup drops expired pending authorizations."""
        gateway = MagicMock()
        gateway.cleanup.return_value = 2

        async with _make_lifespan(gateway)(MagicMock()) as context:
            assert context == {}

        gateway.cleanup.assert_called_once()

    @pytest.mark.asyncio
    async def test_lifespan_survives_cleanup_errors(self) -> None:
        """Test that a cleanup failure does not prevent startup."""
        gateway = MagicMock()
        gateway.cleanup.side_effect = RuntimeError("boom")

        async with _make_lifespan(gateway)(MagicMock()) as context:
            assert context == {}


class TestOAuthCallbackRoute:
    """Tests for GET /oauth/callback."""

    def test_successful_callback(self, gateway, client, http, store) -> None:
        """Test a valid callback stores the token and shows confirmation."""
        state = _issue_state(gateway)
        http.post.return_value = make_response(
            200, {"access_token": "at", "refresh_token": "rt", "expires_in": 3600}
        )

        response = client.get(CALLBACK_PATH, params={"code": "c", "state": state})

        assert response.status_code == 200
        assert "successfully authorized alpha" in response.text
        assert store.get_token("alice", "alpha").access_token == "at"

    def test_missing_parameters(self, client) -> None:
        """Test a callback without code or state is rejected."""
        response = client.get(CALLBACK_PATH, params={"code": "c"})

        assert response.status_code == 400
        assert "Missing parameters" in response.text

    def test_provider_error_is_escaped(self, client) -> None:
        """Test provider errors are shown HTML-escaped."""
        response = client.get(
            CALLBACK_PATH,
            params={"error": "access_denied", "error_description": "<b>nope</b>"},
        )

        assert response.status_code == 400
        assert "&lt;b&gt;nope&lt;/b&gt;" in response.text

    def test_replayed_state(self, gateway, client, http) -> None:
        """Test a reused PKCE state fails the second time."""
        state = _issue_state(gateway)
        http.post.return_value = make_response(200, {"access_token": "at"})

        assert client.get(CALLBACK_PATH, params={"code": "c", "state": state}).status_code == 200
        replay = client.get(CALLBACK_PATH, params={"code": "c", "state": state})

        assert replay.status_code == 400
        assert "verifier" in replay.text

    def test_upstream_failure(self, gateway, client, http) -> None:
        """Test a rejected exchange is shown as an error page."""
        state = _issue_state(gateway)
        http.post.return_value = make_response(400, {"error": "invalid_grant"})

        response = client.get(CALLBACK_PATH, params={"code": "c", "state": state})

        assert response.status_code == 400
        assert "invalid_grant" in response.text

    def test_schedule_failure_still_confirms(self, gateway, client, http, publisher, store):
        """Test a scheduling failure keeps the token and warns the user."""
        state = _issue_state(gateway)
        http.post.return_value = make_response(200, {"access_token": "at", "expires_in": 60})
        publisher.schedule_refresh.side_effect = PublishError("down")

        response = client.get(CALLBACK_PATH, params={"code": "c", "state": state})

        assert response.status_code == 200
        assert "could not be scheduled" in response.text
        assert store.get_token("alice", "alpha") is not None


class TestRefreshTriggerRoute:
    """Tests for POST /auth/refresh/{provider_id}."""

    @pytest.fixture
    def seeded(self, store) -> Token:
        token = Token(
            access_token="at-old", refresh_token="rt", expires_at=T0 + 1, issued_at=T0
        )
        store.set_token("alice", "alpha", "default", token)
        return token

    def test_signed_request_refreshes(self, client, http, store, seeded) -> None:
        """Test a signed trigger refreshes and reports the new expiry."""
        http.post.return_value = make_response(
            200, {"access_token": "at-new", "expires_in": 3600}
        )
        body = json.dumps({"userId": "alice"}).encode()

        response = client.post(
            "/auth/refresh/alpha",
            content=body,
            headers={SIGNATURE_HEADER: sign_body("test-signing-key", body)},
        )

        assert response.status_code == 200
        assert response.json()["expiresAt"] == T0 + 3_600_000
        assert store.get_token("alice", "alpha").access_token == "at-new"

    def test_wrong_signature(self, client, http, store, seeded) -> None:
        """Test a bad signature returns 401 and changes nothing."""
        body = json.dumps({"userId": "alice"}).encode()

        response = client.post(
            "/auth/refresh/alpha",
            content=body,
            headers={SIGNATURE_HEADER: sign_body("wrong-key", body)},
        )

        assert response.status_code == 401
        assert store.get_token("alice", "alpha") == seeded
        http.post.assert_not_called()

    def test_trigger_disabled_without_signing_key(self, gateway, http) -> None:
        """Test the route answers 404 when no signing key is configured."""
        gateway.trigger = None
        client = TestClient(_route_app(gateway))

        response = client.post("/auth/refresh/alpha", content=b"{}")

        assert response.status_code == 404

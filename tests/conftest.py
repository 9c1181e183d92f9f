"""Pytest configuration and fixtures for MCP gateway tests."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from mcp_gateway.app import Gateway
from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.auth.pending import PendingAuthorizations
from mcp_gateway.auth.store import InMemoryTokenStore
from mcp_gateway.auth.tokens import TokenManager
from mcp_gateway.config import GatewaySettings
from mcp_gateway.scheduler.publisher import RefreshEventPublisher

BASE_URL = "http://localhost:1337"
T0 = 1_700_000_000_000


def make_response(
    status_code: int = 200,
    json_body: Any = None,
    text: str | None = None,
    headers: dict[str, str] | None = None,
) -> requests.Response:
    """Build a real requests.Response with the given status, body and headers."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = "OK" if status_code < 400 else "Error"
    response.encoding = "utf-8"
    if json_body is not None:
        response._content = json.dumps(json_body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = (text or "").encode("utf-8")
    for key, value in (headers or {}).items():
        response.headers[key] = value
    return response


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    """Fixture providing a clock frozen at T0."""
    return FakeClock()


@pytest.fixture
def providers() -> dict[str, ProviderConfig]:
    """Fixture providing one PKCE, one confidential and one open provider."""
    return {
        "alpha": ProviderConfig.model_validate(
            {
                "id": "alpha",
                "mcpUrl": "https://alpha.example.com/mcp",
                "oauth": {
                    "authUrl": "https://alpha.example.com/authorize",
                    "tokenUrl": "https://alpha.example.com/token",
                    "clientId": "alpha-client",
                    "usePKCE": True,
                    "scopes": ["read", "write"],
                },
                "refresh": {"leadMs": 600_000},
            }
        ),
        "beta": ProviderConfig.model_validate(
            {
                "id": "beta",
                "mcpUrl": "https://beta.example.com/mcp",
                "oauth": {
                    "authUrl": "https://beta.example.com/oauth/authorize",
                    "tokenUrl": "https://beta.example.com/oauth/token",
                    "clientId": "beta-client",
                    "clientSecret": "beta-secret",
                    "usePKCE": False,
                },
            }
        ),
        "open": ProviderConfig.model_validate(
            {"id": "open", "mcpUrl": "https://open.example.com/mcp"}
        ),
    }


@pytest.fixture
def http(mocker) -> MagicMock:
    """Fixture providing a mocked requests.Session."""
    return mocker.MagicMock(spec=requests.Session)


@pytest.fixture
def store() -> InMemoryTokenStore:
    """Fixture providing an empty in-memory token store."""
    return InMemoryTokenStore()


@pytest.fixture
def publisher(mocker) -> MagicMock:
    """Fixture providing a mocked refresh publisher."""
    return mocker.MagicMock(spec=RefreshEventPublisher)


@pytest.fixture
def engine(providers, http, clock) -> OAuthFlowEngine:
    """Fixture providing an OAuth flow engine over the test providers."""
    return OAuthFlowEngine(
        providers,
        BASE_URL,
        http=http,
        pending=PendingAuthorizations(clock=clock),
    )


@pytest.fixture
def manager(store, engine, publisher, clock) -> TokenManager:
    """Fixture providing a token manager wired to the mocks above."""
    return TokenManager(store, engine, publisher, clock=clock)


@pytest.fixture
def gateway(providers, http, store, publisher, clock) -> Gateway:
    """Fixture providing a fully wired gateway with alice as the default user."""
    settings = GatewaySettings(
        base_url=BASE_URL,
        default_user_id="alice",
        refresh_signing_key="test-signing-key",
        audit_log=False,
    )
    return Gateway(
        settings,
        providers,
        store=store,
        http=http,
        publisher=publisher,
        clock=clock,
    )

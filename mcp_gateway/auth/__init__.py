"""Authentication module for the MCP gateway.

This module provides the OAuth 2.0 side of the gateway, including:

- Provider and token data models
- The token store contract and an in-memory store
- Authorization URLs with PKCE and dynamic client registration
- Token exchange, refresh, scheduling and revocation

Usage:
    >>> from mcp_gateway.auth import OAuthFlowEngine, TokenManager
    >>>
    >>> engine = OAuthFlowEngine(providers, "https://gw.example.com")
    >>> url = engine.get_authorization_url("linear", "alice")
    >>>
    >>> # After the provider redirects back
    >>> manager = TokenManager(store, engine, publisher)
    >>> result = manager.handle_callback(code, state)
"""

from mcp_gateway.auth.models import (
    DEFAULT_ACCOUNT_ID,
    DEFAULT_REFRESH_LEAD_MS,
    CallbackResult,
    OAuthSpec,
    ProviderConfig,
    RefreshConfig,
    Token,
    TokenResponse,
)
from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.auth.pending import PendingAuthorization, PendingAuthorizations
from mcp_gateway.auth.pkce import build_state, code_challenge, generate_code_verifier, parse_state
from mcp_gateway.auth.store import InMemoryTokenStore, TokenStore
from mcp_gateway.auth.tokens import RefreshOutcome, TokenManager

__all__ = [
    # Models
    "DEFAULT_ACCOUNT_ID",
    "DEFAULT_REFRESH_LEAD_MS",
    "CallbackResult",
    "OAuthSpec",
    "ProviderConfig",
    "RefreshConfig",
    "Token",
    "TokenResponse",
    # Store
    "InMemoryTokenStore",
    "TokenStore",
    # Authorization flow
    "OAuthFlowEngine",
    "PendingAuthorization",
    "PendingAuthorizations",
    "build_state",
    "code_challenge",
    "generate_code_verifier",
    "parse_state",
    # Token lifecycle
    "RefreshOutcome",
    "TokenManager",
]

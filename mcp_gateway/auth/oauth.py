"""OAuth 2.0 authorization flow for upstream providers.

This module builds authorization URLs for providers that sit behind an OAuth
handshake. It supports:

1. Static clients: the provider configuration carries a client ID.

2. Dynamic client registration (RFC 7591): when no client ID is configured,
   the engine registers a public client against the provider's registration
   endpoint once and caches the issued client ID for its lifetime.

3. PKCE (S256): when enabled, a verifier is generated per authorization
   request and kept in the pending table until the callback consumes it.

Security considerations:
- The state parameter is ``providerId:userId:nonce`` with a 32-byte nonce
- Every issued state is single-use and expires after a TTL
- Client secrets are never sent on PKCE flows
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from urllib.parse import urlencode

import requests

from mcp_gateway.auth.models import OAuthSpec, ProviderConfig
from mcp_gateway.auth.pending import PendingAuthorization, PendingAuthorizations
from mcp_gateway.auth.pkce import (
    CODE_CHALLENGE_METHOD,
    build_state,
    code_challenge,
    generate_code_verifier,
)
from mcp_gateway.utils.cancel import checkpoint
from mcp_gateway.utils.errors import ConfigError, RegistrationError, UnknownProviderError

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "mcp-gateway"
DEFAULT_TIMEOUT_SECONDS = 30.0


class OAuthFlowEngine:
    """Builds authorization URLs and resolves client IDs per provider.

    Attributes:
        _providers: Provider registry keyed by provider ID.
        _base_url: Public base URL of the gateway, used for redirect URIs.
        _registered_clients: Provider ID to dynamically registered client ID.
        _pending: Issued states awaiting a callback.

    Example:
        >>> engine = OAuthFlowEngine(providers, "https://gw.example.com")
        >>> url = engine.get_authorization_url("linear", "alice")
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        base_url: str,
        http: requests.Session | None = None,
        pending: PendingAuthorizations | None = None,
        client_name: str = DEFAULT_CLIENT_NAME,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the flow engine.

        Args:
            providers: Provider registry keyed by provider ID.
            base_url: Gateway base URL; the redirect URI is
                ``{base_url}/oauth/callback``.
            http: HTTP session for outbound requests.
            pending: Table of issued states. A fresh one is created if omitted.
            client_name: Name sent during dynamic client registration.
            timeout: Default timeout in seconds for outbound requests.
        """
        self._providers = providers
        self._base_url = base_url.rstrip("/")
        self._http = http or requests.Session()
        self._pending = pending or PendingAuthorizations()
        self._client_name = client_name
        self._timeout = timeout
        self._registered_clients: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def redirect_uri(self) -> str:
        """OAuth redirect URI registered with providers."""
        return f"{self._base_url}/oauth/callback"

    @property
    def http(self) -> requests.Session:
        """HTTP session shared with the token lifecycle manager."""
        return self._http

    @property
    def timeout(self) -> float:
        """Default timeout in seconds for outbound requests."""
        return self._timeout

    @property
    def pending(self) -> PendingAuthorizations:
        """Issued states awaiting a callback."""
        return self._pending

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        """Look up a provider by ID."""
        return self._providers.get(provider_id)

    def get_oauth_spec(self, provider_id: str) -> OAuthSpec:
        """Return the OAuth settings for a provider.

        Raises:
            UnknownProviderError: If the provider is unknown or has no
                OAuth configuration.
        """
        provider = self._providers.get(provider_id)
        if provider is None or provider.oauth is None:
            raise UnknownProviderError(
                f"Provider {provider_id} not configured for OAuth",
                details={"provider_id": provider_id},
            )
        return provider.oauth

    def resolve_client_id(self, provider_id: str, spec: OAuthSpec) -> str | None:
        """Resolve a client ID without registering.

        Explicit configuration wins over a cached dynamic registration.
        """
        if spec.client_id:
            return spec.client_id
        with self._lock:
            return self._registered_clients.get(provider_id)

    def register_client(
        self, provider_id: str, spec: OAuthSpec, timeout: float | None = None
    ) -> str:
        """Register a public OAuth client with the provider.

        Args:
            provider_id: Provider identifier.
            spec: Provider OAuth settings; must carry ``registration_url``.
            timeout: Request timeout override in seconds.

        Returns:
            The issued client ID, which is also cached.

        Raises:
            ConfigError: If the provider has no registration endpoint.
            RegistrationError: If the provider rejects the registration or
                the request fails.
        """
        if not spec.registration_url:
            raise ConfigError(
                "Provider does not support dynamic client registration",
                details={"provider_id": provider_id},
            )

        payload = {
            "client_name": self._client_name,
            "redirect_uris": [self.redirect_uri],
            "grant_types": ["authorization_code", "refresh_token"],
            "token_endpoint_auth_method": "none",
        }

        checkpoint()
        try:
            response = self._http.post(
                spec.registration_url,
                json=payload,
                timeout=timeout or self._timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error registering client for %s: %s", provider_id, e)
            raise RegistrationError(
                f"Client registration failed: {e}",
                details={"provider_id": provider_id, "error_type": type(e).__name__},
            ) from e

        if not response.ok:
            logger.error(
                "Client registration for %s rejected with status %d",
                provider_id,
                response.status_code,
            )
            raise RegistrationError(
                "Client registration failed",
                status_code=response.status_code,
                details={"provider_id": provider_id},
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        client_id = data.get("client_id") if isinstance(data, dict) else None
        if not isinstance(client_id, str) or not client_id:
            raise RegistrationError(
                "Client registration response did not include a client_id",
                status_code=response.status_code,
                details={"provider_id": provider_id},
            )

        with self._lock:
            self._registered_clients[provider_id] = client_id
        logger.info("Registered OAuth client for provider %s", provider_id)
        return client_id

    def get_authorization_url(
        self, provider_id: str, user_id: str, timeout: float | None = None
    ) -> str:
        """Create the authorization URL for a user and provider.

        Resolves a client ID (configured, cached registration, or a new
        registration), issues a single-use state, and adds the PKCE
        challenge when the provider uses PKCE.

        Args:
            provider_id: Provider identifier.
            user_id: User the resulting token will belong to.
            timeout: Request timeout override for dynamic registration.

        Returns:
            The fully formed authorization URL.

        Raises:
            UnknownProviderError: If the provider has no OAuth configuration.
            RegistrationError: If dynamic registration is rejected.
            ConfigError: If no client ID can be resolved.
        """
        spec = self.get_oauth_spec(provider_id)

        client_id = self.resolve_client_id(provider_id, spec)
        if not client_id and spec.registration_url:
            client_id = self.register_client(provider_id, spec, timeout=timeout)
        if not client_id:
            raise ConfigError(
                "No client ID available and no registration endpoint configured",
                details={"provider_id": provider_id},
            )

        state = build_state(provider_id, user_id)
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        if spec.scopes:
            params["scope"] = " ".join(spec.scopes)

        verifier: str | None = None
        if spec.use_pkce:
            verifier = generate_code_verifier()
            params["code_challenge"] = code_challenge(verifier)
            params["code_challenge_method"] = CODE_CHALLENGE_METHOD

        self._pending.store(state, verifier)

        logger.debug(
            "Created auth URL for %s (user %s) with state: %s",
            provider_id,
            user_id,
            state[:16] + "...",
        )
        return f"{spec.auth_url}?{urlencode(params)}"

    def consume_pending(self, state: str) -> PendingAuthorization | None:
        """Consume the pending entry for a callback state, if any."""
        return self._pending.consume(state)


__all__ = [
    "DEFAULT_CLIENT_NAME",
    "DEFAULT_TIMEOUT_SECONDS",
    "OAuthFlowEngine",
]

"""Protocol session gateway for upstream provider endpoints.

Each (user, provider) pair gets one upstream session, created lazily by an
``initialize`` handshake and cached for the lifetime of the gateway. Every
later call attaches the cached ``Mcp-Session-Id`` and, for OAuth providers,
a bearer token fetched from the token lifecycle manager on demand (which
refreshes expired tokens before they are used).

Stale sessions: when a call made with a cached session is answered with
HTTP 404, the session is dropped, a fresh ``initialize`` is performed, and
the call is retried exactly once.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections.abc import Mapping
from typing import Any

import requests

from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.auth.tokens import TokenManager
from mcp_gateway.gateway.codec import (
    RpcFailure,
    RpcResponse,
    build_notification,
    build_request,
    decode_body,
    parse_rpc,
    parse_tools,
)
from mcp_gateway.utils.cancel import checkpoint
from mcp_gateway.utils.errors import (
    ProtocolError,
    ProviderNotFoundError,
    SessionInitError,
    ToolCallError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"
SESSION_HEADER = "Mcp-Session-Id"
CLIENT_CAPABILITIES: dict[str, Any] = {
    "roots": {"listChanged": False},
    "sampling": {},
}


def _http_error(
    method: str, provider: ProviderConfig, response: requests.Response
) -> ProtocolError:
    return ProtocolError(
        f"{method} request to {provider.id} returned HTTP {response.status_code}",
        details={"provider_id": provider.id, "status_code": response.status_code},
    )


class ProtocolSessionGateway:
    """Discovers and invokes provider tools over cached upstream sessions.

    Attributes:
        _providers: Provider registry keyed by provider ID.
        _tokens: Token lifecycle manager supplying bearer tokens.
        _sessions: (user ID, provider ID) to upstream session ID.

    Example:
        >>> gateway = ProtocolSessionGateway(providers, token_manager)
        >>> tools = gateway.get_provider_tools(providers["linear"], "alice")
        >>> gateway.execute_provider_tool("linear", "list_issues", {}, "alice")
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        tokens: TokenManager,
        http: requests.Session | None = None,
        timeout: float = 30.0,
        client_name: str = "mcp-gateway",
        client_version: str = "0.1.0",
    ) -> None:
        """Initialize the session gateway.

        Args:
            providers: Provider registry keyed by provider ID.
            tokens: Token lifecycle manager for OAuth providers.
            http: HTTP session for outbound requests.
            timeout: Default request timeout in seconds.
            client_name: ``clientInfo.name`` sent during initialize.
            client_version: ``clientInfo.version`` sent during initialize.
        """
        self._providers = providers
        self._tokens = tokens
        self._http = http or requests.Session()
        self._timeout = timeout
        self._client_info = {"name": client_name, "version": client_version}
        self._sessions: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()
        self._request_ids = itertools.count(1)

    @property
    def providers(self) -> Mapping[str, ProviderConfig]:
        return self._providers

    # =========================================================================
    # Sessions
    # =========================================================================

    def get_cached_session(self, user_id: str, provider_id: str) -> str | None:
        """Return the cached session ID without creating one."""
        with self._lock:
            return self._sessions.get((user_id, provider_id))

    def ensure_session(
        self, provider: ProviderConfig, user_id: str, timeout: float | None = None
    ) -> str:
        """Return the cached session for a user and provider, creating it once.

        Concurrent cache misses may both initialize; the later write wins and
        both session IDs remain valid upstream.

        Raises:
            SessionInitError: If the upstream rejects the handshake.
        """
        session_id = self.get_cached_session(user_id, provider.id)
        if session_id is not None:
            return session_id

        session_id = self._initialize(provider, user_id, timeout)
        with self._lock:
            self._sessions[(user_id, provider.id)] = session_id
        logger.info("Opened session with %s for user %s", provider.id, user_id)
        return session_id

    def _drop_session(self, user_id: str, provider_id: str) -> None:
        with self._lock:
            self._sessions.pop((user_id, provider_id), None)

    def _initialize(
        self, provider: ProviderConfig, user_id: str, timeout: float | None
    ) -> str:
        access_token = self._access_token(provider, user_id, timeout)
        payload = build_request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": CLIENT_CAPABILITIES,
                "clientInfo": self._client_info,
            },
            next(self._request_ids),
        )

        try:
            response = self._post(provider, payload, access_token, None, timeout)
        except requests.RequestException as e:
            raise SessionInitError(
                f"Failed to initialize session: {e}",
                details={"provider_id": provider.id, "error_type": type(e).__name__},
            ) from e

        try:
            rpc = parse_rpc(decode_body(response.headers.get("Content-Type"), response.text))
        except ProtocolError as e:
            raise SessionInitError(
                f"Failed to initialize session: {e.message}",
                details={"provider_id": provider.id, "status_code": response.status_code},
            ) from e

        if isinstance(rpc, RpcFailure):
            raise SessionInitError(
                f"Failed to initialize session: {rpc.error.message}",
                details={"provider_id": provider.id, "rpc_code": rpc.error.code},
            )
        if not response.ok:
            raise SessionInitError(
                f"Failed to initialize session: HTTP {response.status_code}",
                details={"provider_id": provider.id, "status_code": response.status_code},
            )

        session_id = response.headers.get(SESSION_HEADER)
        if not session_id:
            # Stateless upstreams issue no session header
            session_id = str(uuid.uuid4())
            logger.debug("No session header from %s; using local placeholder", provider.id)

        self._send_initialized(provider, access_token, session_id, timeout)
        return session_id

    def _send_initialized(
        self,
        provider: ProviderConfig,
        access_token: str | None,
        session_id: str,
        timeout: float | None,
    ) -> None:
        try:
            response = self._post(
                provider,
                build_notification("notifications/initialized"),
                access_token,
                session_id,
                timeout,
            )
        except requests.RequestException as e:
            logger.warning("Could not send initialized notification to %s: %s", provider.id, e)
            return
        if not response.ok:
            logger.warning(
                "Initialized notification to %s returned status %d",
                provider.id,
                response.status_code,
            )

    # =========================================================================
    # Tool Operations
    # =========================================================================

    def get_provider_tools(
        self, provider: ProviderConfig, user_id: str, timeout: float | None = None
    ) -> list[dict[str, Any]]:
        """List the tools a provider exposes to a user.

        Returns:
            The provider's ``tools`` array, or ``[]`` if absent.

        Raises:
            SessionInitError: If the session handshake fails.
            ProtocolError: If the upstream answers with an error.
        """
        rpc = self._call(provider, user_id, "tools/list", {}, timeout)
        if isinstance(rpc, RpcFailure):
            raise ProtocolError(
                f"Failed to list tools: {rpc.error.message}",
                details={"provider_id": provider.id, "rpc_code": rpc.error.code},
            )
        return parse_tools(rpc.result)

    def execute_provider_tool(
        self,
        provider_id: str,
        tool_name: str,
        args: dict[str, Any],
        user_id: str,
        registry: Mapping[str, ProviderConfig] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Invoke a tool on a provider.

        Args:
            provider_id: Provider hosting the tool.
            tool_name: Tool name as advertised by the provider.
            args: Tool arguments.
            user_id: User on whose behalf the call is made.
            registry: Provider registry to resolve against; defaults to the
                gateway's own.
            timeout: Request timeout override in seconds.

        Returns:
            The upstream ``result`` payload.

        Raises:
            ProviderNotFoundError: If the provider is not in the registry.
            SessionInitError: If the session handshake fails.
            ToolCallError: If the upstream returns a protocol-level error.
        """
        providers = registry if registry is not None else self._providers
        provider = providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(
                f"Provider {provider_id} not found",
                details={"provider_id": provider_id},
            )

        rpc = self._call(
            provider,
            user_id,
            "tools/call",
            {"name": tool_name, "arguments": args},
            timeout,
        )
        if isinstance(rpc, RpcFailure):
            logger.warning(
                "Tool %s on %s failed: %s", tool_name, provider_id, rpc.error.message
            )
            raise ToolCallError(
                rpc.error.message,
                rpc_code=rpc.error.code,
                rpc_message=rpc.error.message,
                details={"provider_id": provider_id, "tool": tool_name},
            )
        return rpc.result

    # =========================================================================
    # Transport
    # =========================================================================

    def _call(
        self,
        provider: ProviderConfig,
        user_id: str,
        method: str,
        params: dict[str, Any],
        timeout: float | None,
    ) -> RpcResponse:
        payload = build_request(method, params, next(self._request_ids))
        # Only a session carried over from an earlier call can have gone stale
        can_retry = self.get_cached_session(user_id, provider.id) is not None

        for attempt in range(2):
            session_id = self.ensure_session(provider, user_id, timeout)
            access_token = self._access_token(provider, user_id, timeout)
            try:
                response = self._post(provider, payload, access_token, session_id, timeout)
            except requests.RequestException as e:
                raise ProtocolError(
                    f"{method} request to {provider.id} failed: {e}",
                    details={"provider_id": provider.id, "error_type": type(e).__name__},
                ) from e

            if response.status_code == 404 and attempt == 0 and can_retry:
                logger.info(
                    "Session for %s on %s is stale; reinitializing", user_id, provider.id
                )
                self._drop_session(user_id, provider.id)
                continue
            break

        try:
            rpc = parse_rpc(decode_body(response.headers.get("Content-Type"), response.text))
        except ProtocolError:
            if response.ok:
                raise
            # Error pages from proxies are reported by status, not by body
            raise _http_error(method, provider, response) from None
        if not response.ok and not isinstance(rpc, RpcFailure):
            raise _http_error(method, provider, response)
        return rpc

    def _access_token(
        self, provider: ProviderConfig, user_id: str, timeout: float | None
    ) -> str | None:
        if provider.oauth is None:
            return None
        token = self._tokens.get_token(user_id, provider.id, timeout=timeout)
        return token.access_token if token is not None else None

    def _post(
        self,
        provider: ProviderConfig,
        payload: dict[str, Any],
        access_token: str | None,
        session_id: str | None,
        timeout: float | None,
    ) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if session_id:
            headers[SESSION_HEADER] = session_id
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        checkpoint()
        logger.debug("POST %s %s", provider.id, payload.get("method"))
        return self._http.post(
            provider.mcp_url,
            json=payload,
            headers=headers,
            timeout=timeout or self._timeout,
        )


__all__ = [
    "CLIENT_CAPABILITIES",
    "PROTOCOL_VERSION",
    "SESSION_HEADER",
    "ProtocolSessionGateway",
]

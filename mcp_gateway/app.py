"""Composition root wiring one instance of every gateway component.

All stateful tables (pending authorizations, registered clients, upstream
sessions) belong to the components built here and live exactly as long as
the ``Gateway`` that owns them.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import requests

from mcp_gateway.agent import GatewayAgent, Planner
from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.auth.pending import PendingAuthorizations
from mcp_gateway.auth.store import InMemoryTokenStore, TokenStore
from mcp_gateway.auth.tokens import TokenManager
from mcp_gateway.capabilities import CapabilityGate
from mcp_gateway.config import GatewaySettings, load_providers
from mcp_gateway.gateway.client import ProtocolSessionGateway
from mcp_gateway.middleware.audit_logger import AuditLogger
from mcp_gateway.scheduler.publisher import (
    NoopPublisher,
    RefreshEventPublisher,
    WebhookPublisher,
)
from mcp_gateway.scheduler.trigger import RefreshTrigger
from mcp_gateway.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class Gateway:
    """Owns the OAuth engine, token manager, session gateway and gate.

    Example:
        >>> gateway = Gateway(GatewaySettings(), providers)
        >>> gateway.engine.get_authorization_url("linear", "alice")
    """

    def __init__(
        self,
        settings: GatewaySettings,
        providers: Mapping[str, ProviderConfig],
        store: TokenStore | None = None,
        http: requests.Session | None = None,
        publisher: RefreshEventPublisher | None = None,
        clock: Clock = now_ms,
    ) -> None:
        """Build the component graph.

        Args:
            settings: Gateway settings.
            providers: Provider registry keyed by ID.
            store: Token store; an in-memory store when omitted.
            http: Shared HTTP session for all outbound calls.
            publisher: Refresh publisher; derived from settings when omitted.
            clock: Source of epoch-millisecond time.
        """
        self.settings = settings
        self.providers = dict(providers)
        self.store = store or InMemoryTokenStore()
        self.http = http or requests.Session()
        self.audit = AuditLogger(enabled=settings.audit_log, clock=clock)

        self.engine = OAuthFlowEngine(
            self.providers,
            settings.base_url,
            http=self.http,
            pending=PendingAuthorizations(ttl_ms=settings.pending_auth_ttl_ms, clock=clock),
            client_name=settings.client_name,
            timeout=settings.http_timeout_seconds,
        )
        self.publisher = publisher or self._build_publisher(settings, clock)
        self.tokens = TokenManager(
            self.store,
            self.engine,
            self.publisher,
            audit=self.audit,
            clock=clock,
        )
        self.sessions = ProtocolSessionGateway(
            self.providers,
            self.tokens,
            http=self.http,
            timeout=settings.http_timeout_seconds,
            client_name=settings.client_name,
        )
        self.gate = CapabilityGate(self.providers, self.tokens, self.engine)
        self.trigger = (
            RefreshTrigger(self.tokens, settings.refresh_signing_key)
            if settings.refresh_signing_key
            else None
        )

        logger.info(
            "Gateway ready with %d provider(s); scheduler=%s",
            len(self.providers),
            type(self.publisher).__name__,
        )

    def _build_publisher(
        self, settings: GatewaySettings, clock: Clock
    ) -> RefreshEventPublisher:
        if settings.scheduler_enabled:
            assert settings.refresh_webhook_url is not None
            assert settings.refresh_signing_key is not None
            return WebhookPublisher(
                settings.refresh_webhook_url,
                settings.refresh_signing_key,
                http=self.http,
                timeout=settings.http_timeout_seconds,
                clock=clock,
            )
        return NoopPublisher()

    @classmethod
    def from_env(cls, store: TokenStore | None = None) -> Gateway:
        """Build a gateway from environment settings and the providers file.

        Raises:
            ConfigError: If settings or the providers file are invalid.
        """
        settings = GatewaySettings.from_env()
        if settings.providers_file:
            providers = load_providers(settings.providers_file)
        else:
            logger.warning("GATEWAY_PROVIDERS_FILE not set; no providers configured")
            providers = {}
        return cls(settings, providers, store=store)

    def agent(self, planner: Planner) -> GatewayAgent:
        """Create an agent that plans with ``planner`` over this gateway."""
        return GatewayAgent(self.providers, self.gate, self.sessions, planner)

    def cleanup(self) -> int:
        """Drop expired pending authorizations."""
        return self.engine.pending.cleanup_expired()


__all__ = ["Gateway"]

"""Capability gate: per-provider authentication status.

The gate answers two questions for a user:

- Which providers are currently usable (``provider_status``)?
- For the providers a caller needs, which still require the user to
  authorize, and at which URLs (``check``)?

It is a pure function of current token state. Deciding whether to hide or
refuse tools for unauthenticated providers, and surfacing URLs to a human,
are the caller's responsibility.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from mcp_gateway.auth.models import ProviderConfig
from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.auth.tokens import TokenManager
from mcp_gateway.utils.errors import GatewayError, OperationCancelledError

logger = logging.getLogger(__name__)


class ProviderStatus(BaseModel):
    """Authentication status of one provider for one user."""

    id: str
    authenticated: bool


class NeedsAuthorization(BaseModel):
    """Signal that one or more providers must be authorized first."""

    model_config = ConfigDict(populate_by_name=True)

    needs_auth: bool = Field(default=True, alias="needsAuth")
    providers: dict[str, str] = Field(
        default_factory=dict,
        description="Provider ID to authorization URL",
    )


class CapabilityGate:
    """Reports provider authentication status and authorization URLs.

    Example:
        >>> gate = CapabilityGate(providers, token_manager, engine)
        >>> signal = gate.check("alice", ["linear"])
        >>> signal.providers if signal else {}
        {'linear': 'https://linear.app/oauth/authorize?...'}
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        tokens: TokenManager,
        engine: OAuthFlowEngine,
    ) -> None:
        self._providers = providers
        self._tokens = tokens
        self._engine = engine

    def is_authenticated(
        self, provider: ProviderConfig, user_id: str, timeout: float | None = None
    ) -> bool:
        """Check one provider; may trigger a refresh of an expired token.

        Any gateway error from that refresh counts as unauthenticated.
        """
        if provider.oauth is None:
            return True
        try:
            return self._tokens.get_token(user_id, provider.id, timeout=timeout) is not None
        except OperationCancelledError:
            raise
        except GatewayError as e:
            logger.warning(
                "Treating %s as unauthenticated for %s: %s", provider.id, user_id, e.code
            )
            return False

    def provider_status(
        self, user_id: str, timeout: float | None = None
    ) -> list[ProviderStatus]:
        """Report ``{id, authenticated}`` for every configured provider."""
        return [
            ProviderStatus(
                id=provider.id,
                authenticated=self.is_authenticated(provider, user_id, timeout),
            )
            for provider in self._providers.values()
        ]

    def check(
        self,
        user_id: str,
        required: Iterable[str] | None = None,
        timeout: float | None = None,
    ) -> NeedsAuthorization | None:
        """Produce authorization URLs for unauthenticated required providers.

        Args:
            user_id: User to check.
            required: Provider IDs the caller needs; all configured providers
                when None. Unknown IDs are ignored.
            timeout: Request timeout override for refreshes and registration.

        Returns:
            A ``NeedsAuthorization`` signal mapping exactly the
            unauthenticated providers to their URLs, or None if all
            requested providers are usable.

        Raises:
            RegistrationError: If dynamic registration fails while building
                a URL.
            ConfigError: If no client ID can be resolved for a provider.
        """
        provider_ids = list(required) if required is not None else list(self._providers)

        urls: dict[str, str] = {}
        for provider_id in provider_ids:
            provider = self._providers.get(provider_id)
            if provider is None:
                logger.debug("Ignoring unknown provider %s in capability check", provider_id)
                continue
            if self.is_authenticated(provider, user_id, timeout):
                continue
            urls[provider_id] = self._engine.get_authorization_url(
                provider_id, user_id, timeout=timeout
            )

        if not urls:
            return None
        logger.info("User %s must authorize: %s", user_id, ", ".join(sorted(urls)))
        return NeedsAuthorization(providers=urls)


__all__ = [
    "CapabilityGate",
    "NeedsAuthorization",
    "ProviderStatus",
]

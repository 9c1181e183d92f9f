"""Pydantic models for providers and tokens.

Field names are snake_case in Python. Models that travel over the wire or
are read from provider configuration files also accept (and can dump) the
camelCase names used by the JSON formats, e.g. ``authUrl`` or ``mcpUrl``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Refresh is scheduled this long before a token expires unless a provider
# overrides it.
DEFAULT_REFRESH_LEAD_MS = 600_000

DEFAULT_ACCOUNT_ID = "default"


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OAuthSpec(CamelModel):
    """OAuth 2.0 endpoints and client settings for one provider.

    Attributes:
        auth_url: Authorization endpoint the user is sent to.
        token_url: Token endpoint for code and refresh exchanges.
        client_id: Static client ID. When absent, dynamic client
            registration against ``registration_url`` is used.
        client_secret: Client secret, sent only for non-PKCE flows.
        use_pkce: Whether the flow uses a PKCE challenge/verifier pair.
        scopes: Scopes requested in the authorization URL.
        registration_url: Dynamic client registration endpoint.
    """

    auth_url: str = Field(..., description="Authorization endpoint URL")
    token_url: str = Field(..., description="Token endpoint URL")
    client_id: str | None = Field(default=None, description="Static OAuth client ID")
    client_secret: str | None = Field(default=None, description="OAuth client secret")
    use_pkce: bool = Field(
        default=False,
        alias="usePKCE",
        description="Use PKCE (S256) for the authorization-code flow",
    )
    scopes: list[str] = Field(default_factory=list, description="Requested scopes")
    registration_url: str | None = Field(
        default=None,
        description="Dynamic client registration endpoint URL",
    )


class RefreshConfig(CamelModel):
    """Per-provider refresh scheduling overrides."""

    lead_ms: int | None = Field(
        default=None,
        ge=0,
        description="Milliseconds before expiry at which to refresh",
    )


class ProviderConfig(CamelModel):
    """Configuration for one upstream provider.

    Attributes:
        id: Provider identifier, unique within the gateway.
        mcp_url: The provider's protocol endpoint.
        oauth: OAuth settings; providers without one need no authentication.
        refresh: Optional refresh scheduling overrides.
    """

    id: str = Field(..., min_length=1, description="Provider identifier")
    mcp_url: str = Field(..., description="Provider protocol endpoint URL")
    oauth: OAuthSpec | None = Field(default=None, description="OAuth settings")
    refresh: RefreshConfig | None = Field(default=None, description="Refresh overrides")

    @property
    def lead_ms(self) -> int:
        """Refresh lead time in milliseconds, falling back to the default."""
        if self.refresh is not None and self.refresh.lead_ms is not None:
            return self.refresh.lead_ms
        return DEFAULT_REFRESH_LEAD_MS


class Token(CamelModel):
    """An OAuth token as persisted in the token store.

    Attributes:
        access_token: Bearer credential sent to the provider.
        refresh_token: Long-lived credential used to obtain new access tokens.
        expires_at: Expiry as epoch milliseconds; None means non-expiring.
        issued_at: Issue time as epoch milliseconds.
        token_type: Token type reported by the provider.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None
    issued_at: int
    token_type: str = "Bearer"

    def is_expired(self, now: int) -> bool:
        """Check whether the token has passed its expiry at time ``now``."""
        return self.expires_at is not None and self.expires_at < now


class TokenResponse(BaseModel):
    """Token endpoint response, decoded defensively.

    Unknown fields are ignored and optional fields default to absent.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None


class CallbackResult(BaseModel):
    """Outcome of a successful authorization callback."""

    token: Token
    user_id: str
    provider_id: str


__all__ = [
    "DEFAULT_ACCOUNT_ID",
    "DEFAULT_REFRESH_LEAD_MS",
    "CallbackResult",
    "OAuthSpec",
    "ProviderConfig",
    "RefreshConfig",
    "Token",
    "TokenResponse",
]

"""Token lifecycle management for upstream providers.

This module owns everything that happens to a token after the user has been
sent to an authorization URL:

- Exchanging the authorization code on callback (with PKCE when enabled)
- Serving tokens on read, refreshing synchronously when expired
- Refreshing with rotation-or-reuse of the refresh token
- Scheduling the next refresh through a refresh event publisher
- Revoking the local record

Ordering: a token is always persisted before its next refresh is scheduled.
A scheduling failure never rolls back the write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests
from pydantic import ValidationError

from mcp_gateway.auth.models import (
    DEFAULT_ACCOUNT_ID,
    DEFAULT_REFRESH_LEAD_MS,
    CallbackResult,
    OAuthSpec,
    Token,
    TokenResponse,
)
from mcp_gateway.auth.oauth import OAuthFlowEngine
from mcp_gateway.auth.pkce import parse_state
from mcp_gateway.auth.store import TokenStore
from mcp_gateway.middleware.audit_logger import AuditLogger
from mcp_gateway.scheduler.models import ScheduleInput
from mcp_gateway.scheduler.publisher import NoopPublisher, RefreshEventPublisher
from mcp_gateway.utils.cancel import checkpoint
from mcp_gateway.utils.clock import Clock, now_ms
from mcp_gateway.utils.errors import (
    ConfigError,
    InvalidStateError,
    MissingCodeVerifierError,
    NoRefreshTokenError,
    PublishError,
    TokenExchangeError,
    TokenRefreshError,
    UpstreamStatusError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshOutcome:
    """Result of a refresh, including whether scheduling succeeded."""

    token: Token
    next_run_at: int | None
    schedule_error: PublishError | None = None


class TokenManager:
    """Handles OAuth token exchange, refresh, scheduling and revocation.

    Example:
        >>> manager = TokenManager(store, engine, publisher)
        >>> result = manager.handle_callback(code, state)
        >>> token = manager.get_token(result.user_id, result.provider_id)
    """

    def __init__(
        self,
        store: TokenStore,
        engine: OAuthFlowEngine,
        publisher: RefreshEventPublisher | None = None,
        audit: AuditLogger | None = None,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the token manager.

        Args:
            store: Token persistence backend.
            engine: OAuth flow engine holding provider settings, the pending
                state table and the registered client cache.
            publisher: Refresh scheduler. Defaults to a no-op publisher.
            audit: Audit logger for lifecycle events.
            clock: Source of the current epoch-millisecond time.
        """
        self._store = store
        self._engine = engine
        self._publisher = publisher or NoopPublisher()
        self._audit = audit or AuditLogger(enabled=False)
        self._clock = clock

    @property
    def engine(self) -> OAuthFlowEngine:
        return self._engine

    # =========================================================================
    # Authorization Code Exchange
    # =========================================================================

    def handle_callback(
        self, code: str, state: str, timeout: float | None = None
    ) -> CallbackResult:
        """Exchange an authorization code and persist the resulting token.

        Args:
            code: Authorization code from the provider redirect.
            state: State parameter from the redirect
                (``providerId:userId:nonce``).
            timeout: Request timeout override in seconds.

        Returns:
            The persisted token with its user and provider.

        Raises:
            InvalidStateError: If the state cannot be parsed, or (without
                PKCE) was never issued or was already used.
            UnknownProviderError: If the provider has no OAuth settings.
            MissingCodeVerifierError: If PKCE is used and no verifier is
                pending for the state.
            ConfigError: If no client ID can be resolved.
            TokenExchangeError: If the provider rejects the exchange.
            PublishError: If the token was persisted but scheduling its
                refresh failed.
        """
        provider_id, user_id = parse_state(state)
        spec = self._engine.get_oauth_spec(provider_id)

        # Consumed before the exchange so a failed exchange cannot be replayed
        pending = self._engine.consume_pending(state)

        params: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._engine.redirect_uri,
        }

        if spec.use_pkce:
            if pending is None or not pending.code_verifier:
                raise MissingCodeVerifierError(
                    "PKCE code verifier not found for this state",
                    details={"provider_id": provider_id},
                )
            params["code_verifier"] = pending.code_verifier
        else:
            if pending is None:
                raise InvalidStateError(
                    "State was not issued by this gateway or was already used",
                    details={"provider_id": provider_id},
                )
            if spec.client_secret:
                params["client_secret"] = spec.client_secret

        params["client_id"] = self._require_client_id(provider_id, spec)

        data = self._post_token_request(
            spec.token_url,
            params,
            error_class=TokenExchangeError,
            action="Token exchange",
            provider_id=provider_id,
            timeout=timeout,
        )
        token = self._build_token(data)

        self._store.set_token(user_id, provider_id, DEFAULT_ACCOUNT_ID, token)
        logger.info("Stored token for user %s on provider %s", user_id, provider_id)
        self._audit.log_auth_event(
            "callback",
            user_id=user_id,
            provider_id=provider_id,
            details={"expires_at": token.expires_at, "pkce": spec.use_pkce},
        )

        _, schedule_error = self._schedule_next(user_id, provider_id, token, timeout)
        if schedule_error is not None:
            raise schedule_error

        return CallbackResult(token=token, user_id=user_id, provider_id=provider_id)

    # =========================================================================
    # Read / Refresh / Revoke
    # =========================================================================

    def get_token(
        self, user_id: str, provider_id: str, timeout: float | None = None
    ) -> Token | None:
        """Return the stored token, refreshing it first if it has expired.

        Args:
            user_id: User identifier.
            provider_id: Provider identifier.
            timeout: Request timeout override for an implied refresh.

        Returns:
            The current token, or None if none is stored.

        Raises:
            NoRefreshTokenError: If the token expired and cannot be refreshed.
            TokenRefreshError: If the implied refresh is rejected.
        """
        token = self._store.get_token(user_id, provider_id, DEFAULT_ACCOUNT_ID)
        if token is None:
            return None

        if token.is_expired(self._clock()):
            logger.info("Token for %s on %s expired; refreshing", user_id, provider_id)
            outcome = self.refresh(user_id, provider_id, timeout=timeout)
            if outcome.schedule_error is not None:
                logger.warning(
                    "Refreshed token for %s on %s but scheduling failed: %s",
                    user_id,
                    provider_id,
                    outcome.schedule_error,
                )
            return outcome.token

        return token

    def refresh_token(
        self, user_id: str, provider_id: str, timeout: float | None = None
    ) -> Token:
        """Refresh a token and reschedule its next refresh.

        Raises:
            NoRefreshTokenError: If no refresh token is on file.
            UnknownProviderError: If the provider has no OAuth settings.
            TokenRefreshError: If the provider rejects the refresh or no
                client ID is known for the provider.
            PublishError: If the new token was persisted but scheduling failed.
        """
        outcome = self.refresh(user_id, provider_id, timeout=timeout)
        if outcome.schedule_error is not None:
            raise outcome.schedule_error
        return outcome.token

    def refresh(
        self, user_id: str, provider_id: str, timeout: float | None = None
    ) -> RefreshOutcome:
        """Refresh a token, reporting scheduling failures instead of raising.

        Raises:
            NoRefreshTokenError: If no refresh token is on file.
            UnknownProviderError: If the provider has no OAuth settings.
            TokenRefreshError: If the provider rejects the refresh or no
                client ID is known for the provider.
        """
        current = self._store.get_token(user_id, provider_id, DEFAULT_ACCOUNT_ID)
        if current is None or not current.refresh_token:
            raise NoRefreshTokenError(
                "No refresh token available",
                details={
                    "provider_id": provider_id,
                    "hint": "User must re-authorize to obtain a refresh token",
                },
            )

        spec = self._engine.get_oauth_spec(provider_id)
        # The refresh token is bound to the client that obtained it, so a
        # client ID lost with the registration cache cannot be replaced here
        client_id = self._engine.resolve_client_id(provider_id, spec)
        if not client_id:
            raise TokenRefreshError(
                "No client ID registered for refresh",
                details={
                    "provider_id": provider_id,
                    "hint": "User must re-authorize to register a new client",
                },
            )
        params: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_id": client_id,
        }
        if spec.client_secret and not spec.use_pkce:
            params["client_secret"] = spec.client_secret

        try:
            data = self._post_token_request(
                spec.token_url,
                params,
                error_class=TokenRefreshError,
                action="Token refresh",
                provider_id=provider_id,
                timeout=timeout,
            )
        except TokenRefreshError as e:
            self._audit.log_auth_event(
                "refresh",
                user_id=user_id,
                provider_id=provider_id,
                success=False,
                details={"status_code": e.status_code},
            )
            raise

        token = self._build_token(data, previous_refresh_token=current.refresh_token)
        self._store.set_token(user_id, provider_id, DEFAULT_ACCOUNT_ID, token)
        logger.info("Refreshed token for user %s on provider %s", user_id, provider_id)
        self._audit.log_auth_event(
            "refresh",
            user_id=user_id,
            provider_id=provider_id,
            details={
                "expires_at": token.expires_at,
                "rotated": token.refresh_token != current.refresh_token,
            },
        )

        next_run_at, schedule_error = self._schedule_next(
            user_id, provider_id, token, timeout
        )
        return RefreshOutcome(
            token=token, next_run_at=next_run_at, schedule_error=schedule_error
        )

    def revoke_token(self, user_id: str, provider_id: str) -> None:
        """Delete the locally stored token.

        No revocation request is sent to the provider.
        """
        self._store.revoke_token(user_id, provider_id, DEFAULT_ACCOUNT_ID)
        logger.info("Revoked local token for user %s on provider %s", user_id, provider_id)
        self._audit.log_auth_event("revoke", user_id=user_id, provider_id=provider_id)

    def next_run_at(self, provider_id: str, token: Token) -> int | None:
        """Compute when the next refresh should run, or None if non-expiring."""
        if token.expires_at is None:
            return None
        provider = self._engine.get_provider(provider_id)
        lead_ms = provider.lead_ms if provider is not None else DEFAULT_REFRESH_LEAD_MS
        return max(0, token.expires_at - lead_ms)

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_client_id(self, provider_id: str, spec: OAuthSpec) -> str:
        client_id = self._engine.resolve_client_id(provider_id, spec)
        if not client_id:
            raise ConfigError(
                "No client ID available for token exchange",
                details={"provider_id": provider_id},
            )
        return client_id

    def _post_token_request(
        self,
        token_url: str,
        params: dict[str, str],
        error_class: type[UpstreamStatusError],
        action: str,
        provider_id: str,
        timeout: float | None,
    ) -> TokenResponse:
        checkpoint()
        try:
            response = self._engine.http.post(
                token_url,
                data=params,
                headers={"Accept": "application/json"},
                timeout=timeout or self._engine.timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error during %s for %s: %s", action.lower(), provider_id, e)
            raise error_class(
                f"{action} failed: {e}",
                details={"provider_id": provider_id, "error_type": type(e).__name__},
            ) from e

        payload = self._json_or_empty(response)

        if not response.ok:
            upstream_error = payload.get("error") if isinstance(payload, dict) else None
            reason = upstream_error or response.reason or "upstream rejected request"
            logger.error(
                "%s for %s failed with status %d: %s",
                action,
                provider_id,
                response.status_code,
                reason,
            )
            raise error_class(
                f"{action} failed: {reason}",
                status_code=response.status_code,
                details={"provider_id": provider_id},
            )

        try:
            data = TokenResponse.model_validate(payload if isinstance(payload, dict) else {})
        except ValidationError as e:
            raise error_class(
                f"{action} returned a malformed token response",
                status_code=response.status_code,
                details={"provider_id": provider_id, "error": str(e)},
            ) from e

        if not data.access_token:
            raise error_class(
                f"{action} response did not include an access_token",
                status_code=response.status_code,
                details={"provider_id": provider_id},
            )
        return data

    @staticmethod
    def _json_or_empty(response: requests.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def _build_token(
        self, data: TokenResponse, previous_refresh_token: str | None = None
    ) -> Token:
        issued_at = self._clock()
        expires_at = issued_at + data.expires_in * 1000 if data.expires_in else None
        return Token(
            access_token=data.access_token or "",
            refresh_token=data.refresh_token or previous_refresh_token,
            expires_at=expires_at,
            issued_at=issued_at,
            token_type=data.token_type or "Bearer",
        )

    def _schedule_next(
        self,
        user_id: str,
        provider_id: str,
        token: Token,
        timeout: float | None,
    ) -> tuple[int | None, PublishError | None]:
        run_at = self.next_run_at(provider_id, token)
        if run_at is None:
            return None, None

        schedule = ScheduleInput(
            user_id=user_id,
            provider_id=provider_id,
            account_id=DEFAULT_ACCOUNT_ID,
            run_at=run_at,
        )
        try:
            self._publisher.schedule_refresh(schedule, timeout=timeout)
        except PublishError as e:
            logger.error(
                "Token for %s on %s persisted but refresh scheduling failed: %s",
                user_id,
                provider_id,
                e,
            )
            self._audit.log_auth_event(
                "schedule",
                user_id=user_id,
                provider_id=provider_id,
                success=False,
                details={"run_at": run_at, "status_code": e.status_code},
            )
            return run_at, e

        self._audit.log_auth_event(
            "schedule",
            user_id=user_id,
            provider_id=provider_id,
            details={"run_at": run_at},
        )
        return run_at, None


__all__ = [
    "RefreshOutcome",
    "TokenManager",
]

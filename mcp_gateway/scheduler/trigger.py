"""Inbound refresh trigger called back by the external scheduler.

The scheduler POSTs ``{"userId": ..., "accountId": ...}`` to
``/auth/refresh/{provider_id}`` with an ``X-Signature`` header computed over
the raw body. The signature is verified before anything else is read.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mcp_gateway.auth.models import DEFAULT_ACCOUNT_ID
from mcp_gateway.scheduler.signing import verify_signature
from mcp_gateway.utils.errors import (
    GatewayError,
    NoRefreshTokenError,
    SignatureInvalidError,
    TokenRefreshError,
    UnknownProviderError,
)

if TYPE_CHECKING:
    from mcp_gateway.auth.tokens import TokenManager

logger = logging.getLogger(__name__)

# Failures that a new authorization-code flow can recover from
REAUTHORIZE_ERRORS = (NoRefreshTokenError, TokenRefreshError, UnknownProviderError)


@dataclass(frozen=True)
class TriggerResponse:
    """HTTP status and JSON body produced for an inbound trigger."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


class RefreshTrigger:
    """Verifies signed refresh callbacks and runs the refresh path.

    Example:
        >>> trigger = RefreshTrigger(manager, signing_key="k")
        >>> response = trigger.handle("linear", raw_body, signature)
        >>> response.status_code
        200
    """

    def __init__(self, manager: TokenManager, signing_key: str) -> None:
        """Initialize the trigger.

        Args:
            manager: Token lifecycle manager performing the refresh.
            signing_key: Shared secret the scheduler signs bodies with.
        """
        self._manager = manager
        self._signing_key = signing_key

    def handle(
        self,
        provider_id: str,
        raw_body: bytes,
        signature: str | None,
        timeout: float | None = None,
    ) -> TriggerResponse:
        """Handle one inbound refresh request.

        Args:
            provider_id: Provider ID taken from the request path.
            raw_body: Exact request body bytes as received.
            signature: Value of the ``X-Signature`` header, if any.
            timeout: Request timeout override for the refresh exchange.

        Returns:
            The response to send back to the scheduler.
        """
        if not verify_signature(self._signing_key, raw_body, signature):
            logger.warning("Rejected refresh trigger for %s: bad signature", provider_id)
            error = SignatureInvalidError("Invalid signature")
            return TriggerResponse(401, {"error": error.message, "code": error.code})

        try:
            payload = json.loads(raw_body or b"{}")
        except ValueError:
            return TriggerResponse(400, {"error": "Request body must be JSON"})
        if not isinstance(payload, dict):
            return TriggerResponse(400, {"error": "Request body must be a JSON object"})

        user_id = payload.get("userId")
        account_id = payload.get("accountId") or DEFAULT_ACCOUNT_ID
        if not provider_id or not isinstance(user_id, str) or not user_id:
            return TriggerResponse(400, {"error": "Missing userId or providerId"})

        try:
            outcome = self._manager.refresh(user_id, provider_id, timeout=timeout)
        except REAUTHORIZE_ERRORS as e:
            logger.warning(
                "Scheduled refresh for %s on %s failed: %s", user_id, provider_id, e.code
            )
            return TriggerResponse(
                409,
                {
                    "error": e.message,
                    "code": e.code,
                    "reauthorizeUrl": self._reauthorize_url(provider_id, user_id, timeout),
                },
            )
        except GatewayError as e:
            logger.error("Scheduled refresh for %s on %s failed: %s", user_id, provider_id, e)
            return TriggerResponse(500, {"error": e.message, "code": e.code})

        body: dict[str, Any] = {
            "expiresAt": outcome.token.expires_at,
            "nextRunAt": outcome.next_run_at,
            "accountId": account_id,
        }
        if outcome.schedule_error is not None:
            body["scheduleError"] = outcome.schedule_error.code
        return TriggerResponse(200, body)

    def _reauthorize_url(
        self, provider_id: str, user_id: str, timeout: float | None
    ) -> str | None:
        try:
            return self._manager.engine.get_authorization_url(
                provider_id, user_id, timeout=timeout
            )
        except GatewayError as e:
            logger.warning("Could not build reauthorization URL for %s: %s", provider_id, e)
            return None


__all__ = [
    "REAUTHORIZE_ERRORS",
    "RefreshTrigger",
    "TriggerResponse",
]

"""Publishers that schedule out-of-band token refreshes.

A publisher is told "refresh this token at ``runAt``" after every successful
token write. Two implementations exist:

- ``NoopPublisher`` for deployments without an external scheduler.
- ``WebhookPublisher`` which posts a signed ``auth/schedule`` event to a
  scheduler endpoint. The scheduler later calls the gateway's inbound refresh
  trigger with a body signed by the same key.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod

import requests

from mcp_gateway.scheduler.models import ScheduleInput
from mcp_gateway.scheduler.signing import SIGNATURE_HEADER, sign_body
from mcp_gateway.utils.clock import Clock, now_ms
from mcp_gateway.utils.errors import PublishError

logger = logging.getLogger(__name__)

SCHEDULE_EVENT_NAME = "auth/schedule"


class RefreshEventPublisher(ABC):
    """Schedules a token refresh to run later."""

    @abstractmethod
    def schedule_refresh(self, schedule: ScheduleInput, timeout: float | None = None) -> None:
        """Schedule a refresh.

        Raises:
            PublishError: If the schedule could not be delivered.
        """


class NoopPublisher(RefreshEventPublisher):
    """Publisher used when no external scheduler is configured."""

    def schedule_refresh(self, schedule: ScheduleInput, timeout: float | None = None) -> None:
        logger.debug(
            "No scheduler configured; skipping refresh for %s/%s at %d",
            schedule.user_id,
            schedule.provider_id,
            schedule.run_at,
        )


class WebhookPublisher(RefreshEventPublisher):
    """Posts signed ``auth/schedule`` events to a scheduler endpoint.

    Example:
        >>> publisher = WebhookPublisher("https://sched.example.com/events", "k")
        >>> publisher.schedule_refresh(ScheduleInput(
        ...     user_id="alice", provider_id="linear", run_at=1700000000000))
    """

    def __init__(
        self,
        url: str,
        signing_key: str,
        http: requests.Session | None = None,
        timeout: float = 30.0,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the publisher.

        Args:
            url: Scheduler endpoint receiving events.
            signing_key: Shared secret used to sign request bodies.
            http: HTTP session for outbound requests.
            timeout: Default request timeout in seconds.
            clock: Source of the ``ts`` field in epoch milliseconds.
        """
        self._url = url
        self._signing_key = signing_key
        self._http = http or requests.Session()
        self._timeout = timeout
        self._clock = clock

    def build_body(self, schedule: ScheduleInput) -> str:
        """Serialize the event exactly as it will be signed and sent."""
        return json.dumps(
            {
                "name": SCHEDULE_EVENT_NAME,
                "data": schedule.model_dump(by_alias=True),
                "ts": self._clock(),
            },
            separators=(",", ":"),
        )

    def schedule_refresh(self, schedule: ScheduleInput, timeout: float | None = None) -> None:
        body = self.build_body(schedule)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_body(self._signing_key, body),
        }

        try:
            response = self._http.post(
                self._url,
                data=body.encode("utf-8"),
                headers=headers,
                timeout=timeout or self._timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error publishing refresh schedule: %s", e)
            raise PublishError(
                f"Refresh schedule publish failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        if not response.ok:
            logger.error(
                "Refresh schedule publish rejected with status %d", response.status_code
            )
            raise PublishError(
                f"Refresh schedule publish failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        logger.info(
            "Scheduled refresh for %s/%s at %d",
            schedule.user_id,
            schedule.provider_id,
            schedule.run_at,
        )


__all__ = [
    "SCHEDULE_EVENT_NAME",
    "NoopPublisher",
    "RefreshEventPublisher",
    "WebhookPublisher",
]

"""Refresh scheduling: outbound publishers, signing and the inbound trigger."""

from mcp_gateway.scheduler.models import ScheduleInput
from mcp_gateway.scheduler.publisher import (
    SCHEDULE_EVENT_NAME,
    NoopPublisher,
    RefreshEventPublisher,
    WebhookPublisher,
)
from mcp_gateway.scheduler.signing import SIGNATURE_HEADER, sign_body, verify_signature
from mcp_gateway.scheduler.trigger import RefreshTrigger, TriggerResponse

__all__ = [
    "SCHEDULE_EVENT_NAME",
    "SIGNATURE_HEADER",
    "NoopPublisher",
    "RefreshEventPublisher",
    "RefreshTrigger",
    "ScheduleInput",
    "TriggerResponse",
    "WebhookPublisher",
    "sign_body",
    "verify_signature",
]

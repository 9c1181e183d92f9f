"""Wire model for refresh schedule events."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ScheduleInput(BaseModel):
    """A request to refresh a token at a future time.

    Serialized with camelCase names (``userId``, ``runAt``...) on the wire.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    provider_id: str
    account_id: str = "default"
    run_at: int = Field(..., ge=0, description="Epoch milliseconds")


__all__ = ["ScheduleInput"]

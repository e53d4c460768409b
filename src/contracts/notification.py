"""Notification Contract - Intents handed to the external notification service."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationKind(str, Enum):
    """Kinds of customer notifications the engine can request."""

    POSITION_CHANGED = "position_changed"
    PRIORITY_CHANGED = "priority_changed"
    CONVERTED_TO_QUEUE = "converted_to_queue"
    CANCELLED = "cancelled"


class NotificationIntent(BaseModel):
    """Description of a notification to send. Never delivered by the engine."""

    recipient_customer_id: str = Field(..., min_length=1)
    kind: NotificationKind
    appointment_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    trace_id: str | None = Field(default=None, description="Trace of the mutation")

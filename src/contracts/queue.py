"""Queue Contract - Results of queue mutations and wait-time projections."""

from datetime import time

from pydantic import BaseModel, Field

from src.contracts.appointment import (
    Appointment,
    AppointmentStatus,
    PartitionKey,
    PriorityTier,
)
from src.contracts.notification import NotificationIntent


class PositionChange(BaseModel):
    """One appointment whose queue position changed."""

    appointment_id: str
    customer_id: str
    old_position: int | None = Field(default=None, description="None when newly queued")
    new_position: int | None = Field(default=None, description="None when removed")


class ProjectedStart(BaseModel):
    """Estimator output for one waiting entry."""

    appointment_id: str
    position: int | None
    start: time
    end: time = Field(
        ..., description="Clock time of the end, 23:59 when past midnight"
    )
    start_minutes: int = Field(..., description="Minutes since midnight")
    end_minutes: int = Field(..., description="Exact end, may exceed 1440")
    wait_minutes: int = Field(..., ge=0, description="start - anchor")


class BridgeResult(BaseModel):
    """Outcome of converting a scheduled appointment into a queue entry."""

    appointment_id: str
    position: int = Field(..., ge=1)
    estimated_wait_minutes: int = Field(..., ge=0)


class MutationResult(BaseModel):
    """What every engine mutation returns to its caller."""

    key: PartitionKey
    version: int = Field(..., description="Partition version after commit")
    appointment: Appointment | None = None
    position_changes: list[PositionChange] = Field(default_factory=list)
    intents: list[NotificationIntent] = Field(default_factory=list)
    bridge: BridgeResult | None = None
    replayed: bool = Field(
        default=False,
        description="True when served from the idempotency cache",
    )


class AcceptRequest(BaseModel):
    """Body of an accept/confirm call."""

    status: AppointmentStatus = Field(default=AppointmentStatus.SCHEDULED)
    urgent: bool | None = Field(
        default=None,
        description="Front of the queue; defaults to the tier being urgent",
    )


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class PriorityRequest(BaseModel):
    priority: PriorityTier
    reorder: bool = Field(default=False, description="Reorder in the same commit")


class MoveRequest(BaseModel):
    position: int = Field(..., ge=1)


class ConvertRequest(BaseModel):
    urgent: bool = False


class WaitEstimate(BaseModel):
    appointment_id: str
    estimated_wait_minutes: int = Field(..., ge=0)

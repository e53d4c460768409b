"""Appointment Contract - Models for queue and scheduled appointments."""

import datetime as dt
from datetime import datetime, time, timezone
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class AppointmentStatus(str, Enum):
    """Lifecycle status of an appointment."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    DONE = "done"
    CANCELLED = "cancelled"


ACCEPTED_STATUSES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.DONE, AppointmentStatus.CANCELLED})


class PriorityTier(str, Enum):
    """Priority class governing queue order."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class AppointmentKind(str, Enum):
    """How an appointment is placed on the day."""

    SCHEDULED = "scheduled"
    QUEUE = "queue"


class ScheduledPlacement(BaseModel):
    """Fixed-time placement. Never carries a queue position."""

    kind: Literal["scheduled"] = "scheduled"
    start_time: time = Field(..., description="Fixed start time")

    model_config = ConfigDict(frozen=True)


class QueuePlacement(BaseModel):
    """Queue placement. Never carries a fixed start time.

    ``position`` is set only while the appointment is waiting.
    """

    kind: Literal["queue"] = "queue"
    position: int | None = Field(default=None, ge=1, description="1-based rank")

    model_config = ConfigDict(frozen=True)


Placement = Annotated[
    ScheduledPlacement | QueuePlacement, Field(discriminator="kind")
]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(BaseModel):
    """One unit of work for a barber on a given day."""

    id: str = Field(..., min_length=1, description="Opaque appointment id")
    resource_id: str = Field(..., min_length=1, description="Barber id")
    customer_id: str = Field(..., min_length=1, description="Customer id")
    date: dt.date = Field(..., description="Calendar day of the partition")
    placement: Placement
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING)
    priority: PriorityTier = Field(default=PriorityTier.NORMAL)
    duration_minutes: int = Field(
        default=30,
        description="Total service time including add-ons",
    )
    estimated_wait_minutes: int | None = Field(
        default=None,
        description="Last computed wait projection (derived)",
    )
    inserted_at: datetime = Field(
        default_factory=_utc_now,
        description="Arrival timestamp, FIFO tie-break within a tier",
    )
    started_at: datetime | None = Field(
        default=None,
        description="When service began (status ongoing)",
    )
    version: int = Field(default=0, ge=0, description="Row version")

    model_config = ConfigDict(
        from_attributes=True,
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "id": "apt-001",
                "resource_id": "barber-1",
                "customer_id": "cust-42",
                "date": "2026-02-15",
                "placement": {"kind": "queue", "position": 2},
                "status": "scheduled",
                "priority": "normal",
                "duration_minutes": 45,
                "estimated_wait_minutes": 30,
                "inserted_at": "2026-02-15T07:55:00Z",
                "version": 3,
            }
        },
    )

    @property
    def kind(self) -> AppointmentKind:
        return AppointmentKind(self.placement.kind)

    @property
    def position(self) -> int | None:
        if isinstance(self.placement, QueuePlacement):
            return self.placement.position
        return None

    @property
    def start_time(self) -> time | None:
        if isinstance(self.placement, ScheduledPlacement):
            return self.placement.start_time
        return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_accepted(self) -> bool:
        return self.status in ACCEPTED_STATUSES

    @property
    def is_waiting(self) -> bool:
        """Queue appointment that has been accepted and holds a position."""
        return self.kind == AppointmentKind.QUEUE and self.is_accepted

    @property
    def is_now_serving(self) -> bool:
        return self.status == AppointmentStatus.ONGOING

    def with_position(self, position: int | None) -> "Appointment":
        """Return a copy placed in the queue at ``position``."""
        return self.model_copy(update={"placement": QueuePlacement(position=position)})


class PartitionKey(BaseModel):
    """Unit of isolation: one barber on one calendar day."""

    resource_id: str = Field(..., min_length=1)
    date: dt.date

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.resource_id}@{self.date.isoformat()}"

    @classmethod
    def of(cls, appointment: Appointment) -> "PartitionKey":
        return cls(resource_id=appointment.resource_id, date=appointment.date)

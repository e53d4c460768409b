"""Timeline Contract - Composed daily view of one barber."""

from datetime import time
from enum import Enum

from pydantic import BaseModel, Field

from src.contracts.appointment import PartitionKey, PriorityTier


class BlockType(str, Enum):
    """Kinds of timeline segments."""

    SCHEDULED = "scheduled"
    QUEUE = "queue"
    BREAK = "break"
    GAP = "gap"


class TimelineBlock(BaseModel):
    """A typed, time-bounded segment of the day."""

    type: BlockType
    start: time
    end: time = Field(..., description="Clock time of the end, 23:59 when past midnight")
    start_minutes: int
    end_minutes: int = Field(..., description="Exact end, may exceed 1440")
    appointment_id: str | None = None
    customer_id: str | None = None
    position: int | None = Field(default=None, description="Queue blocks only")
    priority: PriorityTier | None = None
    now_serving: bool = Field(
        default=False,
        description="Queue block for the customer currently in the chair",
    )

    @property
    def duration_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


class Conflict(BaseModel):
    """Two non-gap blocks whose intervals overlap."""

    first: TimelineBlock
    second: TimelineBlock
    overlap_minutes: int = Field(..., gt=0)


class CapacityReport(BaseModel):
    """Whether the queue fits in the free time of the day. Informational."""

    fits: bool
    total_queue_minutes: int
    total_gap_minutes: int
    overflow_minutes: int = Field(..., ge=0)


class TimelineSummary(BaseModel):
    """Aggregate numbers shown next to the timeline."""

    total_scheduled: int
    total_queue: int
    total_pending: int
    booked_minutes: int
    working_minutes: int
    utilization: float = Field(..., description="Booked share of working time, %")
    is_fully_booked: bool
    has_capacity: bool
    next_available: time | None


class Timeline(BaseModel):
    """Ordered, conflict-checked view of one partition."""

    key: PartitionKey
    version: int
    business_start: time
    business_end: time
    blocks: list[TimelineBlock]
    conflicts: list[Conflict] = Field(default_factory=list)
    capacity: CapacityReport
    summary: TimelineSummary

    def blocks_of(self, block_type: BlockType) -> list[TimelineBlock]:
        return [block for block in self.blocks if block.type == block_type]


class Availability(BaseModel):
    """Advisory answer to "could this booking be taken?"."""

    can_accept: bool
    reason: str | None = None
    estimated_position: int | None = None
    estimated_start: time | None = None

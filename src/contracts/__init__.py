"""Contracts package - Pydantic schemas for data validation."""

from src.contracts.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
    PartitionKey,
    PriorityTier,
    QueuePlacement,
    ScheduledPlacement,
)
from src.contracts.notification import NotificationIntent, NotificationKind
from src.contracts.queue import MutationResult, PositionChange, ProjectedStart
from src.contracts.schedule import BreakInterval, ScheduleConfig
from src.contracts.timeline import BlockType, Timeline, TimelineBlock

__all__ = [
    "Appointment",
    "AppointmentKind",
    "AppointmentStatus",
    "PartitionKey",
    "PriorityTier",
    "QueuePlacement",
    "ScheduledPlacement",
    "NotificationIntent",
    "NotificationKind",
    "MutationResult",
    "PositionChange",
    "ProjectedStart",
    "BreakInterval",
    "ScheduleConfig",
    "BlockType",
    "Timeline",
    "TimelineBlock",
]

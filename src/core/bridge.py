"""Scheduled Queue Bridge - Move a fixed-time appointment into the queue.

The conversion is one-way. There is deliberately no queue -> scheduled
operation.
"""

from src.contracts.appointment import (
    AppointmentKind,
    PriorityTier,
    QueuePlacement,
)
from src.contracts.queue import BridgeResult
from src.contracts.schedule import ScheduleConfig
from src.core.errors import InvalidState
from src.core.partition import PartitionState
from src.core.positions import QueuePositionManager
from src.core.projection import recompute_waits
from src.utils.logger import get_logger

logger = get_logger(__name__)


class ScheduledQueueBridge:
    """Converts accepted scheduled appointments into queue entries."""

    def __init__(self, config: ScheduleConfig) -> None:
        self.config = config

    def add_scheduled_to_queue(
        self,
        state: PartitionState,
        appointment_id: str,
        urgent: bool = False,
        manager: QueuePositionManager | None = None,
    ) -> BridgeResult:
        """Drop the fixed start time and give the appointment a queue position.

        Args:
            state: Partition the appointment belongs to.
            appointment_id: Accepted scheduled appointment.
            urgent: Insert at position 1 and raise the tier to urgent.
            manager: Position manager to journal changes into.

        Returns:
            Assigned position and estimated wait after recomputation.

        Raises:
            NotFound: If the appointment is not in the partition.
            InvalidState: If it is already queued, not accepted or terminal.
        """
        appointment = state.get(appointment_id)
        if appointment.kind != AppointmentKind.SCHEDULED:
            raise InvalidState(
                "Appointment is already in the queue",
                appointment_id=appointment_id,
                position=appointment.position,
            )
        if not appointment.is_accepted:
            raise InvalidState(
                "Only accepted scheduled appointments can join the queue",
                appointment_id=appointment_id,
                status=appointment.status.value,
            )

        manager = manager or QueuePositionManager(state)
        previous_start = appointment.start_time
        appointment.placement = QueuePlacement()
        if urgent:
            appointment.priority = PriorityTier.URGENT
        state.touch(appointment_id)

        position = manager.insert(appointment_id, urgent=urgent)
        recompute_waits(state, self.config)

        logger.info(
            "scheduled_converted_to_queue",
            partition=str(state.key),
            appointment_id=appointment_id,
            previous_start=previous_start.isoformat() if previous_start else None,
            position=position,
            urgent=urgent,
        )
        return BridgeResult(
            appointment_id=appointment_id,
            position=position,
            estimated_wait_minutes=appointment.estimated_wait_minutes or 0,
        )

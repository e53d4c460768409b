"""Priority Reorderer - Rebuild queue order from tier and arrival order."""

from src.contracts.appointment import Appointment
from src.contracts.queue import PositionChange
from src.contracts.schedule import DEFAULT_TIER_RANK, ScheduleConfig
from src.core.partition import PartitionState
from src.core.positions import QueuePositionManager
from src.utils.logger import get_logger

logger = get_logger(__name__)


class PriorityReorderer:
    """Sorts the waiting subset by tier rank, then by current position.

    The current position acts as the FIFO tie-break because it was assigned
    in arrival order. Manual moves between equal-tier entries survive a
    reorder; moves across tiers do not.
    """

    def __init__(self, config: ScheduleConfig | None = None) -> None:
        self.tier_rank = dict(config.tier_rank if config else DEFAULT_TIER_RANK)

    def _sort_key(self, appointment: Appointment) -> tuple[int, int]:
        return (self.tier_rank[appointment.priority], appointment.position or 0)

    def ordered(self, state: PartitionState) -> list[Appointment]:
        return sorted(state.waiting(), key=self._sort_key)

    def is_ordered(self, state: PartitionState) -> bool:
        """True when no waiting entry sits behind a lower-ranked tier."""
        ranks = [self.tier_rank[apt.priority] for apt in state.waiting()]
        return all(a <= b for a, b in zip(ranks, ranks[1:]))

    def reorder(
        self,
        state: PartitionState,
        manager: QueuePositionManager | None = None,
    ) -> list[PositionChange]:
        """Assign dense positions ``1..N`` in priority order.

        Args:
            state: Partition to reorder in place.
            manager: Position manager whose change journal should record the
                result. A fresh one is used when omitted.

        Returns:
            Only the entries whose position actually changed; empty when the
            queue is already in order.
        """
        manager = manager or QueuePositionManager(state)
        changes: list[PositionChange] = []
        for index, appointment in enumerate(self.ordered(state), start=1):
            old = appointment.position
            if old != index:
                manager.assign(appointment, index)
                changes.append(
                    PositionChange(
                        appointment_id=appointment.id,
                        customer_id=appointment.customer_id,
                        old_position=old,
                        new_position=index,
                    )
                )

        manager.changes.extend(changes)
        logger.info(
            "queue_reordered",
            partition=str(state.key),
            size=len(state.waiting()),
            changed=len(changes),
        )
        return changes

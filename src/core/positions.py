"""Queue Position Manager - Insert, move, collapse and re-tier queue entries.

All operations work on a PartitionState held under the partition's
serialization point. Nothing here talks to the store; the engine commits the
resulting state in one batch.
"""

from src.contracts.appointment import (
    Appointment,
    AppointmentKind,
    PriorityTier,
    QueuePlacement,
)
from src.contracts.queue import PositionChange
from src.core.errors import InvalidPosition, InvalidState
from src.core.partition import PartitionState
from src.utils.logger import get_logger

logger = get_logger(__name__)


def _change(
    appointment: Appointment, old: int | None, new: int | None
) -> PositionChange:
    return PositionChange(
        appointment_id=appointment.id,
        customer_id=appointment.customer_id,
        old_position=old,
        new_position=new,
    )


class QueuePositionManager:
    """Owns position assignment for one partition.

    Keeps the waiting subset dense (``1..N``) and unique after every call.
    """

    def __init__(self, state: PartitionState) -> None:
        self.state = state
        self.changes: list[PositionChange] = []

    def assign(self, appointment: Appointment, position: int | None) -> None:
        appointment.placement = QueuePlacement(position=position)
        self.state.touch(appointment.id)

    def _require_queue(self, appointment: Appointment) -> None:
        if appointment.kind != AppointmentKind.QUEUE:
            raise InvalidState(
                "Appointment is not in the queue",
                appointment_id=appointment.id,
                kind=appointment.kind.value,
            )

    def _require_waiting(self, appointment: Appointment) -> int:
        """Return the position of a waiting entry, or raise InvalidState."""
        self._require_queue(appointment)
        if not appointment.is_waiting or appointment.position is None:
            raise InvalidState(
                "Appointment is not waiting in the queue",
                appointment_id=appointment.id,
                status=appointment.status.value,
            )
        return appointment.position

    def insert(self, appointment_id: str, urgent: bool = False) -> int:
        """Give a queue appointment a position.

        Urgent entries go to position 1 and every waiting entry shifts +1;
        others are appended after the current last position.

        Args:
            appointment_id: Accepted queue appointment without a position.
            urgent: Insert at the front instead of the back.

        Returns:
            The assigned position.

        Raises:
            NotFound: If the appointment is not in the partition.
            InvalidState: If it is not an accepted queue entry or is
                already positioned.
        """
        appointment = self.state.get(appointment_id)
        self._require_queue(appointment)
        if not appointment.is_accepted:
            raise InvalidState(
                "Only accepted appointments can be queued",
                appointment_id=appointment_id,
                status=appointment.status.value,
            )
        if appointment.position is not None:
            raise InvalidState(
                "Appointment already holds a queue position",
                appointment_id=appointment_id,
                position=appointment.position,
            )

        others = [apt for apt in self.state.waiting() if apt.id != appointment_id]
        changes: list[PositionChange] = []

        if urgent:
            for apt in reversed(others):
                old = apt.position
                self.assign(apt, (old or 0) + 1)
                changes.append(_change(apt, old, apt.position))
            position = 1
        else:
            position = max((apt.position or 0 for apt in others), default=0) + 1

        self.assign(appointment, position)
        changes.insert(0, _change(appointment, None, position))

        logger.info(
            "queue_insert",
            partition=str(self.state.key),
            appointment_id=appointment_id,
            position=position,
            urgent=urgent,
            shifted=len(changes) - 1,
        )
        self.changes.extend(changes)
        return position

    def move_to_position(
        self, appointment_id: str, new_position: int
    ) -> list[PositionChange]:
        """Move one waiting entry to ``new_position``.

        Entries strictly between the old and new positions shift by one
        toward the vacated slot. This is a manual override and lasts only
        until the next full priority reorder.

        Raises:
            InvalidState: If the entry does not hold a waiting position.
            InvalidPosition: If ``new_position`` is outside ``1..N``.
        """
        appointment = self.state.get(appointment_id)
        current = self._require_waiting(appointment)
        waiting = self.state.waiting()
        size = len(waiting)
        if not 1 <= new_position <= size:
            raise InvalidPosition(
                f"Position must be between 1 and {size}",
                appointment_id=appointment_id,
                requested=new_position,
                size=size,
            )

        if new_position == current:
            return []

        changes: list[PositionChange] = []
        if new_position < current:
            # Moving up: entries in [new, current) slide down one slot.
            for apt in waiting:
                pos = apt.position or 0
                if new_position <= pos < current:
                    self.assign(apt, pos + 1)
                    changes.append(_change(apt, pos, pos + 1))
        else:
            # Moving down: entries in (current, new] slide up one slot.
            for apt in waiting:
                pos = apt.position or 0
                if current < pos <= new_position:
                    self.assign(apt, pos - 1)
                    changes.append(_change(apt, pos, pos - 1))

        self.assign(appointment, new_position)
        changes.insert(0, _change(appointment, current, new_position))

        logger.info(
            "queue_move",
            partition=str(self.state.key),
            appointment_id=appointment_id,
            old_position=current,
            new_position=new_position,
        )
        self.changes.extend(changes)
        return changes

    def collapse_after_removal(self, removed_position: int) -> list[PositionChange]:
        """Close the gap left at ``removed_position``.

        Every waiting entry behind it moves up by one; entries in front are
        untouched.
        """
        changes: list[PositionChange] = []
        for apt in self.state.waiting():
            pos = apt.position
            if pos is not None and pos > removed_position:
                self.assign(apt, pos - 1)
                changes.append(_change(apt, pos, pos - 1))

        if changes:
            logger.debug(
                "queue_collapse",
                partition=str(self.state.key),
                removed_position=removed_position,
                shifted=len(changes),
            )
        self.changes.extend(changes)
        return changes

    def remove(self, appointment_id: str) -> list[PositionChange]:
        """Clear an entry's position and collapse the queue behind it.

        Safe to call for entries that hold no position (returns no changes).
        Call this before or after the status change that takes the entry
        out of the waiting subset.
        """
        appointment = self.state.get(appointment_id)
        removed = appointment.position
        if removed is None:
            return []
        self.assign(appointment, None)
        self.changes.append(_change(appointment, removed, None))
        return [self.changes[-1], *self.collapse_after_removal(removed)]

    def change_priority(self, appointment_id: str, tier: PriorityTier) -> PriorityTier:
        """Record a new tier without reordering.

        Reordering is the PriorityReorderer's job, possibly batched later.

        Returns:
            The previous tier.
        """
        appointment = self.state.get(appointment_id)
        if appointment.is_terminal:
            raise InvalidState(
                "Cannot change the priority of a finished appointment",
                appointment_id=appointment_id,
                status=appointment.status.value,
            )
        previous = appointment.priority
        if previous != tier:
            appointment.priority = tier
            self.state.touch(appointment_id)
            logger.info(
                "queue_priority_changed",
                partition=str(self.state.key),
                appointment_id=appointment_id,
                old_priority=previous.value,
                new_priority=tier.value,
            )
        return previous

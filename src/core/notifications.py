"""Intent Emitter - Builds notification intents from queue mutations.

Delivery belongs to the external notification service. The emitter only
describes who should hear about what.
"""

from collections.abc import Iterable

from src.contracts.appointment import Appointment, PriorityTier
from src.contracts.notification import NotificationIntent, NotificationKind
from src.contracts.queue import BridgeResult, PositionChange
from src.core.partition import PartitionState


def net_changes(changes: Iterable[PositionChange]) -> list[PositionChange]:
    """Fold a change journal into one change per appointment.

    Keeps the first old position and the last new position, and drops
    appointments that ended where they started.
    """
    folded: dict[str, PositionChange] = {}
    for change in changes:
        first = folded.get(change.appointment_id)
        if first is None:
            folded[change.appointment_id] = change
        else:
            folded[change.appointment_id] = first.model_copy(
                update={"new_position": change.new_position}
            )
    return [c for c in folded.values() if c.old_position != c.new_position]


class IntentEmitter:
    """Creates NotificationIntents stamped with the mutation's trace id."""

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id

    def _intent(
        self,
        appointment: Appointment,
        kind: NotificationKind,
        **payload: object,
    ) -> NotificationIntent:
        return NotificationIntent(
            recipient_customer_id=appointment.customer_id,
            kind=kind,
            appointment_id=appointment.id,
            payload=payload,
            trace_id=self.trace_id,
        )

    def position_changes(
        self,
        state: PartitionState,
        changes: Iterable[PositionChange],
        exclude: Iterable[str] = (),
    ) -> list[NotificationIntent]:
        """One intent per entry whose position moved and is still waiting.

        Entries leaving the queue and ids in ``exclude`` (the subject of the
        mutation, which gets its own intent) are skipped.
        """
        skipped = set(exclude)
        intents = []
        for change in net_changes(changes):
            if change.appointment_id in skipped or change.new_position is None:
                continue
            appointment = state.get(change.appointment_id)
            intents.append(
                self._intent(
                    appointment,
                    NotificationKind.POSITION_CHANGED,
                    old_position=change.old_position,
                    new_position=change.new_position,
                    estimated_wait_minutes=appointment.estimated_wait_minutes,
                )
            )
        return intents

    def priority_changed(
        self, appointment: Appointment, previous: PriorityTier
    ) -> NotificationIntent:
        return self._intent(
            appointment,
            NotificationKind.PRIORITY_CHANGED,
            old_priority=previous.value,
            new_priority=appointment.priority.value,
            position=appointment.position,
        )

    def converted_to_queue(
        self, appointment: Appointment, result: BridgeResult
    ) -> NotificationIntent:
        return self._intent(
            appointment,
            NotificationKind.CONVERTED_TO_QUEUE,
            position=result.position,
            estimated_wait_minutes=result.estimated_wait_minutes,
        )

    def cancelled(
        self, appointment: Appointment, reason: str | None = None
    ) -> NotificationIntent:
        payload: dict[str, object] = {"previous_kind": appointment.kind.value}
        if reason:
            payload["reason"] = reason
        return self._intent(appointment, NotificationKind.CANCELLED, **payload)

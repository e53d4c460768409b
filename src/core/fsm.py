"""Finite State Machine - Appointment status lifecycle."""

from src.contracts.appointment import Appointment, AppointmentStatus
from src.core.errors import InvalidTransition

# Valid state transitions
VALID_TRANSITIONS: dict[AppointmentStatus, list[AppointmentStatus]] = {
    AppointmentStatus.PENDING: [
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.ONGOING,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.CONFIRMED: [
        AppointmentStatus.ONGOING,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.ONGOING: [
        AppointmentStatus.DONE,
        AppointmentStatus.CANCELLED,
    ],
    AppointmentStatus.DONE: [],  # Terminal state
    AppointmentStatus.CANCELLED: [],  # Terminal state
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether ``current -> target`` is allowed.

    Args:
        current: Status the appointment is in.
        target: Desired status.

    Returns:
        True if the transition is valid, False otherwise.
    """
    return target in VALID_TRANSITIONS.get(current, [])


class StatusMachine:
    """Applies status transitions to appointments.

    Only the status field is touched here. Queue side effects (position
    collapse, insertion on acceptance) belong to the engine.
    """

    def transition(
        self, appointment: Appointment, target: AppointmentStatus
    ) -> AppointmentStatus:
        """Move ``appointment`` to ``target``.

        Args:
            appointment: Appointment to update in place.
            target: Destination status.

        Returns:
            The previous status.

        Raises:
            InvalidTransition: If the transition is not allowed. The
                appointment is left untouched.
        """
        previous = appointment.status
        if not can_transition(previous, target):
            raise InvalidTransition(
                f"Invalid transition: {previous.value} -> {target.value}",
                appointment_id=appointment.id,
                current=previous.value,
                target=target.value,
            )
        appointment.status = target
        return previous

    @staticmethod
    def is_entering_terminal(target: AppointmentStatus) -> bool:
        return not VALID_TRANSITIONS[target]

"""Partition State - Active appointments of one barber on one day."""

from collections.abc import Iterable

from src.contracts.appointment import (
    Appointment,
    AppointmentKind,
    AppointmentStatus,
    PartitionKey,
)
from src.core.errors import InvariantViolation, NotFound


class PartitionState:
    """In-memory view of a partition loaded from the store.

    Owned by the engine for the duration of one operation and mutated only
    through the queue components. ``version`` is the store version the
    snapshot was read at; ``dirty`` tracks which appointments must be
    written back.
    """

    def __init__(
        self,
        key: PartitionKey,
        appointments: Iterable[Appointment] = (),
        version: int = 0,
    ) -> None:
        self.key = key
        self.version = version
        self._appointments: dict[str, Appointment] = {}
        self.dirty: set[str] = set()
        for appointment in appointments:
            if PartitionKey.of(appointment) != key:
                raise ValueError(
                    f"appointment {appointment.id} belongs to "
                    f"{PartitionKey.of(appointment)}, not {key}"
                )
            self._appointments[appointment.id] = appointment

    def __contains__(self, appointment_id: object) -> bool:
        return appointment_id in self._appointments

    def __len__(self) -> int:
        return len(self._appointments)

    def copy(self) -> "PartitionState":
        """Deep copy used as the working set of a mutation."""
        return PartitionState(
            self.key,
            (apt.model_copy(deep=True) for apt in self._appointments.values()),
            self.version,
        )

    def get(self, appointment_id: str) -> Appointment:
        try:
            return self._appointments[appointment_id]
        except KeyError:
            raise NotFound(
                "Appointment not found in partition",
                appointment_id=appointment_id,
                partition=str(self.key),
            ) from None

    def add(self, appointment: Appointment) -> None:
        if PartitionKey.of(appointment) != self.key:
            raise ValueError(f"appointment {appointment.id} is not in {self.key}")
        self._appointments[appointment.id] = appointment
        self.dirty.add(appointment.id)

    def touch(self, appointment_id: str) -> None:
        self.dirty.add(appointment_id)

    def all(self) -> list[Appointment]:
        return list(self._appointments.values())

    def active(self) -> list[Appointment]:
        return [apt for apt in self._appointments.values() if not apt.is_terminal]

    def waiting(self) -> list[Appointment]:
        """Waiting queue entries ordered by position."""
        entries = [apt for apt in self._appointments.values() if apt.is_waiting]
        return sorted(entries, key=lambda apt: (apt.position or 0, apt.inserted_at))

    def now_serving(self) -> list[Appointment]:
        return [
            apt
            for apt in self._appointments.values()
            if apt.status == AppointmentStatus.ONGOING
        ]

    def scheduled(self) -> list[Appointment]:
        """Accepted or ongoing fixed-time appointments ordered by start time."""
        entries = [
            apt
            for apt in self._appointments.values()
            if apt.kind == AppointmentKind.SCHEDULED
            and (apt.is_accepted or apt.status == AppointmentStatus.ONGOING)
        ]
        return sorted(entries, key=lambda apt: apt.start_time)  # type: ignore[arg-type,return-value]

    def dirty_appointments(self) -> list[Appointment]:
        return [self._appointments[appointment_id] for appointment_id in sorted(self.dirty)]

    def check_invariants(self) -> None:
        """Verify uniqueness, density and field coupling of positions.

        Raises:
            InvariantViolation: If the waiting subset is not exactly ``1..N``
                or a non-waiting appointment still holds a position.
        """
        positions: list[int] = []
        for apt in self._appointments.values():
            if apt.is_waiting:
                if apt.position is None:
                    raise InvariantViolation(
                        "Waiting appointment has no position",
                        appointment_id=apt.id,
                        partition=str(self.key),
                    )
                positions.append(apt.position)
            elif apt.position is not None:
                raise InvariantViolation(
                    "Non-waiting appointment still holds a position",
                    appointment_id=apt.id,
                    status=apt.status.value,
                    partition=str(self.key),
                )

        expected = list(range(1, len(positions) + 1))
        if sorted(positions) != expected:
            raise InvariantViolation(
                "Queue positions are not dense and unique",
                positions=sorted(positions),
                partition=str(self.key),
            )

"""Appointment Store - Boundary to the transactional appointment storage."""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from src.contracts.appointment import Appointment, PartitionKey
from src.core.errors import ConcurrentConflict, InvalidState, NotFound
from src.core.partition import PartitionState
from src.utils.logger import get_logger

logger = get_logger(__name__)


class AppointmentStore(ABC):
    """Storage consumed by the queue engine.

    Implementations must read a partition in one consistent snapshot and
    write a commit all-or-nothing, guarded by the partition version.
    """

    @abstractmethod
    async def load_partition(self, key: PartitionKey) -> PartitionState:
        """Snapshot of every appointment in ``key`` with its version."""

    @abstractmethod
    async def get(self, appointment_id: str) -> Appointment:
        """Fetch one appointment.

        Raises:
            NotFound: If no appointment has this id.
        """

    @abstractmethod
    async def commit(
        self,
        key: PartitionKey,
        expected_version: int,
        appointments: Iterable[Appointment],
    ) -> int:
        """Write ``appointments`` if the partition is still at ``expected_version``.

        Returns:
            The new partition version.

        Raises:
            ConcurrentConflict: If another writer committed first.
        """

    @abstractmethod
    async def add(self, appointment: Appointment) -> Appointment:
        """Insert a new appointment, as the booking flow would."""

    async def close(self) -> None:
        """Release connections, if any."""


class InMemoryAppointmentStore(AppointmentStore):
    """Dict-backed store for tests and local runs."""

    def __init__(self, appointments: Iterable[Appointment] = ()) -> None:
        self._rows: dict[str, Appointment] = {}
        self._versions: dict[PartitionKey, int] = {}
        for appointment in appointments:
            self._rows[appointment.id] = appointment.model_copy(deep=True)

    def version_of(self, key: PartitionKey) -> int:
        return self._versions.get(key, 0)

    async def load_partition(self, key: PartitionKey) -> PartitionState:
        rows = [
            apt.model_copy(deep=True)
            for apt in self._rows.values()
            if PartitionKey.of(apt) == key
        ]
        return PartitionState(key, rows, self.version_of(key))

    async def get(self, appointment_id: str) -> Appointment:
        try:
            return self._rows[appointment_id].model_copy(deep=True)
        except KeyError:
            raise NotFound("Appointment not found", appointment_id=appointment_id) from None

    async def commit(
        self,
        key: PartitionKey,
        expected_version: int,
        appointments: Iterable[Appointment],
    ) -> int:
        current = self.version_of(key)
        if current != expected_version:
            raise ConcurrentConflict(
                "Partition was modified by another writer",
                partition=str(key),
                expected_version=expected_version,
                actual_version=current,
            )

        batch = list(appointments)
        for apt in batch:
            if PartitionKey.of(apt) != key:
                raise InvalidState(
                    "Appointment does not belong to the committed partition",
                    appointment_id=apt.id,
                    partition=str(key),
                )

        new_version = current + 1
        for apt in batch:
            stored = apt.model_copy(deep=True)
            stored.version = apt.version + 1
            self._rows[apt.id] = stored
        self._versions[key] = new_version

        logger.debug(
            "memory_partition_committed",
            partition=str(key),
            version=new_version,
            rows=len(batch),
        )
        return new_version

    async def add(self, appointment: Appointment) -> Appointment:
        if appointment.id in self._rows:
            raise InvalidState("Appointment already exists", appointment_id=appointment.id)
        self._rows[appointment.id] = appointment.model_copy(deep=True)
        # A booking changes the partition too, so concurrent snapshots go stale.
        key = PartitionKey.of(appointment)
        self._versions[key] = self.version_of(key) + 1
        return appointment

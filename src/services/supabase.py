"""Supabase Service - Appointment store backed by Postgres."""

from collections.abc import Iterable
from datetime import date, time
from typing import Any

from postgrest.exceptions import APIError
from pydantic import ValidationError

from src.config.settings import get_settings
from src.contracts.appointment import (
    Appointment,
    PartitionKey,
    QueuePlacement,
    ScheduledPlacement,
)
from src.core.errors import ConcurrentConflict, InvalidState, NotFound
from src.core.partition import PartitionState
from src.services.store import AppointmentStore
from src.utils.logger import get_logger
from supabase import Client, create_client

logger = get_logger(__name__)

APPOINTMENTS_TABLE = "appointments"
PARTITIONS_TABLE = "queue_partitions"
COMMIT_FUNCTION = "commit_queue_partition"
TOUCH_FUNCTION = "touch_queue_partition"

# SQLSTATE raised by commit_queue_partition on a version mismatch.
SERIALIZATION_FAILURE = "40001"


def _parse_time(value: str | None) -> time | None:
    return time.fromisoformat(value) if value else None


def row_to_appointment(row: dict[str, Any]) -> Appointment:
    """Map an ``appointments`` row to the model.

    Rows whose kind and fields disagree (a queue row with a start time, a
    scheduled row with a position or without a time) are rejected, never
    repaired.

    Raises:
        InvalidState: If the row is inconsistent or has unknown values.
    """
    kind = row.get("appointment_type")
    start = _parse_time(row.get("appointment_time"))
    position = row.get("queue_position")

    problem = None
    if kind == "queue" and start is not None:
        problem = "queue row carries a start time"
    elif kind == "scheduled" and position is not None:
        problem = "scheduled row carries a queue position"
    elif kind == "scheduled" and start is None:
        problem = "scheduled row has no start time"
    elif kind not in ("queue", "scheduled"):
        problem = f"unknown appointment type {kind!r}"

    if problem:
        logger.error(
            "inconsistent_row_rejected",
            appointment_id=row.get("id"),
            reason=problem,
        )
        raise InvalidState(
            f"Inconsistent appointment row: {problem}",
            appointment_id=row.get("id"),
        )

    placement = (
        QueuePlacement(position=position)
        if kind == "queue"
        else ScheduledPlacement(start_time=start)  # type: ignore[arg-type]
    )
    try:
        return Appointment(
            id=str(row["id"]),
            resource_id=str(row["barber_id"]),
            customer_id=str(row["customer_id"]),
            date=row["appointment_date"],
            placement=placement,
            status=row["status"],
            priority=row.get("priority_level") or "normal",
            duration_minutes=row.get("total_duration") or 0,
            estimated_wait_minutes=row.get("estimated_wait_time"),
            inserted_at=row["created_at"],
            started_at=row.get("started_at"),
            version=row.get("version") or 0,
        )
    except (KeyError, ValidationError) as e:
        logger.error(
            "inconsistent_row_rejected",
            appointment_id=row.get("id"),
            reason=str(e),
        )
        raise InvalidState(
            "Appointment row failed validation", appointment_id=row.get("id")
        ) from e


def appointment_to_row(appointment: Appointment) -> dict[str, Any]:
    """Columns written back on commit (keys mirror ``commit_queue_partition``)."""
    start = appointment.start_time
    return {
        "id": appointment.id,
        "appointment_type": appointment.kind.value,
        "appointment_time": start.isoformat() if start else None,
        "queue_position": appointment.position,
        "status": appointment.status.value,
        "priority_level": appointment.priority.value,
        "total_duration": appointment.duration_minutes,
        "estimated_wait_time": appointment.estimated_wait_minutes,
        "started_at": (
            appointment.started_at.isoformat() if appointment.started_at else None
        ),
    }


class SupabaseAppointmentStore(AppointmentStore):
    """AppointmentStore over the ``appointments`` table."""

    def __init__(self, client: Client | None = None) -> None:
        """Initialize the store with a Supabase client.

        Args:
            client: Optional Supabase client. Built from settings when omitted.
        """
        self.client = client or self._create_client()

    def _create_client(self) -> Client:
        """Create a Supabase client from the application settings."""
        settings = get_settings()

        # Service key bypasses Row Level Security for backend writes.
        key = settings.supabase_service_key or settings.supabase_key
        if not settings.supabase_url or not key:
            raise ValueError("SUPABASE_URL and a Supabase key are required")

        new_client = create_client(settings.supabase_url, key)
        logger.info(
            "supabase_client_created",
            using_service_key=key == settings.supabase_service_key,
        )
        return new_client

    async def partition_version(self, key: PartitionKey) -> int:
        result = (
            self.client.table(PARTITIONS_TABLE)
            .select("version")
            .eq("barber_id", key.resource_id)
            .eq("appointment_date", key.date.isoformat())
            .limit(1)
            .execute()
        )
        return result.data[0]["version"] if result.data else 0

    async def load_partition(self, key: PartitionKey) -> PartitionState:
        """Read the partition version, then its rows.

        Reading the version first means a commit landing in between makes
        the snapshot look older than it is, so its own commit fails the
        version check instead of overwriting newer rows.
        """
        version = await self.partition_version(key)
        result = (
            self.client.table(APPOINTMENTS_TABLE)
            .select("*")
            .eq("barber_id", key.resource_id)
            .eq("appointment_date", key.date.isoformat())
            .execute()
        )
        appointments = [row_to_appointment(row) for row in result.data]
        logger.debug(
            "partition_loaded",
            partition=str(key),
            version=version,
            rows=len(appointments),
        )
        return PartitionState(key, appointments, version)

    async def get(self, appointment_id: str) -> Appointment:
        result = (
            self.client.table(APPOINTMENTS_TABLE)
            .select("*")
            .eq("id", appointment_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise NotFound("Appointment not found", appointment_id=appointment_id)
        return row_to_appointment(result.data[0])

    async def commit(
        self,
        key: PartitionKey,
        expected_version: int,
        appointments: Iterable[Appointment],
    ) -> int:
        rows = [appointment_to_row(apt) for apt in appointments]
        try:
            result = self.client.rpc(
                COMMIT_FUNCTION,
                {
                    "p_barber_id": key.resource_id,
                    "p_date": key.date.isoformat(),
                    "p_expected_version": expected_version,
                    "p_rows": rows,
                },
            ).execute()
        except APIError as e:
            if e.code == SERIALIZATION_FAILURE:
                raise ConcurrentConflict(
                    "Partition was modified by another writer",
                    partition=str(key),
                    expected_version=expected_version,
                ) from e
            logger.error(
                "partition_commit_failed",
                partition=str(key),
                code=e.code,
                error=e.message,
            )
            raise

        version = int(result.data)
        logger.info(
            "supabase_partition_committed",
            partition=str(key),
            version=version,
            rows=len(rows),
        )
        return version

    async def add(self, appointment: Appointment) -> Appointment:
        row = appointment_to_row(appointment)
        row.update(
            {
                "barber_id": appointment.resource_id,
                "customer_id": appointment.customer_id,
                "appointment_date": appointment.date.isoformat(),
                "created_at": appointment.inserted_at.isoformat(),
            }
        )
        result = self.client.table(APPOINTMENTS_TABLE).insert(row).execute()
        self.client.rpc(
            TOUCH_FUNCTION,
            {
                "p_barber_id": appointment.resource_id,
                "p_date": appointment.date.isoformat(),
            },
        ).execute()
        logger.info("appointment_added", appointment_id=appointment.id)
        return row_to_appointment(result.data[0])

    async def find_inconsistent(
        self, day: date | None = None
    ) -> list[dict[str, Any]]:
        """Raw rows whose kind and fields disagree, for operator review."""
        query = self.client.table(APPOINTMENTS_TABLE).select("*")
        if day is not None:
            query = query.eq("appointment_date", day.isoformat())
        result = query.execute()
        bad = []
        for row in result.data:
            try:
                row_to_appointment(row)
            except InvalidState as e:
                bad.append({**row, "problem": e.message})
        return bad

    async def partition_keys(self, day: date) -> list[PartitionKey]:
        """Every (barber, day) that has at least one appointment on ``day``."""
        result = (
            self.client.table(APPOINTMENTS_TABLE)
            .select("barber_id")
            .eq("appointment_date", day.isoformat())
            .execute()
        )
        barbers = sorted({str(row["barber_id"]) for row in result.data})
        return [PartitionKey(resource_id=barber, date=day) for barber in barbers]

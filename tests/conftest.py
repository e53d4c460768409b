"""Pytest Configuration - Shared fixtures for tests."""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import date, datetime, time, timedelta, timezone
from itertools import count

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment before importing app
os.environ["APP_ENV"] = "development"
os.environ["STORE_BACKEND"] = "memory"
os.environ["ENABLE_IDEMPOTENCY"] = "false"
os.environ["ENABLE_TRACING"] = "false"

from src.contracts.appointment import (  # noqa: E402
    Appointment,
    AppointmentStatus,
    PartitionKey,
    PriorityTier,
    QueuePlacement,
    ScheduledPlacement,
)
from src.contracts.schedule import ScheduleConfig  # noqa: E402
from src.core.engine import QueueEngine  # noqa: E402
from src.core.partition import PartitionState  # noqa: E402
from src.services.store import InMemoryAppointmentStore  # noqa: E402

DAY = date(2026, 2, 15)
BARBER = "barber-1"
KEY = PartitionKey(resource_id=BARBER, date=DAY)
ARRIVAL = datetime(2026, 2, 15, 7, 0, tzinfo=timezone.utc)

AppointmentFactory = Callable[..., Appointment]


@pytest.fixture
def key() -> PartitionKey:
    return KEY


@pytest.fixture
def config() -> ScheduleConfig:
    """Shop open 08:00-17:00 with lunch 12:00-13:00."""
    return ScheduleConfig()


@pytest.fixture
def make_appointment() -> AppointmentFactory:
    """Factory for appointments in the test partition.

    Arrival times increase with every call so FIFO order follows creation
    order.
    """
    arrivals = count()

    def factory(
        appointment_id: str,
        *,
        position: int | None = None,
        start: time | None = None,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        priority: PriorityTier = PriorityTier.NORMAL,
        duration: int = 30,
        customer_id: str | None = None,
        started_at: datetime | None = None,
    ) -> Appointment:
        placement = (
            ScheduledPlacement(start_time=start)
            if start is not None
            else QueuePlacement(position=position)
        )
        return Appointment(
            id=appointment_id,
            resource_id=BARBER,
            customer_id=customer_id or f"cust-{appointment_id}",
            date=DAY,
            placement=placement,
            status=status,
            priority=priority,
            duration_minutes=duration,
            inserted_at=ARRIVAL + timedelta(minutes=next(arrivals)),
            started_at=started_at,
        )

    return factory


@pytest.fixture
def queue_of(make_appointment: AppointmentFactory) -> Callable[..., PartitionState]:
    """Build a partition whose waiting queue holds ``ids`` at positions 1..N.

    Keyword arguments map an id to its tier, e.g. ``queue_of("A", "B", B="urgent")``.
    """

    def build(*ids: str, durations: dict[str, int] | None = None, **tiers: str) -> PartitionState:
        durations = durations or {}
        appointments = [
            make_appointment(
                appointment_id,
                position=index,
                priority=PriorityTier(tiers.get(appointment_id, "normal")),
                duration=durations.get(appointment_id, 30),
            )
            for index, appointment_id in enumerate(ids, start=1)
        ]
        return PartitionState(KEY, appointments)

    return build


@pytest.fixture
def store() -> InMemoryAppointmentStore:
    return InMemoryAppointmentStore()


@pytest.fixture
def engine(store: InMemoryAppointmentStore, config: ScheduleConfig) -> QueueEngine:
    return QueueEngine(store, config)


@pytest.fixture
async def async_client(
    store: InMemoryAppointmentStore,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI app over the in-memory store."""
    from src.config.settings import get_settings
    from src.core.dependencies import build_dependencies, set_dependencies
    from src.main import app

    set_dependencies(build_dependencies(get_settings(), store=store))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    set_dependencies(None)

"""Unit Tests - Scheduled to queue bridge."""

from datetime import time

import pytest

from src.contracts.appointment import AppointmentKind, AppointmentStatus, PriorityTier
from src.core.bridge import ScheduledQueueBridge
from src.core.errors import InvalidState
from src.core.positions import QueuePositionManager


@pytest.fixture
def bridge(config) -> ScheduledQueueBridge:
    return ScheduledQueueBridge(config)


class TestAddScheduledToQueue:
    def test_urgent_goes_first_and_shifts_everyone(
        self, bridge, queue_of, make_appointment
    ) -> None:
        state = queue_of("A", "B", "C")
        state.add(make_appointment("S", start=time(15, 0)))
        before = {apt.id: apt.position for apt in state.waiting()}

        result = bridge.add_scheduled_to_queue(state, "S", urgent=True)

        assert result.position == 1
        assert result.estimated_wait_minutes == 0
        converted = state.get("S")
        assert converted.kind == AppointmentKind.QUEUE
        assert converted.start_time is None
        assert converted.priority == PriorityTier.URGENT
        for apt_id, position in before.items():
            assert state.get(apt_id).position == position + 1
        state.check_invariants()

    def test_normal_goes_last_with_wait(
        self, bridge, queue_of, make_appointment
    ) -> None:
        state = queue_of("A", "B")
        state.add(make_appointment("S", start=time(9, 0), duration=45))

        result = bridge.add_scheduled_to_queue(state, "S")

        assert result.position == 3
        assert result.estimated_wait_minutes == 60
        assert state.get("S").priority == PriorityTier.NORMAL

    def test_already_queued_rejected(self, bridge, queue_of) -> None:
        state = queue_of("A")

        with pytest.raises(InvalidState):
            bridge.add_scheduled_to_queue(state, "A")

    @pytest.mark.parametrize(
        "status",
        [AppointmentStatus.PENDING, AppointmentStatus.DONE, AppointmentStatus.CANCELLED],
    )
    def test_not_accepted_rejected(
        self, bridge, queue_of, make_appointment, status
    ) -> None:
        state = queue_of("A")
        state.add(make_appointment("S", start=time(10, 0), status=status))

        with pytest.raises(InvalidState):
            bridge.add_scheduled_to_queue(state, "S")
        assert state.get("S").kind == AppointmentKind.SCHEDULED

    def test_uses_given_manager_journal(
        self, bridge, queue_of, make_appointment
    ) -> None:
        state = queue_of("A")
        state.add(make_appointment("S", start=time(10, 0)))
        manager = QueuePositionManager(state)

        bridge.add_scheduled_to_queue(state, "S", urgent=True, manager=manager)

        assert {c.appointment_id for c in manager.changes} == {"S", "A"}

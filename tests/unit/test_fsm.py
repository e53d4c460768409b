"""Unit Tests - FSM (Finite State Machine)."""

import pytest

from src.contracts.appointment import AppointmentStatus
from src.core.errors import InvalidTransition
from src.core.fsm import VALID_TRANSITIONS, StatusMachine, can_transition

S = AppointmentStatus


class TestTransitions:
    """Tests for the appointment status lifecycle."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.PENDING, S.SCHEDULED),
            (S.PENDING, S.CONFIRMED),
            (S.PENDING, S.CANCELLED),
            (S.SCHEDULED, S.CONFIRMED),
            (S.SCHEDULED, S.ONGOING),
            (S.CONFIRMED, S.ONGOING),
            (S.ONGOING, S.DONE),
            (S.ONGOING, S.CANCELLED),
        ],
    )
    def test_valid(self, current: AppointmentStatus, target: AppointmentStatus) -> None:
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.PENDING, S.ONGOING),
            (S.PENDING, S.DONE),
            (S.SCHEDULED, S.DONE),
            (S.CONFIRMED, S.SCHEDULED),
            (S.ONGOING, S.SCHEDULED),
            (S.DONE, S.CANCELLED),
            (S.CANCELLED, S.SCHEDULED),
        ],
    )
    def test_invalid(self, current: AppointmentStatus, target: AppointmentStatus) -> None:
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self) -> None:
        assert VALID_TRANSITIONS[S.DONE] == []
        assert VALID_TRANSITIONS[S.CANCELLED] == []
        assert StatusMachine.is_entering_terminal(S.DONE)
        assert not StatusMachine.is_entering_terminal(S.ONGOING)

    def test_every_status_listed(self) -> None:
        assert set(VALID_TRANSITIONS) == set(AppointmentStatus)


class TestStatusMachine:
    def test_transition_updates_and_returns_previous(self, make_appointment) -> None:
        appointment = make_appointment("A", status=S.PENDING)

        previous = StatusMachine().transition(appointment, S.SCHEDULED)

        assert previous == S.PENDING
        assert appointment.status == S.SCHEDULED

    def test_invalid_transition_leaves_appointment_untouched(
        self, make_appointment
    ) -> None:
        appointment = make_appointment("A", status=S.DONE)

        with pytest.raises(InvalidTransition) as exc_info:
            StatusMachine().transition(appointment, S.ONGOING)

        assert appointment.status == S.DONE
        assert exc_info.value.context["current"] == "done"
        assert exc_info.value.code == "invalid_transition"

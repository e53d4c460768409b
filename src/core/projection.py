"""Wait projection for a partition - Applies the estimator to stored state."""

from src.contracts.appointment import AppointmentKind
from src.contracts.queue import ProjectedStart
from src.contracts.schedule import ScheduleConfig
from src.core.clock import minutes_of
from src.core.estimator import effective_duration, estimate
from src.core.partition import PartitionState


def free_at(state: PartitionState, config: ScheduleConfig) -> int | None:
    """Minute the barber finishes the queue customer currently in the chair.

    Scheduled appointments in progress are not counted here; they sit on
    the timeline at their fixed time.
    """
    ends = [
        minutes_of(apt.started_at, config.tz)
        + effective_duration(apt.duration_minutes, config.default_duration_minutes)
        for apt in state.now_serving()
        if apt.kind == AppointmentKind.QUEUE and apt.started_at is not None
    ]
    return max(ends) if ends else None


def project(state: PartitionState, config: ScheduleConfig) -> list[ProjectedStart]:
    """Fresh projections for the waiting subset, in position order."""
    return estimate(
        state.waiting(),
        config.business_start,
        config.breaks,
        buffer_minutes=config.buffer_minutes,
        default_duration=config.default_duration_minutes,
        free_at=free_at(state, config),
    )


def recompute_waits(
    state: PartitionState, config: ScheduleConfig
) -> list[ProjectedStart]:
    """Refresh ``estimated_wait_minutes`` across the whole partition.

    Waiting entries get their projected wait; everything else is cleared.
    Only appointments whose value changed are marked dirty.
    """
    projections = project(state, config)
    waits = {p.appointment_id: p.wait_minutes for p in projections}
    for apt in state.all():
        wait = waits.get(apt.id)
        if apt.estimated_wait_minutes != wait:
            apt.estimated_wait_minutes = wait
            state.touch(apt.id)
    return projections

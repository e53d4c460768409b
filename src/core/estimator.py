"""Wait Time Estimator - Projected start times for a waiting queue.

Pure functions: the same ordered input always yields the same projection,
with no I/O and no clock reads.
"""

from collections.abc import Sequence
from datetime import time

from src.contracts.appointment import Appointment
from src.contracts.queue import ProjectedStart
from src.contracts.schedule import BreakInterval
from src.core.clock import from_minutes, to_minutes
from src.core.errors import NotFound

DEFAULT_DURATION_MINUTES = 30


def effective_duration(
    duration_minutes: int, default: int = DEFAULT_DURATION_MINUTES
) -> int:
    """Service duration used for projections.

    Non-positive durations fall back to ``default`` instead of counting as zero.
    """
    return duration_minutes if duration_minutes > 0 else default


def skip_breaks(clock: int, breaks: Sequence[BreakInterval]) -> int:
    """Advance ``clock`` past any break it falls inside.

    Loops until the clock is outside every break so back-to-back breaks
    chain correctly regardless of their order in ``breaks``.
    """
    moved = True
    while moved:
        moved = False
        for interval in breaks:
            start, end = to_minutes(interval.start), to_minutes(interval.end)
            if start <= clock < end:
                clock = end
                moved = True
    return clock


def estimate(
    entries: Sequence[Appointment],
    anchor: time | int,
    breaks: Sequence[BreakInterval] = (),
    *,
    buffer_minutes: int = 0,
    default_duration: int = DEFAULT_DURATION_MINUTES,
    free_at: int | None = None,
) -> list[ProjectedStart]:
    """Project a start time for every entry, in the order given.

    Args:
        entries: Waiting queue entries ordered by position (1..N).
        anchor: Business open time; waits are measured from here.
        breaks: Intervals during which nobody is served.
        buffer_minutes: Turnaround time added after each entry.
        default_duration: Fallback for entries with no positive duration.
        free_at: Minute the barber is actually free when later than
            ``anchor`` (e.g. a service in progress). Waits are still
            measured from ``anchor``.

    Returns:
        One ProjectedStart per entry. Starts are non-decreasing and never
        fall inside a break.
    """
    anchor_minutes = anchor if isinstance(anchor, int) else to_minutes(anchor)
    clock = max(anchor_minutes, free_at) if free_at is not None else anchor_minutes
    projections: list[ProjectedStart] = []

    for entry in entries:
        clock = skip_breaks(clock, breaks)
        duration = effective_duration(entry.duration_minutes, default_duration)
        end = clock + duration
        projections.append(
            ProjectedStart(
                appointment_id=entry.id,
                position=entry.position,
                start=from_minutes(clock),
                end=from_minutes(end),
                start_minutes=clock,
                end_minutes=end,
                wait_minutes=clock - anchor_minutes,
            )
        )
        clock = end + buffer_minutes

    return projections


def estimate_wait(
    entries: Sequence[Appointment],
    appointment_id: str,
    anchor: time | int,
    breaks: Sequence[BreakInterval] = (),
    *,
    buffer_minutes: int = 0,
    default_duration: int = DEFAULT_DURATION_MINUTES,
    free_at: int | None = None,
) -> int:
    """Estimated wait in minutes for one entry of the ordered queue.

    Raises:
        NotFound: If ``appointment_id`` is not among ``entries``.
    """
    for projection in estimate(
        entries,
        anchor,
        breaks,
        buffer_minutes=buffer_minutes,
        default_duration=default_duration,
        free_at=free_at,
    ):
        if projection.appointment_id == appointment_id:
            return projection.wait_minutes
    raise NotFound(
        "Appointment is not in the waiting queue", appointment_id=appointment_id
    )

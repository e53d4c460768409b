"""Timeline Composer - Unified daily view of scheduled, queue and break blocks.

The composer only reports. Overlaps are surfaced as conflicts for an
operator and capacity overflow never blocks a booking.
"""

from datetime import datetime, time

from src.contracts.appointment import Appointment, AppointmentKind, AppointmentStatus
from src.contracts.queue import ProjectedStart
from src.contracts.schedule import ScheduleConfig
from src.contracts.timeline import (
    Availability,
    BlockType,
    CapacityReport,
    Conflict,
    Timeline,
    TimelineBlock,
    TimelineSummary,
)
from src.core.clock import from_minutes, minutes_of, to_minutes
from src.core.estimator import effective_duration, skip_breaks
from src.core.partition import PartitionState
from src.core.projection import free_at, project
from src.utils.logger import get_logger

logger = get_logger(__name__)

FULLY_BOOKED_UTILIZATION = 95.0

# Tie-break for blocks starting at the same minute.
_BLOCK_ORDER = {
    BlockType.BREAK: 0,
    BlockType.SCHEDULED: 1,
    BlockType.QUEUE: 2,
    BlockType.GAP: 3,
}


def _block(
    block_type: BlockType,
    start: int,
    end: int,
    appointment: Appointment | None = None,
    **extra: object,
) -> TimelineBlock:
    return TimelineBlock(
        type=block_type,
        start=from_minutes(start),
        end=from_minutes(end),
        start_minutes=start,
        end_minutes=end,
        appointment_id=appointment.id if appointment else None,
        customer_id=appointment.customer_id if appointment else None,
        priority=appointment.priority if appointment else None,
        **extra,  # type: ignore[arg-type]
    )


def _merge(intervals: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _uncovered(
    intervals: list[tuple[int, int]], day_start: int, day_end: int
) -> list[tuple[int, int]]:
    """Sub-intervals of ``[day_start, day_end)`` not covered by ``intervals``."""
    free: list[tuple[int, int]] = []
    cursor = day_start
    for start, end in _merge(intervals):
        start, end = max(start, day_start), min(end, day_end)
        if end <= cursor:
            continue
        if start > cursor:
            free.append((cursor, start))
        cursor = max(cursor, end)
    if cursor < day_end:
        free.append((cursor, day_end))
    return free


class TimelineComposer:
    """Builds the Timeline of one partition from its current state."""

    def __init__(self, config: ScheduleConfig) -> None:
        self.config = config
        self.day_start = to_minutes(config.business_start)
        self.day_end = to_minutes(config.business_end)

    def _duration(self, appointment: Appointment) -> int:
        return effective_duration(
            appointment.duration_minutes, self.config.default_duration_minutes
        )

    def break_blocks(self) -> list[TimelineBlock]:
        return [
            _block(BlockType.BREAK, to_minutes(b.start), to_minutes(b.end))
            for b in self.config.breaks
        ]

    def scheduled_blocks(self, state: PartitionState) -> list[TimelineBlock]:
        blocks = []
        for apt in state.scheduled():
            start = to_minutes(apt.start_time)  # type: ignore[arg-type]
            blocks.append(
                _block(BlockType.SCHEDULED, start, start + self._duration(apt), apt)
            )
        return blocks

    def now_serving_blocks(self, state: PartitionState) -> list[TimelineBlock]:
        blocks = []
        for apt in state.now_serving():
            if apt.kind != AppointmentKind.QUEUE:
                continue
            start = (
                minutes_of(apt.started_at, self.config.tz)
                if apt.started_at
                else self.day_start
            )
            blocks.append(
                _block(
                    BlockType.QUEUE,
                    start,
                    start + self._duration(apt),
                    apt,
                    now_serving=True,
                )
            )
        return blocks

    def queue_blocks(
        self, state: PartitionState, projections: list[ProjectedStart]
    ) -> list[TimelineBlock]:
        blocks = []
        for projection in projections:
            apt = state.get(projection.appointment_id)
            blocks.append(
                _block(
                    BlockType.QUEUE,
                    projection.start_minutes,
                    projection.end_minutes,
                    apt,
                    position=projection.position,
                )
            )
        return blocks

    @staticmethod
    def detect_conflicts(blocks: list[TimelineBlock]) -> list[Conflict]:
        """Every overlapping pair of non-gap blocks, with the overlap length."""
        solid = [b for b in blocks if b.type != BlockType.GAP]
        conflicts: list[Conflict] = []
        for i, first in enumerate(solid):
            for second in solid[i + 1 :]:
                overlap = min(first.end_minutes, second.end_minutes) - max(
                    first.start_minutes, second.start_minutes
                )
                if overlap > 0:
                    conflicts.append(
                        Conflict(first=first, second=second, overlap_minutes=overlap)
                    )
        return conflicts

    def fixed_free_minutes(
        self, fixed: list[TimelineBlock]
    ) -> list[tuple[int, int]]:
        """Free intervals once scheduled, break and in-progress blocks are placed."""
        return _uncovered(
            [(b.start_minutes, b.end_minutes) for b in fixed],
            self.day_start,
            self.day_end,
        )

    def capacity(
        self, queue: list[TimelineBlock], fixed: list[TimelineBlock]
    ) -> CapacityReport:
        """Compare waiting queue work with the time left by fixed blocks."""
        total_queue = sum(
            b.duration_minutes + self.config.buffer_minutes for b in queue
        )
        total_gap = sum(end - start for start, end in self.fixed_free_minutes(fixed))
        return CapacityReport(
            fits=total_queue <= total_gap,
            total_queue_minutes=total_queue,
            total_gap_minutes=total_gap,
            overflow_minutes=max(0, total_queue - total_gap),
        )

    def working_minutes(self) -> int:
        breaks = _uncovered(
            [(to_minutes(b.start), to_minutes(b.end)) for b in self.config.breaks],
            self.day_start,
            self.day_end,
        )
        return sum(end - start for start, end in breaks)

    def compose(self, state: PartitionState, *, now: datetime | None = None) -> Timeline:
        """Compose the day of one barber.

        Queue projections are recomputed from the current queue order on
        every call; stored ``estimated_wait_minutes`` values are ignored.

        Args:
            state: Partition snapshot.
            now: Current time, used only for ``next_available``.

        Returns:
            Timeline with blocks sorted by start time, gaps filled in,
            conflicts and capacity reported.
        """
        breaks = self.break_blocks()
        scheduled = self.scheduled_blocks(state)
        serving = self.now_serving_blocks(state)
        queue = self.queue_blocks(state, project(state, self.config))

        solid = breaks + scheduled + serving + queue
        gaps = [
            _block(BlockType.GAP, start, end)
            for start, end in _uncovered(
                [(b.start_minutes, b.end_minutes) for b in solid],
                self.day_start,
                self.day_end,
            )
        ]
        blocks = sorted(
            solid + gaps,
            key=lambda b: (b.start_minutes, _BLOCK_ORDER[b.type], b.end_minutes),
        )
        conflicts = self.detect_conflicts(blocks)
        capacity = self.capacity(queue, breaks + scheduled + serving)

        working = self.working_minutes()
        booked = sum(b.duration_minutes for b in scheduled + serving + queue)
        utilization = round(booked / working * 100, 2) if working > 0 else 0.0
        pending = [
            apt for apt in state.all() if apt.status == AppointmentStatus.PENDING
        ]
        summary = TimelineSummary(
            total_scheduled=len(scheduled),
            total_queue=len(queue),
            total_pending=len(pending),
            booked_minutes=booked,
            working_minutes=working,
            utilization=utilization,
            is_fully_booked=utilization >= FULLY_BOOKED_UTILIZATION,
            has_capacity=len(queue) < self.config.max_queue_capacity,
            next_available=self.next_available(blocks, now),
        )

        if conflicts:
            logger.warning(
                "timeline_conflicts_detected",
                partition=str(state.key),
                conflicts=len(conflicts),
            )
        return Timeline(
            key=state.key,
            version=state.version,
            business_start=self.config.business_start,
            business_end=self.config.business_end,
            blocks=blocks,
            conflicts=conflicts,
            capacity=capacity,
            summary=summary,
        )

    def next_available(
        self, blocks: list[TimelineBlock], now: datetime | None = None
    ) -> time | None:
        """First gap at or after ``now``, else the end of the last busy block."""
        floor = minutes_of(now, self.config.tz) if now else self.day_start
        for block in blocks:
            if block.type == BlockType.GAP and block.end_minutes > floor:
                return from_minutes(max(block.start_minutes, floor))
        busy = [b.end_minutes for b in blocks if b.type != BlockType.GAP]
        candidate = max(busy + [floor]) + self.config.buffer_minutes
        return from_minutes(candidate) if candidate < self.day_end else None

    def can_accept_scheduled(
        self, state: PartitionState, start: time, duration_minutes: int
    ) -> Availability:
        """Advisory check for a new fixed-time booking."""
        begin = to_minutes(start)
        end = begin + effective_duration(
            duration_minutes, self.config.default_duration_minutes
        )
        if begin < self.day_start or end > self.day_end:
            return Availability(can_accept=False, reason="Outside business hours")

        for block in self.break_blocks():
            if begin < block.end_minutes and end > block.start_minutes:
                return Availability(
                    can_accept=False,
                    reason=f"Crosses break {block.start.strftime('%H:%M')}"
                    f"-{block.end.strftime('%H:%M')}",
                )

        busy = (
            self.scheduled_blocks(state)
            + self.now_serving_blocks(state)
            + self.queue_blocks(state, project(state, self.config))
        )
        for block in busy:
            if begin < block.end_minutes and end > block.start_minutes:
                return Availability(
                    can_accept=False,
                    reason=f"Conflicts with {block.type.value} block at "
                    f"{block.start.strftime('%H:%M')}",
                )
        return Availability(can_accept=True, estimated_start=start)

    def can_accept_queue(
        self, state: PartitionState, duration_minutes: int
    ) -> Availability:
        """Advisory check for a new walk-in, with its projected slot."""
        projections = project(state, self.config)
        position = len(projections) + 1
        if projections:
            clock = projections[-1].end_minutes + self.config.buffer_minutes
        else:
            ready = free_at(state, self.config)
            clock = max(self.day_start, ready) if ready is not None else self.day_start
        start = from_minutes(skip_breaks(clock, self.config.breaks))

        if len(projections) >= self.config.max_queue_capacity:
            return Availability(
                can_accept=False,
                reason=f"Queue is at maximum capacity ({self.config.max_queue_capacity})",
                estimated_position=position,
                estimated_start=start,
            )

        serving = self.now_serving_blocks(state)
        queue = self.queue_blocks(state, projections)
        report = self.capacity(queue, self.break_blocks() + self.scheduled_blocks(state) + serving)
        needed = report.total_queue_minutes + effective_duration(
            duration_minutes, self.config.default_duration_minutes
        ) + self.config.buffer_minutes
        if needed > report.total_gap_minutes:
            return Availability(
                can_accept=False,
                reason=f"Queue would overflow the day by "
                f"{needed - report.total_gap_minutes} minutes",
                estimated_position=position,
                estimated_start=start,
            )
        return Availability(
            can_accept=True, estimated_position=position, estimated_start=start
        )

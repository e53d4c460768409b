"""Unit Tests - Queue engine orchestration."""

import asyncio
from datetime import datetime, time, timezone
from typing import Any

import pytest

from src.contracts.appointment import (
    AppointmentKind,
    AppointmentStatus,
    PartitionKey,
    PriorityTier,
)
from src.contracts.notification import NotificationKind
from src.contracts.timeline import BlockType
from src.core.engine import QueueEngine
from src.core.errors import (
    ConcurrentConflict,
    InvalidPosition,
    InvalidState,
    InvalidTransition,
    OperationTimeout,
)
from src.core.idempotency import IdempotencyManager
from src.core.partition import PartitionState
from src.services.store import InMemoryAppointmentStore

S = AppointmentStatus


async def seed_queue(store, make_appointment, *ids: str, **tiers: str) -> None:
    """Add accepted queue entries at positions 1..N."""
    for position, apt_id in enumerate(ids, start=1):
        await store.add(
            make_appointment(
                apt_id,
                position=position,
                priority=PriorityTier(tiers.get(apt_id, "normal")),
            )
        )


async def waiting_order(store, key) -> list[str]:
    state = await store.load_partition(key)
    return [apt.id for apt in state.waiting()]


class FlakyStore(InMemoryAppointmentStore):
    """Loses the optimistic-concurrency race a fixed number of times."""

    def __init__(self, conflicts: int) -> None:
        super().__init__()
        self.conflicts = conflicts
        self.commit_calls = 0

    async def commit(self, key, expected_version, appointments):
        self.commit_calls += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrentConflict("lost race", partition=str(key))
        return await super().commit(key, expected_version, appointments)


class SlowStore(InMemoryAppointmentStore):
    async def load_partition(self, key: PartitionKey) -> PartitionState:
        await asyncio.sleep(1)
        return await super().load_partition(key)


class BrokenOnceStore(InMemoryAppointmentStore):
    """Fails its first commit with an error the engine does not know."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    async def commit(self, key, expected_version, appointments):
        if self.broken:
            self.broken = False
            raise RuntimeError("connection reset")
        return await super().commit(key, expected_version, appointments)


class FakeRedis:
    """Just enough of the redis.asyncio client for the idempotency manager."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self.data:
            return False
        self.data[key] = value
        return True

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def aclose(self) -> None:
        pass


class TestAccept:
    async def test_scenario_accept_normal_then_urgent(
        self, engine, store, key, make_appointment
    ) -> None:
        await store.add(make_appointment("A", status=S.PENDING))
        await store.add(make_appointment("B", status=S.PENDING, priority=PriorityTier.URGENT))

        first = await engine.accept("A")
        second = await engine.accept("B")

        assert first.appointment.position == 1
        assert second.appointment.position == 1
        assert await waiting_order(store, key) == ["B", "A"]
        pushed = [i for i in second.intents if i.appointment_id == "A"]
        assert pushed[0].payload["new_position"] == 2

    async def test_explicit_urgent_raises_tier(self, engine, store, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A")
        await store.add(make_appointment("B", status=S.PENDING))

        result = await engine.accept("B", urgent=True)

        assert result.appointment.position == 1
        assert result.appointment.priority == PriorityTier.URGENT

    async def test_scheduled_acceptance_gets_no_position(
        self, engine, store, make_appointment
    ) -> None:
        await store.add(make_appointment("S", start=time(10, 0), status=S.PENDING))

        result = await engine.accept("S", S.CONFIRMED)

        assert result.appointment.status == S.CONFIRMED
        assert result.appointment.position is None
        assert result.intents == []

    async def test_confirming_queued_entry_keeps_position(
        self, engine, store, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B")

        result = await engine.accept("B", S.CONFIRMED)

        assert result.appointment.position == 2
        assert result.position_changes == []

    async def test_rejects_non_accept_target(self, engine, store, make_appointment) -> None:
        await store.add(make_appointment("A", status=S.PENDING))

        with pytest.raises(InvalidState):
            await engine.accept("A", S.DONE)

    async def test_concurrent_accepts_are_serialized(
        self, engine, store, key, make_appointment
    ) -> None:
        for apt_id in "ABCDE":
            await store.add(make_appointment(apt_id, status=S.PENDING))

        await asyncio.gather(*(engine.accept(apt_id) for apt_id in "ABCDE"))

        state = await store.load_partition(key)
        assert sorted(apt.position for apt in state.waiting()) == [1, 2, 3, 4, 5]


class TestCancelAndService:
    async def test_scenario_cancel_second_of_four(
        self, engine, store, key, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B", "C", "D")

        result = await engine.cancel("B", "no-show")

        state = await store.load_partition(key)
        assert [(a.id, a.position) for a in state.waiting()] == [("A", 1), ("C", 2), ("D", 3)]
        assert state.get("B").status == S.CANCELLED
        assert state.get("B").position is None
        assert state.get("B").estimated_wait_minutes is None
        assert state.get("D").estimated_wait_minutes == 60

        kinds = [(i.kind, i.appointment_id) for i in result.intents]
        assert kinds[0] == (NotificationKind.CANCELLED, "B")
        assert set(kinds[1:]) == {
            (NotificationKind.POSITION_CHANGED, "C"),
            (NotificationKind.POSITION_CHANGED, "D"),
        }

    async def test_start_service_leaves_queue_and_anchors_next(
        self, engine, store, key, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B")
        started = datetime(2026, 2, 15, 9, 0, tzinfo=timezone.utc)

        await engine.start_service("A", started_at=started)

        state = await store.load_partition(key)
        assert state.get("A").status == S.ONGOING
        assert state.get("A").position is None
        assert state.get("B").position == 1
        # A runs 09:00-09:30, so B waits 90 minutes from opening.
        assert state.get("B").estimated_wait_minutes == 90

    async def test_complete_after_start(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A")
        await engine.start_service("A")

        result = await engine.complete("A")

        assert result.appointment.status == S.DONE

    async def test_invalid_transition_commits_nothing(
        self, engine, store, key, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B")
        version = store.version_of(key)

        with pytest.raises(InvalidTransition):
            await engine.complete("A")

        assert store.version_of(key) == version
        assert await waiting_order(store, key) == ["A", "B"]


class TestPriorityAndMoves:
    async def test_scenario_urgent_then_reorder(
        self, engine, store, key, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B", "C")

        result = await engine.change_priority("C", PriorityTier.URGENT, reorder=True)

        assert await waiting_order(store, key) == ["C", "A", "B"]
        kinds = {(i.kind, i.appointment_id) for i in result.intents}
        assert (NotificationKind.PRIORITY_CHANGED, "C") in kinds
        assert (NotificationKind.POSITION_CHANGED, "A") in kinds

    async def test_change_priority_without_reorder(
        self, engine, store, key, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B")

        await engine.change_priority("B", PriorityTier.HIGH)

        assert await waiting_order(store, key) == ["A", "B"]
        result = await engine.reprioritize(key)
        assert await waiting_order(store, key) == ["B", "A"]
        assert {c.appointment_id for c in result.position_changes} == {"A", "B"}

    async def test_reprioritize_twice_is_noop(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A", "B", B="urgent")

        await engine.reprioritize(key)
        version = store.version_of(key)
        second = await engine.reprioritize(key)

        assert second.position_changes == []
        assert second.version == version

    async def test_scenario_move_four_to_one(
        self, engine, store, key, make_appointment
    ) -> None:
        await seed_queue(store, make_appointment, "A", "B", "C", "D", "E")

        await engine.move_to_position("D", 1)

        assert await waiting_order(store, key) == ["D", "A", "B", "C", "E"]

    async def test_invalid_position(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A", "B")

        with pytest.raises(InvalidPosition):
            await engine.move_to_position("A", 3)


class TestBridge:
    async def test_urgent_conversion(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A", "B")
        await store.add(make_appointment("S", start=time(15, 0)))

        result = await engine.add_scheduled_to_queue("S", urgent=True)

        assert result.bridge.position == 1
        assert result.appointment.kind == AppointmentKind.QUEUE
        assert await waiting_order(store, key) == ["S", "A", "B"]
        subject = [i for i in result.intents if i.appointment_id == "S"]
        assert [i.kind for i in subject] == [NotificationKind.CONVERTED_TO_QUEUE]

    async def test_queue_entry_cannot_convert(self, engine, store, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A")

        with pytest.raises(InvalidState):
            await engine.add_scheduled_to_queue("A")


class TestReads:
    async def test_compose_and_estimates(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A", "B")
        await store.add(make_appointment("S", start=time(14, 0)))

        timeline = await engine.compose(key)
        estimates = await engine.estimate(key)

        assert len(timeline.blocks_of(BlockType.QUEUE)) == 2
        assert len(timeline.blocks_of(BlockType.SCHEDULED)) == 1
        assert [p.start for p in estimates] == [time(8, 0), time(8, 30)]
        assert await engine.estimate_wait("B") == 30

    async def test_availability(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A")

        queue = await engine.can_accept_queue(key, 30)
        scheduled = await engine.can_accept_scheduled(key, time(8, 0), 30)

        assert queue.estimated_position == 2
        assert not scheduled.can_accept


class TestConcurrencyControls:
    async def test_conflict_is_retried(self, config, key, make_appointment) -> None:
        store = FlakyStore(conflicts=2)
        await seed_queue(store, make_appointment, "A", "B")
        engine = QueueEngine(store, config, max_commit_attempts=3)

        await engine.move_to_position("B", 1)

        assert store.commit_calls == 3
        assert await waiting_order(store, key) == ["B", "A"]

    async def test_conflict_surfaces_after_max_attempts(
        self, config, key, make_appointment
    ) -> None:
        store = FlakyStore(conflicts=5)
        await seed_queue(store, make_appointment, "A", "B")
        engine = QueueEngine(store, config, max_commit_attempts=2)

        with pytest.raises(ConcurrentConflict):
            await engine.move_to_position("B", 1)
        assert await waiting_order(store, key) == ["A", "B"]

    async def test_stale_snapshot_loses_race(self, key, make_appointment) -> None:
        store = InMemoryAppointmentStore()
        await seed_queue(store, make_appointment, "A")
        snapshot = await store.load_partition(key)
        await store.add(make_appointment("B", status=S.PENDING))

        with pytest.raises(ConcurrentConflict):
            await store.commit(key, snapshot.version, snapshot.all())

    async def test_timeout(self, config, make_appointment) -> None:
        store = SlowStore()
        await seed_queue(store, make_appointment, "A", "B")
        engine = QueueEngine(store, config, operation_timeout_seconds=0.05)

        with pytest.raises(OperationTimeout):
            await engine.move_to_position("B", 1)

    async def test_change_feed_event(self, engine, store, key, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A", "B")
        events = engine.subscribe(key)
        pending = asyncio.create_task(anext(events))
        await asyncio.sleep(0)

        result = await engine.move_to_position("B", 1)
        event = await asyncio.wait_for(pending, timeout=1)
        await events.aclose()

        assert event.version == result.version
        assert set(event.changed_ids) >= {"A", "B"}
        assert engine.feed.subscriber_count(key) == 0

    async def test_idempotent_retry_is_replayed(self, config, store, key, make_appointment) -> None:
        await store.add(make_appointment("A", status=S.PENDING))
        idempotency = IdempotencyManager(client=FakeRedis())
        engine = QueueEngine(store, config, idempotency=idempotency)

        first = await engine.accept("A", request_id="req-1")
        version = store.version_of(key)
        second = await engine.accept("A", request_id="req-1")

        assert not first.replayed
        assert second.replayed
        assert second.appointment.position == 1
        assert store.version_of(key) == version

    async def test_failed_request_can_be_retried(self, config, store, make_appointment) -> None:
        await seed_queue(store, make_appointment, "A", "B")
        engine = QueueEngine(store, config, idempotency=IdempotencyManager(client=FakeRedis()))

        with pytest.raises(InvalidPosition):
            await engine.move_to_position("A", 9, request_id="req-2")

        result = await engine.move_to_position("A", 2, request_id="req-2")
        assert not result.replayed

    async def test_store_error_releases_claim(self, config, make_appointment) -> None:
        store = BrokenOnceStore()
        await store.add(make_appointment("A", status=S.PENDING))
        engine = QueueEngine(store, config, idempotency=IdempotencyManager(client=FakeRedis()))

        with pytest.raises(RuntimeError):
            await engine.accept("A", request_id="req-3")

        result = await engine.accept("A", request_id="req-3")
        assert not result.replayed
        assert result.appointment.position == 1

    async def test_cancelled_request_releases_claim(self, config, make_appointment) -> None:
        store = SlowStore()
        await store.add(make_appointment("A", status=S.PENDING))
        redis = FakeRedis()
        engine = QueueEngine(store, config, idempotency=IdempotencyManager(client=redis))

        task = asyncio.create_task(engine.accept("A", request_id="req-4"))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert redis.data == {}

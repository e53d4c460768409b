"""Queue Engine - Serialized, all-or-nothing mutations of a partition.

Every mutation follows the same path: partition lock, fresh snapshot,
component operation on a working copy, wait recomputation, invariant check,
version-checked commit, change event, notification intents. A lost
optimistic-concurrency race re-runs the whole path on a new snapshot.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, time, timezone

from src.contracts.appointment import (
    AppointmentKind,
    AppointmentStatus,
    PartitionKey,
    PriorityTier,
)
from src.contracts.notification import NotificationIntent
from src.contracts.queue import BridgeResult, MutationResult, ProjectedStart
from src.contracts.schedule import ScheduleConfig
from src.contracts.timeline import Availability, Timeline
from src.core.bridge import ScheduledQueueBridge
from src.core.errors import (
    ConcurrentConflict,
    InvalidState,
    OperationTimeout,
    QueueEngineError,
)
from src.core.estimator import estimate_wait
from src.core.events import ChangeFeed, PartitionChanged
from src.core.fsm import StatusMachine
from src.core.idempotency import IdempotencyManager
from src.core.locks import PartitionLocks
from src.core.notifications import IntentEmitter, net_changes
from src.core.partition import PartitionState
from src.core.positions import QueuePositionManager
from src.core.projection import free_at, project, recompute_waits
from src.core.reorder import PriorityReorderer
from src.core.timeline import TimelineComposer
from src.services.observability import get_current_trace_id, get_tracer
from src.services.store import AppointmentStore
from src.utils.logger import get_logger, log_context

logger = get_logger(__name__)
tracer = get_tracer(__name__)

ACCEPT_TARGETS = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


@dataclass
class Mutation:
    """Working set of one mutation attempt."""

    state: PartitionState
    manager: QueuePositionManager
    emitter: IntentEmitter
    subject_id: str | None = None
    intents: list[NotificationIntent] = field(default_factory=list)
    bridge: BridgeResult | None = None


Operation = Callable[[Mutation], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueueEngine:
    """Entry point for every queue and timeline operation."""

    def __init__(
        self,
        store: AppointmentStore,
        config: ScheduleConfig | None = None,
        *,
        locks: PartitionLocks | None = None,
        feed: ChangeFeed | None = None,
        idempotency: IdempotencyManager | None = None,
        max_commit_attempts: int = 3,
        operation_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.config = config or ScheduleConfig()
        self.locks = locks or PartitionLocks()
        self.feed = feed or ChangeFeed()
        self.idempotency = idempotency
        self.max_commit_attempts = max_commit_attempts
        self.operation_timeout_seconds = operation_timeout_seconds
        self.clock = clock

        self.status_machine = StatusMachine()
        self.reorderer = PriorityReorderer(self.config)
        self.bridge = ScheduledQueueBridge(self.config)
        self.composer = TimelineComposer(self.config)

    # ------------------------------------------------------------------
    # Mutation pipeline
    # ------------------------------------------------------------------

    async def _key_for(self, appointment_id: str) -> PartitionKey:
        return PartitionKey.of(await self.store.get(appointment_id))

    async def _mutate(
        self,
        name: str,
        key: PartitionKey,
        operation: Operation,
        request_id: str | None = None,
    ) -> MutationResult:
        """Run ``operation`` under the partition lock with a deadline.

        Raises:
            OperationTimeout: If the deadline passed. The commit may or may
                not have landed; callers must re-read.
            QueueEngineError: Whatever the operation or the store raised.

        A failed or cancelled mutation releases its idempotency claim, so
        the same ``request_id`` can be retried at once.
        """
        if request_id and self.idempotency:
            is_duplicate, cached = await self.idempotency.claim(request_id)
            if is_duplicate:
                if cached is None:
                    raise ConcurrentConflict(
                        "Request is already being processed",
                        request_id=request_id,
                        partition=str(key),
                    )
                logger.info("mutation_replayed", operation=name, request_id=request_id)
                return MutationResult.model_validate(cached).model_copy(
                    update={"replayed": True}
                )

        try:
            result = await asyncio.wait_for(
                self._run_locked(name, key, operation),
                timeout=self.operation_timeout_seconds,
            )
        except asyncio.TimeoutError:
            if request_id and self.idempotency:
                await self.idempotency.release(request_id)
            logger.error(
                "queue_operation_timeout",
                operation=name,
                partition=str(key),
                timeout_seconds=self.operation_timeout_seconds,
            )
            raise OperationTimeout(
                "Operation did not finish in time; re-read the partition",
                operation=name,
                partition=str(key),
            ) from None
        except QueueEngineError as e:
            if request_id and self.idempotency:
                await self.idempotency.release(request_id)
            logger.warning(
                "queue_operation_rejected",
                operation=name,
                error=e.code,
                reason=e.message,
                **e.context,
            )
            raise
        except Exception as e:
            if request_id and self.idempotency:
                await self.idempotency.release(request_id)
            logger.error(
                "queue_operation_failed",
                operation=name,
                partition=str(key),
                error=str(e),
            )
            raise
        except asyncio.CancelledError:
            if request_id and self.idempotency:
                await self.idempotency.release(request_id)
            raise

        if request_id and self.idempotency:
            await self.idempotency.store_result(request_id, result.model_dump(mode="json"))
        return result

    async def _run_locked(
        self, name: str, key: PartitionKey, operation: Operation
    ) -> MutationResult:
        async with self.locks.hold(key):
            with (
                log_context(operation=name, partition=str(key)),
                tracer.start_as_current_span(f"queue.{name}") as span,
            ):
                span.set_attribute("partition", str(key))
                for attempt in range(1, self.max_commit_attempts + 1):
                    span.set_attribute("attempt", attempt)
                    try:
                        return await self._attempt(name, key, operation)
                    except ConcurrentConflict:
                        if attempt >= self.max_commit_attempts:
                            raise
                        logger.warning(
                            "commit_conflict_retry",
                            operation=name,
                            partition=str(key),
                            attempt=attempt,
                        )
        # Unreachable with max_commit_attempts >= 1.
        raise ConcurrentConflict("No commit attempt was made", partition=str(key))

    async def _attempt(
        self, name: str, key: PartitionKey, operation: Operation
    ) -> MutationResult:
        snapshot = await self.store.load_partition(key)
        state = snapshot.copy()
        mutation = Mutation(
            state=state,
            manager=QueuePositionManager(state),
            emitter=IntentEmitter(get_current_trace_id()),
        )

        operation(mutation)
        recompute_waits(state, self.config)
        state.check_invariants()

        dirty = state.dirty_appointments()
        if dirty:
            version = await self.store.commit(key, state.version, dirty)
            logger.info(
                "partition_committed",
                operation=name,
                partition=str(key),
                version=version,
                rows=len(dirty),
            )
            self.feed.publish(
                PartitionChanged(
                    key=key, version=version, changed_ids=[apt.id for apt in dirty]
                )
            )
        else:
            version = state.version

        exclude = [mutation.subject_id] if mutation.bridge and mutation.subject_id else []
        intents = mutation.intents + mutation.emitter.position_changes(
            state, mutation.manager.changes, exclude=exclude
        )
        subject = state.get(mutation.subject_id) if mutation.subject_id else None
        return MutationResult(
            key=key,
            version=version,
            appointment=subject,
            position_changes=net_changes(mutation.manager.changes),
            intents=intents,
            bridge=mutation.bridge,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def accept(
        self,
        appointment_id: str,
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        *,
        urgent: bool | None = None,
        request_id: str | None = None,
    ) -> MutationResult:
        """Accept (or confirm) an appointment.

        A queue appointment that becomes accepted without a position is
        inserted: at the front when ``urgent`` (defaulting to its tier being
        urgent), otherwise at the back.

        Raises:
            InvalidState: If ``status`` is not an accepted status.
            InvalidTransition: If the status change is not allowed.
        """
        if status not in ACCEPT_TARGETS:
            raise InvalidState(
                "Acceptance must target scheduled or confirmed",
                appointment_id=appointment_id,
                target=status.value,
            )

        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            appointment = m.state.get(appointment_id)
            self.status_machine.transition(appointment, status)
            m.state.touch(appointment_id)
            if appointment.kind == AppointmentKind.QUEUE and appointment.position is None:
                if urgent is None:
                    front = appointment.priority == PriorityTier.URGENT
                else:
                    front = urgent
                if front:
                    appointment.priority = PriorityTier.URGENT
                m.manager.insert(appointment_id, urgent=front)

        key = await self._key_for(appointment_id)
        return await self._mutate("accept", key, operation, request_id)

    async def cancel(
        self,
        appointment_id: str,
        reason: str | None = None,
        *,
        request_id: str | None = None,
    ) -> MutationResult:
        """Cancel an appointment and close the gap it leaves in the queue."""

        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            appointment = m.state.get(appointment_id)
            self.status_machine.transition(appointment, AppointmentStatus.CANCELLED)
            m.state.touch(appointment_id)
            m.manager.remove(appointment_id)
            m.intents.append(m.emitter.cancelled(appointment, reason))

        key = await self._key_for(appointment_id)
        return await self._mutate("cancel", key, operation, request_id)

    async def start_service(
        self,
        appointment_id: str,
        *,
        started_at: datetime | None = None,
        request_id: str | None = None,
    ) -> MutationResult:
        """Put a customer in the chair.

        The entry leaves the waiting subset; the queue behind it moves up
        and is projected from the end of this service.
        """

        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            appointment = m.state.get(appointment_id)
            self.status_machine.transition(appointment, AppointmentStatus.ONGOING)
            appointment.started_at = started_at or self.clock()
            m.state.touch(appointment_id)
            m.manager.remove(appointment_id)

        key = await self._key_for(appointment_id)
        return await self._mutate("start_service", key, operation, request_id)

    async def complete(
        self, appointment_id: str, *, request_id: str | None = None
    ) -> MutationResult:
        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            appointment = m.state.get(appointment_id)
            self.status_machine.transition(appointment, AppointmentStatus.DONE)
            m.state.touch(appointment_id)
            m.manager.remove(appointment_id)

        key = await self._key_for(appointment_id)
        return await self._mutate("complete", key, operation, request_id)

    async def change_priority(
        self,
        appointment_id: str,
        tier: PriorityTier,
        *,
        reorder: bool = False,
        request_id: str | None = None,
    ) -> MutationResult:
        """Record a new tier, optionally reordering the queue in the same commit."""

        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            previous = m.manager.change_priority(appointment_id, tier)
            if previous != tier:
                if reorder:
                    self.reorderer.reorder(m.state, m.manager)
                m.intents.append(
                    m.emitter.priority_changed(m.state.get(appointment_id), previous)
                )

        key = await self._key_for(appointment_id)
        return await self._mutate("change_priority", key, operation, request_id)

    async def reprioritize(
        self, key: PartitionKey, *, request_id: str | None = None
    ) -> MutationResult:
        """Reorder the whole waiting queue by tier."""

        def operation(m: Mutation) -> None:
            self.reorderer.reorder(m.state, m.manager)

        return await self._mutate("reprioritize", key, operation, request_id)

    async def move_to_position(
        self,
        appointment_id: str,
        new_position: int,
        *,
        request_id: str | None = None,
    ) -> MutationResult:
        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            m.manager.move_to_position(appointment_id, new_position)

        key = await self._key_for(appointment_id)
        return await self._mutate("move_to_position", key, operation, request_id)

    async def add_scheduled_to_queue(
        self,
        appointment_id: str,
        *,
        urgent: bool = False,
        request_id: str | None = None,
    ) -> MutationResult:
        """Convert a scheduled appointment into a queue entry (one way)."""

        def operation(m: Mutation) -> None:
            m.subject_id = appointment_id
            m.bridge = self.bridge.add_scheduled_to_queue(
                m.state, appointment_id, urgent=urgent, manager=m.manager
            )
            m.intents.append(
                m.emitter.converted_to_queue(m.state.get(appointment_id), m.bridge)
            )

        key = await self._key_for(appointment_id)
        return await self._mutate("add_scheduled_to_queue", key, operation, request_id)

    # ------------------------------------------------------------------
    # Reads (lock-free, one consistent snapshot each)
    # ------------------------------------------------------------------

    async def compose(self, key: PartitionKey, *, now: datetime | None = None) -> Timeline:
        state = await self.store.load_partition(key)
        with tracer.start_as_current_span("queue.compose") as span:
            span.set_attribute("partition", str(key))
            return self.composer.compose(state, now=now)

    async def estimate(self, key: PartitionKey) -> list[ProjectedStart]:
        return project(await self.store.load_partition(key), self.config)

    async def estimate_wait(self, appointment_id: str) -> int:
        state = await self.store.load_partition(await self._key_for(appointment_id))
        return estimate_wait(
            state.waiting(),
            appointment_id,
            self.config.business_start,
            self.config.breaks,
            buffer_minutes=self.config.buffer_minutes,
            default_duration=self.config.default_duration_minutes,
            free_at=free_at(state, self.config),
        )

    async def can_accept_scheduled(
        self, key: PartitionKey, start: time, duration_minutes: int
    ) -> Availability:
        state = await self.store.load_partition(key)
        return self.composer.can_accept_scheduled(state, start, duration_minutes)

    async def can_accept_queue(
        self, key: PartitionKey, duration_minutes: int
    ) -> Availability:
        state = await self.store.load_partition(key)
        return self.composer.can_accept_queue(state, duration_minutes)

    def subscribe(self, key: PartitionKey) -> AsyncIterator[PartitionChanged]:
        return self.feed.subscribe(key)

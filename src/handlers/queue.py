"""Queue Handler - Staff endpoints over the queue engine."""

from datetime import date, time

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from src.contracts.appointment import PartitionKey
from src.contracts.queue import (
    AcceptRequest,
    CancelRequest,
    ConvertRequest,
    MoveRequest,
    MutationResult,
    PriorityRequest,
    ProjectedStart,
    WaitEstimate,
)
from src.contracts.timeline import Availability, Timeline
from src.core.dependencies import get_engine
from src.core.engine import QueueEngine
from src.core.errors import (
    ConcurrentConflict,
    InvalidPosition,
    InvalidState,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    OperationTimeout,
    QueueEngineError,
)
from src.utils.logger import get_logger

router = APIRouter(prefix="/queue", tags=["queue"])
logger = get_logger(__name__)

STATUS_CODES: dict[type[QueueEngineError], int] = {
    NotFound: 404,
    InvalidState: 409,
    InvalidTransition: 409,
    ConcurrentConflict: 409,
    InvalidPosition: 422,
    OperationTimeout: 504,
    InvariantViolation: 500,
}


async def queue_error_handler(request: Request, exc: QueueEngineError) -> JSONResponse:
    """Translate engine errors into HTTP responses.

    The body carries the error code so a client knows whether to re-read
    the partition before retrying.
    """
    status_code = next(
        (code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error("queue_request_failed", path=request.url.path, error=exc.code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def _key(resource_id: str, day: date) -> PartitionKey:
    return PartitionKey(resource_id=resource_id, date=day)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post("/appointments/{appointment_id}/accept", response_model=MutationResult)
async def accept_appointment(
    appointment_id: str,
    body: AcceptRequest | None = None,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    """Accept or confirm an appointment; queue bookings get a position."""
    body = body or AcceptRequest()
    return await engine.accept(
        appointment_id,
        body.status,
        urgent=body.urgent,
        request_id=idempotency_key,
    )


@router.post("/appointments/{appointment_id}/cancel", response_model=MutationResult)
async def cancel_appointment(
    appointment_id: str,
    body: CancelRequest | None = None,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    body = body or CancelRequest()
    return await engine.cancel(
        appointment_id, body.reason, request_id=idempotency_key
    )


@router.post("/appointments/{appointment_id}/start", response_model=MutationResult)
async def start_service(
    appointment_id: str,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    return await engine.start_service(appointment_id, request_id=idempotency_key)


@router.post(
    "/appointments/{appointment_id}/complete", response_model=MutationResult
)
async def complete_service(
    appointment_id: str,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    return await engine.complete(appointment_id, request_id=idempotency_key)


@router.post(
    "/appointments/{appointment_id}/priority", response_model=MutationResult
)
async def change_priority(
    appointment_id: str,
    body: PriorityRequest,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    return await engine.change_priority(
        appointment_id,
        body.priority,
        reorder=body.reorder,
        request_id=idempotency_key,
    )


@router.post("/appointments/{appointment_id}/move", response_model=MutationResult)
async def move_appointment(
    appointment_id: str,
    body: MoveRequest,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    """Manual override of one entry's position."""
    return await engine.move_to_position(
        appointment_id, body.position, request_id=idempotency_key
    )


@router.post(
    "/appointments/{appointment_id}/convert", response_model=MutationResult
)
async def convert_to_queue(
    appointment_id: str,
    body: ConvertRequest | None = None,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    """Move a scheduled appointment into the queue."""
    body = body or ConvertRequest()
    return await engine.add_scheduled_to_queue(
        appointment_id, urgent=body.urgent, request_id=idempotency_key
    )


@router.post(
    "/partitions/{resource_id}/{day}/reprioritize", response_model=MutationResult
)
async def reprioritize(
    resource_id: str,
    day: date,
    idempotency_key: str | None = Header(default=None),
    engine: QueueEngine = Depends(get_engine),
) -> MutationResult:
    return await engine.reprioritize(
        _key(resource_id, day), request_id=idempotency_key
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/partitions/{resource_id}/{day}/timeline", response_model=Timeline)
async def get_timeline(
    resource_id: str,
    day: date,
    engine: QueueEngine = Depends(get_engine),
) -> Timeline:
    return await engine.compose(_key(resource_id, day))


@router.get(
    "/partitions/{resource_id}/{day}/estimates",
    response_model=list[ProjectedStart],
)
async def get_estimates(
    resource_id: str,
    day: date,
    engine: QueueEngine = Depends(get_engine),
) -> list[ProjectedStart]:
    return await engine.estimate(_key(resource_id, day))


@router.get("/appointments/{appointment_id}/wait", response_model=WaitEstimate)
async def get_wait(
    appointment_id: str,
    engine: QueueEngine = Depends(get_engine),
) -> WaitEstimate:
    wait = await engine.estimate_wait(appointment_id)
    return WaitEstimate(appointment_id=appointment_id, estimated_wait_minutes=wait)


@router.get(
    "/partitions/{resource_id}/{day}/availability/queue",
    response_model=Availability,
)
async def queue_availability(
    resource_id: str,
    day: date,
    duration: int = Query(default=30, gt=0),
    engine: QueueEngine = Depends(get_engine),
) -> Availability:
    return await engine.can_accept_queue(_key(resource_id, day), duration)


@router.get(
    "/partitions/{resource_id}/{day}/availability/scheduled",
    response_model=Availability,
)
async def scheduled_availability(
    resource_id: str,
    day: date,
    start: time,
    duration: int = Query(default=30, gt=0),
    engine: QueueEngine = Depends(get_engine),
) -> Availability:
    return await engine.can_accept_scheduled(_key(resource_id, day), start, duration)

"""Engine Errors - Typed failures returned to the immediate caller."""

from typing import Any


class QueueEngineError(Exception):
    """Base exception for queue engine failures.

    ``context`` holds structured fields (appointment id, partition, ...)
    that are logged alongside the error.
    """

    code = "queue_engine_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context}


class NotFound(QueueEngineError):
    """Appointment absent from the partition or the store."""

    code = "not_found"


class InvalidState(QueueEngineError):
    """Precondition violated (e.g. converting an appointment already queued)."""

    code = "invalid_state"


class InvalidPosition(QueueEngineError):
    """Target position outside ``1..N``."""

    code = "invalid_position"


class InvalidTransition(QueueEngineError):
    """Illegal status change."""

    code = "invalid_transition"


class ConcurrentConflict(QueueEngineError):
    """Partition changed between read and write. Retry with a fresh read."""

    code = "concurrent_conflict"


class InvariantViolation(QueueEngineError):
    """Partition would be left with duplicate, missing or misplaced positions."""

    code = "invariant_violation"


class OperationTimeout(QueueEngineError):
    """Mutation exceeded its deadline. Outcome unknown, re-read before retrying."""

    code = "operation_timeout"

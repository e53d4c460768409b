"""Core package - Queue, estimation and timeline logic.

The engine lives in ``src.core.engine`` and is imported from there; it
depends on the services package, which in turn uses the modules below.
"""

from src.core.errors import (
    ConcurrentConflict,
    InvalidPosition,
    InvalidState,
    InvalidTransition,
    NotFound,
    QueueEngineError,
)
from src.core.fsm import StatusMachine, can_transition
from src.core.partition import PartitionState

__all__ = [
    "ConcurrentConflict",
    "InvalidPosition",
    "InvalidState",
    "InvalidTransition",
    "NotFound",
    "QueueEngineError",
    "StatusMachine",
    "can_transition",
    "PartitionState",
]

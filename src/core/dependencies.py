"""Application Dependencies.

Wires the store, the idempotency manager and the engine from settings so
the HTTP layer and scripts share one construction path, and tests can swap
in the in-memory store.
"""

from dataclasses import dataclass

from src.config.settings import Settings, get_settings
from src.core.engine import QueueEngine
from src.core.idempotency import IdempotencyManager
from src.services.store import AppointmentStore, InMemoryAppointmentStore
from src.services.supabase import SupabaseAppointmentStore
from src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AppDependencies:
    """Long-lived collaborators of the running application.

    Attributes:
        store: Appointment storage backend.
        engine: Queue engine bound to ``store``.
        idempotency: Redis request deduplication, None when disabled.
    """

    store: AppointmentStore
    engine: QueueEngine
    idempotency: IdempotencyManager | None = None

    async def close(self) -> None:
        if self.idempotency:
            await self.idempotency.close()
        await self.store.close()


def build_store(settings: Settings) -> AppointmentStore:
    if settings.store_backend == "supabase":
        return SupabaseAppointmentStore()
    return InMemoryAppointmentStore()


def build_dependencies(
    settings: Settings | None = None,
    store: AppointmentStore | None = None,
) -> AppDependencies:
    """Assemble the engine and its collaborators from settings."""
    settings = settings or get_settings()
    store = store or build_store(settings)
    idempotency = (
        IdempotencyManager(
            redis_url=settings.redis_url,
            ttl_seconds=settings.idempotency_ttl_seconds,
        )
        if settings.enable_idempotency
        else None
    )
    engine = QueueEngine(
        store,
        settings.schedule_config(),
        idempotency=idempotency,
        max_commit_attempts=settings.max_commit_attempts,
        operation_timeout_seconds=settings.operation_timeout_seconds,
    )
    logger.info(
        "engine_configured",
        store_backend=settings.store_backend,
        idempotency=idempotency is not None,
    )
    return AppDependencies(store=store, engine=engine, idempotency=idempotency)


_dependencies: AppDependencies | None = None


def get_dependencies() -> AppDependencies:
    """Return or create the global dependencies."""
    global _dependencies
    if _dependencies is None:
        _dependencies = build_dependencies()
    return _dependencies


def set_dependencies(dependencies: AppDependencies | None) -> None:
    global _dependencies
    _dependencies = dependencies


def get_engine() -> QueueEngine:
    """FastAPI dependency returning the shared engine."""
    return get_dependencies().engine

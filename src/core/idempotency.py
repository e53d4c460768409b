"""Idempotency Manager - Ensures each mutation request is applied only once."""

import json
from typing import Any

import redis.asyncio as redis

from src.utils.logger import get_logger

logger = get_logger(__name__)

PROCESSING = "processing"


class IdempotencyManager:
    """Remembers mutation request ids in Redis with a TTL.

    A request id seen before is a retry: the stored result is returned instead
    of applying the mutation a second time. When Redis is unreachable every
    check fails open and the request is processed normally.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        ttl_seconds: int = 86400,  # 24 hours
        prefix: str = "queue-mutation:",
        client: redis.Redis | None = None,
    ) -> None:
        """Initialize the IdempotencyManager.

        Args:
            redis_url: Redis connection URL
            ttl_seconds: Time-to-live for request keys (default: 24 hours)
            prefix: Prefix for Redis keys
            client: Pre-built client, mainly for tests
        """
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._client = client

    async def _get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            try:
                client = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await client.ping()
                self._client = client
                logger.info("redis_connected", url=self.redis_url)
            except Exception as e:
                logger.warning(
                    "redis_connection_failed",
                    error=str(e),
                    message="Operating without Redis - idempotency disabled",
                )
                raise
        return self._client

    def _make_key(self, request_id: str) -> str:
        return f"{self.prefix}{request_id}"

    async def claim(self, request_id: str) -> tuple[bool, dict[str, Any] | None]:
        """Atomically check for a previous attempt and mark this one in flight.

        Uses Redis SET NX so two concurrent retries cannot both proceed.

        Args:
            request_id: Caller-supplied id of the mutation request

        Returns:
            Tuple of (is_duplicate, cached_result)
            - is_duplicate: True if the id was already claimed
            - cached_result: Stored result when the first attempt finished
        """
        try:
            client = await self._get_client()
            key = self._make_key(request_id)

            was_set = await client.set(key, PROCESSING, ex=self.ttl_seconds, nx=True)
            if was_set:
                logger.debug("idempotency_key_acquired", request_id=request_id)
                return False, None

            stored = await client.get(key)
            cached_result = None
            if stored and stored != PROCESSING:
                try:
                    cached_result = json.loads(stored)
                except json.JSONDecodeError:
                    logger.warning("idempotency_result_unreadable", request_id=request_id)

            logger.info(
                "duplicate_request_detected",
                request_id=request_id,
                has_cached_result=cached_result is not None,
            )
            return True, cached_result
        except Exception as e:
            logger.warning(
                "idempotency_claim_failed",
                request_id=request_id,
                error=str(e),
            )
            # Fail open - allow processing
            return False, None

    async def store_result(self, request_id: str, result: dict[str, Any]) -> bool:
        """Replace the in-flight marker with the finished result.

        Returns:
            True if stored, False when Redis is unavailable
        """
        try:
            client = await self._get_client()
            await client.setex(self._make_key(request_id), self.ttl_seconds, json.dumps(result))
            logger.debug("request_result_stored", request_id=request_id)
            return True
        except Exception as e:
            logger.warning("store_result_failed", request_id=request_id, error=str(e))
            return False

    async def release(self, request_id: str) -> None:
        """Forget a claim whose mutation failed so the caller may retry."""
        try:
            client = await self._get_client()
            await client.delete(self._make_key(request_id))
        except Exception as e:
            logger.warning("idempotency_release_failed", request_id=request_id, error=str(e))

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_connection_closed")

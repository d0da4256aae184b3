"""Redis client used for cross-process change notifications."""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from functools import wraps
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from taskcycle.core.config import Constants, settings


logger = logging.getLogger(__name__)

# Type variable for generic retry decorator
T = TypeVar("T")


def with_retry(
    max_retries: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Decorator to retry async functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 0.1)

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Redis operation failed (attempt %d/%d): %s. Retrying in %.2fs",
                            attempt + 1,
                            max_retries,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            "Redis operation failed after %d attempts: %s",
                            max_retries,
                            e,
                        )
            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator


class RedisClient:
    """Async Redis client wrapper with connection pooling."""

    def __init__(self, url: str | None = None, *, client: Redis | None = None) -> None:
        """Initialize Redis client from ``url`` (defaults to settings) or an existing client."""
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = client
        url = url or settings.redis_url
        self._enabled = client is not None or bool(url)

        # Health tracking
        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        if self._client is None and url:
            try:
                self._pool = ConnectionPool.from_url(
                    url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized with URL: %s", url)
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis client: %s. Change notifications stay in-process.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        elif self._client is None:
            logger.info("Redis URL not configured. Change notifications stay in-process.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Get Redis health status."""
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
        }

    def _record_success(self) -> None:
        self._last_successful_operation = datetime.now(UTC)
        self._total_operations += 1

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._total_operations += 1

    async def publish(self, channel: str, message: str) -> bool:
        """Publish a message with retry.

        Returns:
            True if published, False if Redis is unavailable or every attempt failed
        """
        if not self.is_available or not self._client:
            return False

        client = self._client

        @with_retry(max_retries=3, base_delay=0.1)
        async def _publish() -> int:
            return await client.publish(channel, message)

        try:
            receivers = await _publish()
            self._record_success()
            logger.debug("Published to %s (%d receivers)", channel, receivers)
            return True
        except RedisError as e:
            self._record_failure()
            logger.error("Redis PUBLISH failed on %s: %s", channel, e)
            return False

    def pubsub(self) -> PubSub | None:
        """Return a new PubSub handle, or None when Redis is unavailable."""
        if not self.is_available or not self._client:
            return None
        return self._client.pubsub()

    async def ping(self) -> bool:
        """Ping Redis to check connection."""
        if not self.is_available or not self._client:
            return False

        try:
            result = await self._client.ping()  # type: ignore[misc]
            return bool(result)
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()

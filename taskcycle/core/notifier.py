"""Change notifiers: in-process fan-out and Redis pub/sub."""

import asyncio
import contextlib
import logging
from collections import defaultdict

from pydantic import ValidationError
from redis.exceptions import RedisError

from taskcycle.core.config import Constants
from taskcycle.core.redis_client import RedisClient, redis_client
from taskcycle.stores.base import ChangeCallback, ChangeEvent, Unsubscribe


logger = logging.getLogger(__name__)


def change_channel(group_id: str) -> str:
    """Pub/sub channel carrying change events for one group."""
    return f"{Constants.CHANGE_CHANNEL_PREFIX}:{group_id}"


async def _deliver(callback: ChangeCallback, event: ChangeEvent) -> None:
    try:
        await callback(event)
    except Exception:
        # One failing subscriber must not stop delivery to the others
        logger.exception(
            "Change subscriber failed",
            extra={"group_id": event.group_id, "table": event.table, "record_id": event.record_id},
        )


class LocalChangeNotifier:
    """Delivers change events to subscribers in the same process."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)

    async def subscribe(self, group_id: str, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers[group_id].append(callback)
        logger.debug("Subscribed to local changes for group %s", group_id)

        async def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers[group_id].remove(callback)

        return _unsubscribe

    async def publish(self, event: ChangeEvent) -> None:
        for callback in list(self._subscribers.get(event.group_id, ())):
            await _deliver(callback, event)

    def subscriber_count(self, group_id: str) -> int:
        return len(self._subscribers.get(group_id, ()))


class RedisChangeNotifier:
    """Publishes change events on Redis so every process watching a group reconciles.

    Falls back to in-process delivery when Redis is not configured.
    """

    def __init__(self, client: RedisClient | None = None) -> None:
        self._client = client or redis_client
        self._local = LocalChangeNotifier()
        self._listeners: set[asyncio.Task[None]] = set()

    async def subscribe(self, group_id: str, callback: ChangeCallback) -> Unsubscribe:
        pubsub = self._client.pubsub()
        if pubsub is None:
            return await self._local.subscribe(group_id, callback)

        channel = change_channel(group_id)
        await pubsub.subscribe(channel)
        listener = asyncio.create_task(self._listen(pubsub, callback), name=f"listen:{channel}")
        self._listeners.add(listener)
        logger.info("Subscribed to Redis change channel %s", channel)

        async def _unsubscribe() -> None:
            listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await listener
            self._listeners.discard(listener)
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning("Failed to close Redis subscription %s: %s", channel, e)

        return _unsubscribe

    async def _listen(self, pubsub, callback: ChangeCallback) -> None:  # noqa: ANN001
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                event = ChangeEvent.model_validate_json(message["data"])
            except ValidationError as e:
                logger.warning("Ignoring malformed change event: %s", e)
                continue
            await _deliver(callback, event)

    async def publish(self, event: ChangeEvent) -> None:
        published = await self._client.publish(change_channel(event.group_id), event.model_dump_json())
        if not published:
            await self._local.publish(event)

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict

from chatrelay.settings import Settings
from chatrelay.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class _IdleSub:

    async def run(self):
        await asyncio.Future()

    async def cancel(self):
        return


class LocalBus:
    """Single-process delivery straight to the sockets held by this worker."""

    enabled = False

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def publish(self, channel: str, message: str) -> None:
        _, _, user_id = channel.partition(":")
        await self._manager.send_personal_message(user_id, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        return _IdleSub()

    async def close(self) -> None:
        return


class _RedisSub:

    def __init__(self, pubsub, channel: str, on_message: Callable[[str], Awaitable[None]]) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self):
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg and msg.get("type") == "message":
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await self._on_message(data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("realtime subscription error", exc_info=True, extra={"channel": self._channel})
                await asyncio.sleep(0.5)

    async def cancel(self):
        self._running = False
        await self._pubsub.unsubscribe(self._channel)
        await self._pubsub.aclose()


class RedisBus:
    """Cross-worker fan-out over Redis pub/sub, one channel per user."""

    enabled = True

    def __init__(self, client) -> None:
        self._redis = client

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return _RedisSub(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


def build_bus(settings: Settings, manager: ConnectionManager):
    if not settings.redis_url:
        return LocalBus(manager)
    import redis.asyncio as redis

    return RedisBus(redis.from_url(settings.redis_url))


async def publish_event(bus, user_id: str, event: Dict[str, Any]) -> None:
    """Best effort: realtime events are hints, clients re-sync over HTTP."""
    try:
        await bus.publish(user_channel(user_id), json.dumps(event, default=str))
    except Exception:
        logger.warning("realtime publish failed", exc_info=True, extra={"recipient_id": user_id, "event": event.get("type")})

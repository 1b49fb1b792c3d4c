"""
Redis Real-time Channel

Production implementation for several uvicorn workers (and the Celery
worker) sharing one fan-out. Every emit is published to a Redis pub/sub
channel; each process runs a listener that delivers envelopes to the
connections it holds.

Redis pub/sub is fire-and-forget, which matches the at-most-once
contract of the channel: a process that is not subscribed at publish
time never sees the event. After a broker error the listener resubscribes
with exponential backoff; events published meanwhile are lost.

Version: 1.0.0
"""

import asyncio
import logging
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from order_tracker.services.realtime.base import (
    BaseRealtimeChannel,
    decode_envelope,
    encode_envelope,
)

logger = logging.getLogger(__name__)

MAX_RECONNECT_DELAY = 30.0


class RedisRealtimeChannel(BaseRealtimeChannel):
    """Rooms shared across processes through Redis pub/sub."""

    def __init__(
        self,
        redis_url: str,
        channel_name: str,
        client: Optional[aioredis.Redis] = None,
        reconnect_delay: float = 1.0,
    ):
        super().__init__()
        self.channel_name = channel_name
        self._redis = client or aioredis.from_url(redis_url, decode_responses=True)
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self.reconnect_delay = reconnect_delay

    @property
    def provider_name(self) -> str:
        return "redis"

    async def start(self) -> None:
        self._pubsub = await self._subscribe()
        self._listener = asyncio.create_task(self._listen(), name="realtime-listener")
        logger.info(f"Subscribed to Redis channel {self.channel_name}")

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Redis listener had already failed: {e}")
            self._listener = None
        if self._pubsub is not None:
            await self._close_pubsub(self._pubsub, unsubscribe=True)
            self._pubsub = None
        await self._redis.aclose()
        logger.info("Redis real-time channel closed")

    async def health_check(self) -> bool:
        if self._listener is not None and self._listener.done():
            logger.error("Redis listener is not running; live events are not delivered")
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def emit(self, room: str, event: str, payload: Any) -> None:
        try:
            await self._redis.publish(self.channel_name, encode_envelope(room, event, payload))
        except RedisError as e:
            # Live push is best-effort; the notification rows are already stored
            logger.warning(f"Could not publish {event} to {room}: {e}")

    async def _subscribe(self):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel_name)
        return pubsub

    async def _close_pubsub(self, pubsub, unsubscribe: bool = False) -> None:
        try:
            if unsubscribe:
                await pubsub.unsubscribe(self.channel_name)
        except RedisError as e:
            logger.warning(f"Could not unsubscribe from {self.channel_name}: {e}")
        finally:
            await pubsub.aclose()

    async def _listen(self) -> None:
        """Deliver envelopes until cancelled, resubscribing after broker errors."""
        delay = self.reconnect_delay
        while True:
            try:
                if self._pubsub is None:
                    self._pubsub = await self._subscribe()
                    logger.info(f"Resubscribed to Redis channel {self.channel_name}")
                async for message in self._pubsub.listen():
                    delay = self.reconnect_delay
                    if message.get("type") != "message":
                        continue
                    try:
                        room, event, payload = decode_envelope(message["data"])
                    except ValueError as e:
                        logger.warning(f"Ignoring malformed envelope: {e}")
                        continue
                    await self._deliver(room, event, payload)
                logger.warning(f"Redis subscription to {self.channel_name} ended")
                return
            except RedisError as e:
                logger.error(f"Redis listener lost its subscription: {e}; retrying in {delay}s")
                if self._pubsub is not None:
                    await self._close_pubsub(self._pubsub)
                    self._pubsub = None
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RECONNECT_DELAY)

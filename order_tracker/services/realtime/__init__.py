"""
Real-time Channel Factory

Returns the in-process or Redis channel based on ENV_MODE.

The channel is not cached here: the application lifespan creates exactly
one, starts it, hangs it on ``app.state`` and stops it on shutdown, and
everything that needs it receives it as a constructor argument.
"""

import logging
from typing import Optional

from order_tracker.core.config import Settings, get_settings
from order_tracker.services.realtime.base import (
    ADMIN_ROOM,
    BaseRealtimeChannel,
    Connection,
    decode_envelope,
    encode_envelope,
    role_room,
    user_room,
)
from order_tracker.services.realtime.local import LocalRealtimeChannel
from order_tracker.services.realtime.redis import RedisRealtimeChannel

logger = logging.getLogger(__name__)


def create_realtime_channel(settings: Optional[Settings] = None) -> BaseRealtimeChannel:
    """Build the channel configured for this environment."""
    settings = settings or get_settings()

    if settings.use_redis_channel:
        logger.info(f"Real-time Channel: Using RedisRealtimeChannel ({settings.env_mode.value} mode)")
        return RedisRealtimeChannel(settings.redis_url, settings.realtime_redis_channel)

    logger.info("Real-time Channel: Using LocalRealtimeChannel (development mode)")
    return LocalRealtimeChannel()


__all__ = [
    "create_realtime_channel",
    "BaseRealtimeChannel",
    "LocalRealtimeChannel",
    "RedisRealtimeChannel",
    "Connection",
    "ADMIN_ROOM",
    "role_room",
    "user_room",
    "encode_envelope",
    "decode_envelope",
]

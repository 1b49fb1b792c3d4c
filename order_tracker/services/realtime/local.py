"""
In-process Real-time Channel

Delivers events straight to the connections held by this process.
Used in development and tests, where a single worker serves every socket.
"""

import logging
from typing import Any

from order_tracker.services.realtime.base import BaseRealtimeChannel

logger = logging.getLogger(__name__)


class LocalRealtimeChannel(BaseRealtimeChannel):
    """Single-process rooms."""

    @property
    def provider_name(self) -> str:
        return "local"

    async def emit(self, room: str, event: str, payload: Any) -> None:
        delivered = await self._deliver(room, event, payload)
        logger.debug(f"{event} -> {room} ({delivered} connection(s))")

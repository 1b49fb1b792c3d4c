"""
Real-time Channel Abstract Base Class

Groups live connections into named rooms and delivers events to them.

Two kinds of rooms exist:
    - role:<Role>   one per role value; every administrator shares one
    - user:<id>     one per user, joined by that user's own connections

Membership is decided here, from the verified session, when a connection
is registered. Clients never pick their own rooms.

Delivery is at-most-once and best-effort: an event for a room with no
connections is dropped, a connection whose send fails is evicted, and
nothing is replayed on reconnect. The durable notification inbox is the
channel clients reconcile against.

Version: 1.0.0
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Protocol, Union

from order_tracker.models import Role

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can push a JSON frame (a Starlette WebSocket does)."""

    async def send_json(self, data: Any) -> None:
        ...


def role_room(role: Union[Role, str]) -> str:
    value = role.value if isinstance(role, Role) else role
    return f"role:{value}"


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


ADMIN_ROOM = role_room(Role.ADMINISTRATOR)


def build_message(event: str, payload: Any) -> dict[str, Any]:
    """Frame sent to a client."""
    return {"event": event, "payload": payload}


def encode_envelope(room: str, event: str, payload: Any) -> str:
    """Serialize an event for cross-process fan-out."""
    return json.dumps({"room": room, "event": event, "payload": payload}, default=str)


def decode_envelope(raw: Union[str, bytes]) -> tuple[str, str, Any]:
    """Inverse of encode_envelope. Raises ValueError on malformed input."""
    data = json.loads(raw)
    if not isinstance(data, dict) or "room" not in data or "event" not in data:
        raise ValueError("Envelope must carry room and event")
    return data["room"], data["event"], data.get("payload")


class BaseRealtimeChannel(ABC):
    """
    Room registry plus local delivery.

    Subclasses decide how an emitted event reaches ``_deliver``: directly
    (single process) or through a broker (several processes).
    """

    def __init__(self):
        self._rooms: dict[str, set] = {}
        self._memberships: dict[int, set[str]] = {}

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the channel provider name."""
        pass

    async def start(self) -> None:
        """Acquire resources. Called once from the application lifespan."""

    async def stop(self) -> None:
        """Release resources. Called once from the application lifespan."""

    async def health_check(self) -> bool:
        return True

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    def rooms_for(self, user_id: int, role: Role) -> list[str]:
        """Rooms a verified session belongs to."""
        return [role_room(role), user_room(user_id)]

    def connect(self, connection: Connection, user_id: int, role: Role) -> list[str]:
        """Register a connection in the rooms of its session."""
        rooms = self.rooms_for(user_id, role)
        for room in rooms:
            self._rooms.setdefault(room, set()).add(connection)
        self._memberships[id(connection)] = set(rooms)
        logger.info(f"Connection joined {', '.join(rooms)}")
        return rooms

    def disconnect(self, connection: Connection) -> None:
        rooms = self._memberships.pop(id(connection), set())
        for room in rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self._rooms[room]
        if rooms:
            logger.info(f"Connection left {', '.join(sorted(rooms))}")

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    # =========================================================================
    # DELIVERY
    # =========================================================================

    @abstractmethod
    async def emit(self, room: str, event: str, payload: Any) -> None:
        """Publish an event to every connection in ``room``. Never raises."""
        pass

    async def _deliver(self, room: str, event: str, payload: Any) -> int:
        """Send to the connections of this process. Returns how many got it."""
        members = list(self._rooms.get(room, ()))
        if not members:
            logger.debug(f"Dropped {event} for {room}: no connections")
            return 0

        message = build_message(event, payload)
        delivered = 0
        for connection in members:
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Evicting connection from {room} after failed send: {e}")
                self.disconnect(connection)
        return delivered

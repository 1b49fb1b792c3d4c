"""
WebSocket endpoint: handshake, server-assigned rooms and inbound events.

These run through Starlette's synchronous TestClient, so they stay away
from the database; database-backed socket events are covered through the
dispatcher directly.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from order_tracker.main import app, install_services
from order_tracker.models import Role
from order_tracker.services.auth import SessionUser, create_token
from order_tracker.services.realtime import LocalRealtimeChannel

ADMIN = SessionUser(id=1, name="Admin", role=Role.ADMINISTRATOR)
CUSTOMER = SessionUser(id=2, name="Alice", role=Role.CUSTOMER)


@pytest.fixture
def channel():
    channel = LocalRealtimeChannel()
    install_services(app, channel)
    return channel


@pytest.fixture
def client(channel):
    # No context manager: the lifespan (database, Redis) is not started
    return TestClient(app)


def test_missing_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == 4401


def test_invalid_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=forged"):
            pass
    assert exc.value.code == 4401


def test_connected_frame_lists_assigned_rooms(client, channel):
    with client.websocket_connect(f"/ws?token={create_token(CUSTOMER)}") as ws:
        frame = ws.receive_json()
        assert frame == {
            "event": "connected",
            "payload": {
                "rooms": ["role:Customer", "user:2"],
                "user": {"id": 2, "name": "Alice", "role": "Customer"},
            },
        }
        assert channel.room_size("user:2") == 1

    assert channel.room_size("user:2") == 0


def test_ping(client):
    with client.websocket_connect(f"/ws?token={create_token(ADMIN)}") as ws:
        ws.receive_json()
        ws.send_json({"event": "ping"})
        assert ws.receive_json() == {"event": "pong", "payload": {}}


def test_clients_cannot_join_rooms(client, channel):
    with client.websocket_connect(f"/ws?token={create_token(CUSTOMER)}") as ws:
        ws.receive_json()
        ws.send_json({"event": "join:admin", "payload": {"room": "role:Administrator"}})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["payload"]["event"] == "join:admin"
        assert channel.room_size("role:Administrator") == 0


def test_stats_request_requires_administrator(client):
    with client.websocket_connect(f"/ws?token={create_token(CUSTOMER)}") as ws:
        ws.receive_json()
        ws.send_json({"event": "stats:request"})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["payload"]["success"] is False


def test_location_requires_courier(client):
    with client.websocket_connect(f"/ws?token={create_token(ADMIN)}") as ws:
        ws.receive_json()
        ws.send_json({"event": "courier:location", "payload": {"order_id": 1, "lat": 0, "lng": 0}})
        assert ws.receive_json()["event"] == "error"


def test_malformed_and_unknown_messages(client):
    with client.websocket_connect(f"/ws?token={create_token(ADMIN)}") as ws:
        ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json()["payload"]["error"] == "Malformed message"

        ws.send_json({"event": "dance"})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert "dance" in frame["payload"]["error"]

        # The socket survives bad input
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"


@pytest.mark.parametrize("frame", [{"event": 5}, {"event": ["ping"]}, {"event": ""}, {"payload": {}}])
def test_non_string_event_is_malformed(client, frame):
    with client.websocket_connect(f"/ws?token={create_token(CUSTOMER)}") as ws:
        ws.receive_json()
        ws.send_json(frame)
        assert ws.receive_json() == {"event": "error", "payload": {"error": "Malformed message"}}

        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"


class UnreachableDatabase:
    """Session factory whose sessions fail to open."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    async def __aexit__(self, *exc_info):
        return False


def test_database_failure_is_reported_to_sender(client, channel):
    install_services(app, channel, UnreachableDatabase())
    with client.websocket_connect(f"/ws?token={create_token(ADMIN)}") as ws:
        ws.receive_json()
        ws.send_json({"event": "stats:request"})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["payload"]["event"] == "stats:request"
        assert frame["payload"]["success"] is False

        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"

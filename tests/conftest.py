"""
Shared test fixtures.

Every test gets its own in-memory SQLite database (aiosqlite) and its own
in-process real-time channel. Recorder connections stand in for sockets:
they collect every frame the channel pushes to them.
"""

from decimal import Decimal
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from order_tracker.database import get_db, init_db
from order_tracker.main import app, install_services
from order_tracker.models import Courier, Role, User
from order_tracker.services.auth import SessionUser, create_token, hash_password
from order_tracker.services.notifications import NotificationDispatcher
from order_tracker.services.orders import OrderLifecycleEngine
from order_tracker.services.realtime import LocalRealtimeChannel


class RecorderConnection:
    """Fake socket that records the frames it is sent."""

    def __init__(self, name: str = "conn"):
        self.name = name
        self.frames: list[dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.frames.append(data)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames]

    def payloads(self, event: str) -> list[Any]:
        return [frame["payload"] for frame in self.frames if frame["event"] == event]


class BrokenConnection(RecorderConnection):
    async def send_json(self, data: Any) -> None:
        raise ConnectionError("socket closed")


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def seed(session_maker) -> dict[str, Any]:
    """One administrator, two customers, two couriers (one without an account)."""
    async with session_maker() as session:
        admin = User(name="Admin", email="admin@example.com",
                     password_hash=hash_password("admin-pass"), role=Role.ADMINISTRATOR)
        alice = User(name="Alice", email="alice@example.com",
                     password_hash=hash_password("alice-pass"), role=Role.CUSTOMER)
        bob = User(name="Bob", email="bob@example.com",
                   password_hash=hash_password("bob-pass"), role=Role.CUSTOMER)
        carl = User(name="Carl", email="carl@example.com",
                    password_hash=hash_password("carl-pass"), role=Role.COURIER)
        session.add_all([admin, alice, bob, carl])
        await session.flush()

        courier = Courier(user_id=carl.id, first_name="Carl", last_name="Rider",
                          phone="555-0101", is_available=True, is_on_duty=True)
        offline = Courier(first_name="Dana", last_name="Walker", phone="555-0102",
                          is_available=False, is_on_duty=False)
        session.add_all([courier, offline])
        await session.commit()

        return {
            "admin": SessionUser(id=admin.id, name=admin.name, role=Role.ADMINISTRATOR),
            "alice": SessionUser(id=alice.id, name=alice.name, role=Role.CUSTOMER),
            "bob": SessionUser(id=bob.id, name=bob.name, role=Role.CUSTOMER),
            "carl": SessionUser(id=carl.id, name=carl.name, role=Role.COURIER),
            "courier_id": courier.id,
            "offline_courier_id": offline.id,
        }


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def channel() -> LocalRealtimeChannel:
    return LocalRealtimeChannel()


@pytest.fixture
def dispatcher(channel) -> NotificationDispatcher:
    return NotificationDispatcher(channel)


@pytest.fixture
def lifecycle(dispatcher) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(dispatcher)


@pytest.fixture
def connect(channel):
    """Register a recorder connection for a session and return it."""
    def _connect(user: SessionUser) -> RecorderConnection:
        conn = RecorderConnection(f"{user.role.value}:{user.id}")
        channel.connect(conn, user.id, user.role)
        return conn
    return _connect


# ============================================================================
# HTTP
# ============================================================================


@pytest.fixture
async def client(session_maker, channel):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    install_services(app, channel, session_maker)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers(user: SessionUser) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(user)}"}


def cart_payload(**overrides) -> dict[str, Any]:
    """$12.50 x 1 + $9.50 x 2 = $31.50"""
    payload = {
        "delivery_type": "Delivery",
        "street": "Av. Principal 12",
        "residence": "Edificio Sol, apt 4B",
        "city": "Caracas",
        "municipality": "Chacao",
        "contact_name": "Alice",
        "contact_phone": "+58-424-1234567",
        "payment_method": "cash",
        "items": [
            {"menu_item_id": 1, "name": "Pizza Margherita", "quantity": 1, "unit_price": "12.50"},
            {"product_id": 4, "name": "Lemonade", "quantity": 2, "unit_price": "9.50"},
        ],
    }
    payload.update(overrides)
    return payload


CART_TOTAL = Decimal("31.50")

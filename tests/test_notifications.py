"""
Notification dispatcher audiences and the durable inbox.
"""

import json
from decimal import Decimal
from types import SimpleNamespace

import pytest

from conftest import BrokenConnection, RecorderConnection, cart_payload
from order_tracker.core.exceptions import ForbiddenError, NotFoundError
from order_tracker.main import handle_socket_message
from order_tracker.models import NotificationCategory
from order_tracker.schemas import CourierLocation, DashboardStats, OrderCreate, OrderPatch
from order_tracker.services.notifications import NotificationInbox
from order_tracker.services.notifications.dispatcher import order_event_payload

STATS = DashboardStats(
    orders_today=3,
    pending_orders=1,
    en_route_orders=1,
    delivered_today=1,
    sales_today=Decimal("60.00"),
    active_couriers=1,
    available_couriers=1,
)


async def notify(inbox, user_id, title, message, **kwargs):
    notification = inbox.add(user_id, title, message, **kwargs)
    await inbox.commit()
    return notification


class SocketStub(RecorderConnection):
    """Recorder that also exposes the app state a WebSocket carries."""

    def __init__(self, **state):
        super().__init__("socket")
        self.app = SimpleNamespace(state=SimpleNamespace(**state))


@pytest.fixture
async def order(lifecycle, db, seed):
    return await lifecycle.place_order(db, OrderCreate(**cart_payload()), customer_id=seed["alice"].id)


@pytest.fixture
async def assigned_order(lifecycle, db, seed, order):
    return await lifecycle.transition(
        db, order.id, OrderPatch(courier_id=seed["courier_id"]), actor=seed["admin"]
    )


class TestDispatcher:

    async def test_event_payload(self, order):
        payload = order_event_payload(order)
        assert payload["orderId"] == order.id
        assert payload["orderNumber"] == order.order_number
        assert payload["orderState"] == "Ordered"
        assert payload["deliveryState"] == "Pending"
        assert payload["customerId"] == order.customer_id
        assert payload["courierId"] is None
        assert payload["version"] == 1
        assert payload["order"]["total"] == "31.50"

    async def test_inbox_rows_exist_before_live_push(self, dispatcher, db, seed, order, channel, session_maker):
        seen = []

        class CheckingConnection:
            async def send_json(self, data):
                async with session_maker() as other:
                    seen.append(await NotificationInbox(other).unread_count(seed["alice"].id))

        channel.connect(CheckingConnection(), seed["alice"].id, seed["alice"].role)

        await dispatcher.order_updated(db, order, previous_courier_id=None)

        assert seen and all(count == 1 for count in seen)

    async def test_accountless_courier_only_reaches_admins(self, lifecycle, db, seed, order, connect):
        admin = connect(seed["admin"])
        carl = connect(seed["carl"])

        await lifecycle.transition(
            db, order.id, OrderPatch(courier_id=seed["offline_courier_id"]), actor=seed["admin"]
        )

        assert admin.events() == ["order:courier_assigned", "order:updated"]
        assert carl.frames == []

    async def test_assignment_inbox_row(self, db, seed, assigned_order):
        rows = await NotificationInbox(db).list_for_user(seed["carl"].id)
        assert len(rows) == 1
        assert rows[0].category == NotificationCategory.ASSIGNMENT
        assert assigned_order.order_number in rows[0].message

    async def test_failing_socket_does_not_fail_the_transition(self, lifecycle, db, seed, order, channel):
        channel.connect(BrokenConnection(), seed["alice"].id, seed["alice"].role)

        updated = await lifecycle.transition(
            db, order.id, OrderPatch(estimated_time="40 min"), actor=seed["admin"]
        )

        assert updated.estimated_time == "40 min"
        assert channel.room_size(f"user:{seed['alice'].id}") == 0


class TestCourierLocation:

    async def test_relayed_to_customer_and_admins(self, dispatcher, db, seed, assigned_order, connect):
        admin = connect(seed["admin"])
        alice = connect(seed["alice"])
        bob = connect(seed["bob"])

        await dispatcher.courier_location(
            db, seed["carl"], CourierLocation(order_id=assigned_order.id, lat=10.5, lng=-66.9)
        )

        expected = {
            "orderId": assigned_order.id,
            "orderNumber": assigned_order.order_number,
            "courierId": seed["courier_id"],
            "lat": 10.5,
            "lng": -66.9,
            "heading": None,
        }
        assert alice.payloads("courier:location") == [expected]
        assert admin.payloads("courier:location") == [expected]
        assert bob.frames == []

    async def test_only_the_assigned_courier(self, dispatcher, db, seed, order):
        with pytest.raises(ForbiddenError):
            await dispatcher.courier_location(
                db, seed["carl"], CourierLocation(order_id=order.id, lat=0, lng=0)
            )

    async def test_stats_update_goes_to_admins(self, dispatcher, seed, connect):
        admin = connect(seed["admin"])
        alice = connect(seed["alice"])

        await dispatcher.stats_update(STATS)

        assert admin.frames == [{"event": "stats:update", "payload": STATS.model_dump(mode="json")}]
        assert alice.frames == []


class TestSocketEvents:

    async def test_stats_request_answers_through_admin_room(self, dispatcher, session_maker, seed, order, connect):
        admin = connect(seed["admin"])
        alice = connect(seed["alice"])
        socket = SocketStub(session_maker=session_maker, dispatcher=dispatcher)

        await handle_socket_message(socket, seed["admin"], json.dumps({"event": "stats:request"}))

        assert socket.frames == []
        [stats] = admin.payloads("stats:update")
        assert stats["orders_today"] == 1
        assert stats["pending_orders"] == 1
        assert alice.frames == []

    async def test_courier_location_event(self, dispatcher, session_maker, seed, assigned_order, connect):
        alice = connect(seed["alice"])
        socket = SocketStub(session_maker=session_maker, dispatcher=dispatcher)
        frame = {"event": "courier:location", "payload": {"order_id": assigned_order.id, "lat": 1.5, "lng": 2.5}}

        await handle_socket_message(socket, seed["carl"], json.dumps(frame))

        assert socket.frames == []
        assert alice.payloads("courier:location")[0]["lat"] == 1.5


class TestInbox:

    async def test_create_and_list_newest_first(self, db, seed):
        inbox = NotificationInbox(db)
        first = await notify(inbox, seed["alice"].id, "Welcome", "Hello", category=NotificationCategory.SYSTEM)
        second = await notify(inbox, seed["alice"].id, "Again", "Hi")

        rows = await inbox.list_for_user(seed["alice"].id)
        assert [r.id for r in rows] == [second.id, first.id]
        assert first.created_at is not None

    async def test_unread_filter(self, db, seed):
        inbox = NotificationInbox(db)
        read = await notify(inbox, seed["alice"].id, "One", "1")
        unread = await notify(inbox, seed["alice"].id, "Two", "2")
        await inbox.mark_read(seed["alice"].id, read.id)

        rows = await inbox.list_for_user(seed["alice"].id, unread_only=True)
        assert [r.id for r in rows] == [unread.id]
        assert await inbox.unread_count(seed["alice"].id) == 1

    async def test_mark_read_is_scoped_to_owner(self, db, seed):
        inbox = NotificationInbox(db)
        notification = await notify(inbox, seed["alice"].id, "Private", "x")
        with pytest.raises(NotFoundError):
            await inbox.mark_read(seed["bob"].id, notification.id)

    async def test_mark_all_read(self, db, seed):
        inbox = NotificationInbox(db)
        await notify(inbox, seed["alice"].id, "One", "1")
        await notify(inbox, seed["alice"].id, "Two", "2")
        await notify(inbox, seed["bob"].id, "Other", "3")

        assert await inbox.mark_all_read(seed["alice"].id) == 2
        assert await inbox.unread_count(seed["alice"].id) == 0
        assert await inbox.unread_count(seed["bob"].id) == 1

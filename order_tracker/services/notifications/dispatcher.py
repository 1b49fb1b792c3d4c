"""
Notification Dispatcher

Turns one order lifecycle change into durable inbox rows and live events.

Audience rules:
    - New order          -> order:new to the administrator room only
    - Any update         -> order:updated (+ inbox row) to the customer,
                            order:updated to the administrator room
    - Courier changed    -> order:assigned (+ inbox row) to the courier,
                            order:courier_assigned to the administrator room
    - Courier unchanged  -> order:updated to the courier, if one is set

Store-then-notify: inbox rows are committed before any event is emitted.
Live events are best-effort; a failed or unheard push never undoes or
fails the change that caused it.

Version: 1.0.0
"""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from order_tracker.core.exceptions import ForbiddenError
from order_tracker.models import NotificationCategory, Order
from order_tracker.schemas import CourierLocation, DashboardStats, NotificationResponse, OrderResponse
from order_tracker.services.auth import SessionUser
from order_tracker.services.notifications.inbox import NotificationInbox
from order_tracker.services.orders.store import CourierStore, OrderStore
from order_tracker.services.realtime.base import ADMIN_ROOM, BaseRealtimeChannel, user_room

logger = logging.getLogger(__name__)

# Event names
ORDER_NEW = "order:new"
ORDER_UPDATED = "order:updated"
ORDER_ASSIGNED = "order:assigned"
ORDER_COURIER_ASSIGNED = "order:courier_assigned"
COURIER_LOCATION = "courier:location"
NOTIFICATION_NEW = "notification:new"
STATS_UPDATE = "stats:update"


def serialize_order(order: Order) -> dict[str, Any]:
    return OrderResponse.model_validate(order).model_dump(mode="json")


def order_event_payload(order: Order) -> dict[str, Any]:
    """Payload shared by order:updated and order:assigned."""
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "orderState": order.order_state.value,
        "deliveryState": order.delivery_state.value,
        "customerId": order.customer_id,
        "courierId": order.courier_id,
        "version": order.version,
        "order": serialize_order(order),
    }


def stats_message(stats: DashboardStats) -> tuple[str, str, dict[str, Any]]:
    """Room, event and payload of a dashboard push, shared with the Celery job."""
    return ADMIN_ROOM, STATS_UPDATE, stats.model_dump(mode="json")


class NotificationDispatcher:
    """
    Fan-out for lifecycle changes.

    The real-time channel is injected; the dispatcher holds no other state
    and is shared by every request of the process.
    """

    def __init__(self, channel: BaseRealtimeChannel):
        self.channel = channel

    async def _emit_all(self, emits: list[tuple[str, str, Any]]) -> None:
        for room, event, payload in emits:
            await self.channel.emit(room, event, payload)

    async def order_created(self, order: Order) -> None:
        """Acknowledge a new order to administrators. Nobody else is told."""
        await self.channel.emit(ADMIN_ROOM, ORDER_NEW, serialize_order(order))
        logger.info(f"📣 {ORDER_NEW} {order.order_number}")

    async def order_updated(
        self,
        db: AsyncSession,
        order: Order,
        previous_courier_id: Optional[int],
    ) -> None:
        """Persist inbox rows for ``order``'s audience, then push live events."""
        payload = order_event_payload(order)
        inbox = NotificationInbox(db)
        staged = []  # (room, notification) pairs to announce after commit
        emits: list[tuple[str, str, Any]] = []

        # 1. Customer
        if order.customer_id:
            room = user_room(order.customer_id)
            emits.append((room, ORDER_UPDATED, payload))
            staged.append((room, inbox.add(
                user_id=order.customer_id,
                title="Order status updated",
                message=f"Your order {order.order_number} is now: {order.order_state.value}",
                category=NotificationCategory.ORDER,
                order_id=order.id,
            )))

        # 2. Courier
        courier_user_id = order.courier.user_id if order.courier is not None else None
        newly_assigned = order.courier_id is not None and order.courier_id != previous_courier_id

        if newly_assigned:
            if courier_user_id:
                room = user_room(courier_user_id)
                emits.append((room, ORDER_ASSIGNED, payload))
                staged.append((room, inbox.add(
                    user_id=courier_user_id,
                    title="New order assigned",
                    message=f"You have been assigned order {order.order_number}",
                    category=NotificationCategory.ASSIGNMENT,
                    order_id=order.id,
                )))
            else:
                logger.warning(
                    f"Courier #{order.courier_id} has no login account; "
                    f"assignment of {order.order_number} is only visible to administrators"
                )
            emits.append((ADMIN_ROOM, ORDER_COURIER_ASSIGNED, payload))
        elif courier_user_id:
            emits.append((user_room(courier_user_id), ORDER_UPDATED, payload))

        # 3. Administrators observe every order
        emits.append((ADMIN_ROOM, ORDER_UPDATED, payload))

        if staged:
            await inbox.commit()
            for room, notification in staged:
                emits.append((
                    room,
                    NOTIFICATION_NEW,
                    NotificationResponse.model_validate(notification).model_dump(mode="json"),
                ))

        await self._emit_all(emits)
        logger.info(
            f"📣 {ORDER_UPDATED} {order.order_number} -> {order.order_state.value} "
            f"({len(staged)} notification(s), {len(emits)} event(s))"
        )

    async def courier_location(
        self,
        db: AsyncSession,
        courier_user: SessionUser,
        location: CourierLocation,
    ) -> None:
        """Relay a courier position to the order's customer and administrators."""
        order = await OrderStore(db).get(location.order_id)
        courier = await CourierStore(db).get_by_user(courier_user.id)
        if courier is None or order.courier_id != courier.id:
            raise ForbiddenError(f"Order {order.order_number} is not assigned to you")

        payload = {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "courierId": courier.id,
            "lat": location.lat,
            "lng": location.lng,
            "heading": location.heading,
        }
        emits: list[tuple[str, str, Any]] = []
        if order.customer_id:
            emits.append((user_room(order.customer_id), COURIER_LOCATION, payload))
        emits.append((ADMIN_ROOM, COURIER_LOCATION, payload))
        await self._emit_all(emits)

    async def stats_update(self, stats: DashboardStats) -> None:
        await self.channel.emit(*stats_message(stats))

"""
Notifications Module

Durable inbox plus the dispatcher that fans lifecycle changes out to it
and to the real-time channel.
"""

from order_tracker.services.notifications.dispatcher import (
    COURIER_LOCATION,
    NOTIFICATION_NEW,
    ORDER_ASSIGNED,
    ORDER_COURIER_ASSIGNED,
    ORDER_NEW,
    ORDER_UPDATED,
    STATS_UPDATE,
    NotificationDispatcher,
    order_event_payload,
    serialize_order,
    stats_message,
)
from order_tracker.services.notifications.inbox import NotificationInbox

__all__ = [
    "NotificationDispatcher",
    "NotificationInbox",
    "order_event_payload",
    "serialize_order",
    "stats_message",
    "ORDER_NEW",
    "ORDER_UPDATED",
    "ORDER_ASSIGNED",
    "ORDER_COURIER_ASSIGNED",
    "COURIER_LOCATION",
    "NOTIFICATION_NEW",
    "STATS_UPDATE",
]

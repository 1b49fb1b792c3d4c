"""
Orders Module

Order store, order numbering and the lifecycle engine.
"""

from order_tracker.services.orders.lifecycle import (
    ALLOWED_TRANSITIONS,
    OrderLifecycleEngine,
    can_transition,
)
from order_tracker.services.orders.numbering import (
    ORDER_NUMBER_PATTERN,
    generate_order_number,
)
from order_tracker.services.orders.store import CourierStore, OrderStore

__all__ = [
    "OrderLifecycleEngine",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "OrderStore",
    "CourierStore",
    "generate_order_number",
    "ORDER_NUMBER_PATTERN",
]

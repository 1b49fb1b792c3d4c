"""
Order Lifecycle Engine

Validates and applies state changes to orders and derives their side
effects before handing the result to the notification dispatcher.

Happy path:
    Ordered -> Preparing -> ReadyForPickup -> EnRoute -> Delivered
    Cancelled is reachable from every non-terminal state.

Rules applied on every transition:
    - An empty patch is rejected before anything is written.
    - Assigning a courier (non-null) starts kitchen work: order_state is
      forced to Preparing unless the same patch cancels the order.
    - Reaching Delivered stamps delivered_at in the same UPDATE; nothing
      else ever touches delivered_at.
    - The write is a compare-and-write on the row version, so a stale
      caller gets ConflictError instead of silently overwriting.

Administrators may pass ``force`` to bypass the transition table, e.g.
to correct an order marked Delivered by mistake.

Version: 1.0.0
"""

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracker.core.config import Settings, get_settings
from order_tracker.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
)
from order_tracker.models import DeliveryState, Order, OrderItem, OrderState, Role
from order_tracker.schemas import OrderCreate, OrderPatch
from order_tracker.services.auth import SessionUser
from order_tracker.services.orders.numbering import generate_order_number
from order_tracker.services.orders.store import CourierStore, OrderStore

if TYPE_CHECKING:
    from order_tracker.services.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[OrderState, frozenset[OrderState]] = {
    OrderState.ORDERED: frozenset({OrderState.PREPARING, OrderState.CANCELLED}),
    OrderState.PREPARING: frozenset({OrderState.READY_FOR_PICKUP, OrderState.CANCELLED}),
    OrderState.READY_FOR_PICKUP: frozenset({
        OrderState.EN_ROUTE,
        OrderState.DELIVERED,  # pickup orders skip the road
        OrderState.CANCELLED,
    }),
    OrderState.EN_ROUTE: frozenset({OrderState.DELIVERED, OrderState.CANCELLED}),
    OrderState.DELIVERED: frozenset(),
    OrderState.CANCELLED: frozenset(),
}


def can_transition(current: OrderState, target: OrderState) -> bool:
    """Same-state writes are always accepted."""
    return target == current or target in ALLOWED_TRANSITIONS[current]


class OrderLifecycleEngine:
    """
    Entry point for every order mutation.

    Args:
        dispatcher: Fan-out for the changes this engine applies
        settings: Application settings (order number prefix)
    """

    def __init__(self, dispatcher: "NotificationDispatcher", settings: Optional[Settings] = None):
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    # =========================================================================
    # CREATION
    # =========================================================================

    async def place_order(
        self,
        db: AsyncSession,
        data: OrderCreate,
        customer_id: Optional[int] = None,
    ) -> Order:
        """
        Create an order from a validated cart.

        Subtotals and the total are computed with Decimal and frozen on the
        rows. Order and items are inserted in one transaction.
        """
        items = [
            OrderItem(
                menu_item_id=item.menu_item_id,
                product_id=item.product_id,
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=item.subtotal,
                notes=item.notes,
            )
            for item in data.items
        ]
        total = sum((item.subtotal for item in data.items), Decimal("0.00"))

        order = Order(
            order_number=generate_order_number(self.settings.order_number_prefix),
            customer_id=customer_id,
            delivery_type=data.delivery_type,
            street=data.street,
            residence=data.residence,
            city=data.city,
            municipality=data.municipality,
            description=data.description,
            contact_name=data.contact_name,
            contact_phone=data.contact_phone,
            payment_method=data.payment_method,
            total=total,
            order_state=OrderState.ORDERED,
            delivery_state=DeliveryState.PENDING,
            version=1,
            items=items,
        )

        order = await OrderStore(db).create(order)
        logger.info(f"🧾 Order {order.order_number} placed (total {order.total}, {len(items)} item(s))")

        await self.dispatcher.order_created(order)
        return order

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def transition(
        self,
        db: AsyncSession,
        order_id: int,
        patch: OrderPatch,
        actor: Optional[SessionUser] = None,
    ) -> Order:
        """
        Apply a partial update and return the rehydrated order.

        Raises:
            NotFoundError: Order or referenced courier missing / tombstoned
            InvalidRequestError: Empty patch or illegal transition
            ForbiddenError: ``force`` without admin rights, or a courier
                acting on an order that is not theirs
            ConflictError: Stale ``expected_version`` or a concurrent write
        """
        store = OrderStore(db)
        order = await store.get(order_id)

        changes = patch.changes()
        if not changes:
            raise InvalidRequestError("No fields to update")

        if patch.force and (actor is None or not actor.is_admin):
            raise ForbiddenError("Only administrators can force a transition")

        if actor is not None and actor.role == Role.COURIER:
            await self._check_courier_scope(db, order, actor, changes)

        if patch.expected_version is not None and patch.expected_version != order.version:
            raise ConflictError(
                f"Order {order.order_number} is at version {order.version}, "
                f"not {patch.expected_version}"
            )

        current = order.order_state
        previous_courier_id = order.courier_id
        values = dict(changes)

        requested = changes.get("order_state")
        if requested is not None and not patch.force and not can_transition(current, requested):
            raise InvalidRequestError(
                f"Cannot move order from {current.value} to {requested.value}"
            )

        courier_id = changes.get("courier_id")
        if courier_id is not None:
            await CourierStore(db).get(courier_id)
            if requested != OrderState.CANCELLED:
                values["order_state"] = OrderState.PREPARING

        if values.get("order_state") == OrderState.DELIVERED:
            values["delivered_at"] = func.now()

        written = await store.compare_and_write(order.id, order.version, values)
        if not written:
            raise ConflictError(
                f"Order {order.order_number} was modified by another request; reload and retry"
            )

        updated = await store.get(order.id)
        logger.info(
            f"🔄 Order {updated.order_number}: {current.value} -> {updated.order_state.value} "
            f"(v{updated.version}, fields: {', '.join(sorted(changes))})"
        )

        await self.dispatcher.order_updated(db, updated, previous_courier_id)
        return updated

    async def _check_courier_scope(
        self,
        db: AsyncSession,
        order: Order,
        actor: SessionUser,
        changes: dict,
    ) -> None:
        """Couriers may only progress their own orders and never reassign them."""
        if "courier_id" in changes:
            raise ForbiddenError("Couriers cannot assign orders")
        courier = await CourierStore(db).get_by_user(actor.id)
        if courier is None or order.courier_id != courier.id:
            raise ForbiddenError(f"Order {order.order_number} is not assigned to you")

    # =========================================================================
    # SOFT DELETE
    # =========================================================================

    async def delete(self, db: AsyncSession, order_id: int) -> None:
        """Tombstone an order. It disappears from listings and lookups."""
        await OrderStore(db).soft_delete(order_id)
        logger.info(f"🗑️ Order #{order_id} soft-deleted")

    async def restore(self, db: AsyncSession, order_id: int) -> Order:
        order = await OrderStore(db).restore(order_id)
        logger.info(f"♻️ Order {order.order_number} restored")
        return order

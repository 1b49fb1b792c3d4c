"""
Order Store

Owns persisted orders, their line items and the couriers they reference.
Every read goes through the soft-delete predicate (``deleted_at IS NULL``)
unless the method name says otherwise.

Each store wraps the request's ``AsyncSession``; it never opens its own.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from order_tracker.core.exceptions import NotFoundError
from order_tracker.models import Courier, DeliveryType, Order, OrderState

logger = logging.getLogger(__name__)


class OrderStore:
    """Query/command operations over ``orders`` and ``order_items``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _select(self):
        # Line items and joined display fields, loaded eagerly for async use
        return select(Order).options(
            selectinload(Order.items),
            selectinload(Order.customer),
            selectinload(Order.courier),
        )

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def create(self, order: Order) -> Order:
        """
        Insert an order together with its line items in one transaction.

        Either the order and all of its items are committed, or nothing is.
        """
        self.session.add(order)
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception(f"Rolled back order {order.order_number}")
            raise
        return await self.get(order.id)

    async def compare_and_write(
        self,
        order_id: int,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        """
        Apply ``values`` only if the row still carries ``expected_version``.

        Bumps the version in the same statement. Returns False when no live
        row matched, meaning someone else wrote first.
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.version == expected_version,
                Order.deleted_at.is_(None),
            )
            .values(**values, version=Order.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return result.rowcount == 1

    async def soft_delete(self, order_id: int) -> None:
        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.deleted_at.is_(None))
            .values(deleted_at=func.now(), version=Order.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        if result.rowcount == 0:
            raise NotFoundError(f"Order #{order_id} not found")

    async def restore(self, order_id: int) -> Order:
        order = await self.get_including_deleted(order_id)
        if order.deleted_at is not None:
            stmt = (
                update(Order)
                .where(Order.id == order_id)
                .values(deleted_at=None, version=Order.version + 1)
                .execution_options(synchronize_session=False)
            )
            try:
                await self.session.execute(stmt)
                await self.session.commit()
            except SQLAlchemyError:
                await self.session.rollback()
                raise
        return await self.get(order_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get(self, order_id: int) -> Order:
        """Live order by primary key, fully hydrated. NotFound if tombstoned."""
        result = await self.session.execute(
            self._select()
            .where(Order.id == order_id, Order.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order #{order_id} not found")
        return order

    async def get_including_deleted(self, order_id: int) -> Order:
        result = await self.session.execute(
            self._select()
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order #{order_id} not found")
        return order

    async def find(
        self,
        *,
        customer_id: Optional[int] = None,
        courier_id: Optional[int] = None,
        order_state: Optional[OrderState] = None,
        delivery_type: Optional[DeliveryType] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[int, list[Order]]:
        """Newest-first page of live orders plus the total matching count."""
        conditions = [Order.deleted_at.is_(None)]
        if customer_id is not None:
            conditions.append(Order.customer_id == customer_id)
        if courier_id is not None:
            conditions.append(Order.courier_id == courier_id)
        if order_state is not None:
            conditions.append(Order.order_state == order_state)
        if delivery_type is not None:
            conditions.append(Order.delivery_type == delivery_type)

        total_result = await self.session.execute(
            select(func.count(Order.id)).where(*conditions)
        )
        total = total_result.scalar() or 0

        result = await self.session.execute(
            self._select()
            .where(*conditions)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return total, list(result.scalars().all())

    async def dashboard_stats(self) -> dict[str, Any]:
        """Aggregates for the admin dashboard."""
        today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        live = Order.deleted_at.is_(None)

        async def count(*conditions) -> int:
            result = await self.session.execute(select(func.count(Order.id)).where(live, *conditions))
            return result.scalar() or 0

        orders_today = await count(Order.created_at >= today_start)
        pending_orders = await count(Order.order_state.in_([OrderState.ORDERED, OrderState.PREPARING]))
        en_route_orders = await count(Order.order_state == OrderState.EN_ROUTE)
        delivered_today = await count(
            Order.order_state == OrderState.DELIVERED,
            Order.created_at >= today_start,
        )

        sales_result = await self.session.execute(
            select(func.coalesce(func.sum(Order.total), 0)).where(
                live,
                Order.created_at >= today_start,
                Order.order_state != OrderState.CANCELLED,
            )
        )
        sales_today = Decimal(str(sales_result.scalar() or 0)).quantize(Decimal("0.01"))

        couriers = CourierStore(self.session)
        return {
            "orders_today": orders_today,
            "pending_orders": pending_orders,
            "en_route_orders": en_route_orders,
            "delivered_today": delivered_today,
            "sales_today": sales_today,
            "active_couriers": await couriers.count(is_available=True, is_on_duty=True),
            "available_couriers": await couriers.count(is_available=True),
        }


class CourierStore:
    """Couriers are referenced by orders, never owned by them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, courier_id: int) -> Courier:
        courier = await self.session.get(Courier, courier_id)
        if courier is None:
            raise NotFoundError(f"Courier #{courier_id} not found")
        return courier

    async def get_by_user(self, user_id: int) -> Optional[Courier]:
        result = await self.session.execute(select(Courier).where(Courier.user_id == user_id))
        return result.scalar_one_or_none()

    async def list_all(self, is_available: Optional[bool] = None) -> list[Courier]:
        query = select(Courier).order_by(Courier.first_name, Courier.id)
        if is_available is not None:
            query = query.where(Courier.is_available == is_available)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, **flags: bool) -> int:
        query = select(func.count(Courier.id))
        for name, value in flags.items():
            query = query.where(getattr(Courier, name) == value)
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def update(self, courier_id: int, values: dict[str, Any]) -> Courier:
        courier = await self.get(courier_id)
        for name, value in values.items():
            setattr(courier, name, value)
        await self.session.commit()
        return courier

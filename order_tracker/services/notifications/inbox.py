"""
Notification Inbox

Durable per-user notification records. These rows, not the live socket
push, are the source of truth a client reconciles against after it
reconnects or regains focus.
"""

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracker.core.exceptions import NotFoundError
from order_tracker.models import Notification, NotificationCategory

logger = logging.getLogger(__name__)


class NotificationInbox:
    """Create and read notification rows inside the caller's session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def add(
        self,
        user_id: int,
        title: str,
        message: str,
        category: NotificationCategory = NotificationCategory.ORDER,
        order_id: Optional[int] = None,
    ) -> Notification:
        """Stage a notification. Nothing is written until ``commit``."""
        notification = Notification(
            user_id=user_id,
            category=category,
            title=title,
            message=message,
            order_id=order_id,
            is_read=False,
        )
        self.session.add(notification)
        return notification

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Could not store notifications")
            raise

    async def list_for_user(
        self,
        user_id: int,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def unread_count(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar() or 0

    async def mark_read(self, user_id: int, notification_id: int) -> Notification:
        """Mark one of the user's own notifications as read."""
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError(f"Notification #{notification_id} not found")
        notification.is_read = True
        await self.commit()
        return notification

    async def mark_all_read(self, user_id: int) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        await self.commit()
        return result.rowcount

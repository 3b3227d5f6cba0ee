# services/notifications.py - In-app Notification Emitter
# ============================================================================

import logging
from typing import List
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.exceptions import Forbidden, NotFound
from app.models.notification import Notification, NotificationType
from app.models.user import User
from app.services.auth import check_auth

logger = logging.getLogger(__name__)


class NotificationService:

    async def notify(
        self,
        db: AsyncSession,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
    ) -> bool:
        """
        Best-effort: the notification is written in a savepoint so a failure
        here never rolls back the operation that triggered it.
        """
        try:
            async with db.begin_nested():
                db.add(Notification(
                    user_id=user_id,
                    type=type.value,
                    title=title,
                    message=message,
                    read=False,
                ))
        except SQLAlchemyError as e:
            logger.warning(f"Could not create {type.value} notification for user {user_id}: {e}")
            return False

        logger.info(f"🔔 {type.value} notification queued for user {user_id}")
        return True

    async def list_notifications(self, user: User, db: AsyncSession, unread_only: bool = False) -> List[Notification]:
        check_auth(user)

        query = select(Notification).where(Notification.user_id == user.id)
        if unread_only:
            query = query.where(Notification.read.is_(False))

        result = await db.execute(query.order_by(Notification.created_at.desc(), Notification.id.desc()))
        return list(result.scalars().all())

    async def mark_read(self, user: User, notification_id: int, db: AsyncSession) -> Notification:
        check_auth(user)

        notification = await db.get(Notification, notification_id)
        if not notification:
            raise NotFound("Notification not found")
        if notification.user_id != user.id:
            raise Forbidden()

        notification.read = True
        await db.commit()
        return notification

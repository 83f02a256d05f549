"""
Notification service for AutoTrack.
Persists per-user notifications and optionally forwards them to a gateway.
"""

import uuid
from typing import Optional, List
from functools import lru_cache
from datetime import datetime
import structlog

import httpx
from sqlalchemy import select, func as sa_func, update

from autotrack.models.notification import Notification, NotificationType
from autotrack.infrastructure.config import Settings, get_settings
from autotrack.infrastructure.database import get_session
from autotrack.infrastructure.exceptions import NotFound
from autotrack.db.models import NotificationModel

logger = structlog.get_logger(__name__)


class NotificationService:
    """
    Notification sink used by the sprint and commit review services.

    ``notify`` is fire-and-forget from the caller's point of view: storage
    and delivery failures are logged and never raised.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()

    async def notify(
        self,
        user: str,
        type: NotificationType,
        title: str,
        message: str,
        source_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Create a notification for ``user`` and deliver it to the gateway if configured."""
        if not user:
            return None

        now = datetime.utcnow()
        notification_id = str(uuid.uuid4())

        try:
            async with get_session() as session:
                session.add(NotificationModel(
                    id=notification_id,
                    user=user,
                    type=type.value,
                    title=title,
                    message=message,
                    read=False,
                    source_id=source_id,
                    created_at=now,
                ))
        except Exception as e:
            logger.error("notification_store_failed", user=user, type=type.value, error=str(e))
            return None

        notification = Notification(
            id=notification_id,
            user=user,
            type=type,
            title=title,
            message=message,
            read=False,
            source_id=source_id,
            created_at=now,
        )
        logger.info("notification_created", id=notification_id, user=user, type=type.value)

        await self._deliver_to_gateway(notification)
        return notification

    async def _deliver_to_gateway(self, notification: Notification):
        """POST the notification to the external gateway, when one is configured."""
        url = self._settings.notification_gateway_url
        token = self._settings.notification_gateway_token
        if not url or not token:
            return

        try:
            async with httpx.AsyncClient(timeout=self._settings.notification_timeout) as client:
                resp = await client.post(
                    f"{url.rstrip('/')}/notifications",
                    json={
                        "user": notification.user,
                        "type": notification.type.value,
                        "title": notification.title,
                        "message": notification.message,
                        "source_id": notification.source_id,
                    },
                    headers={"Authorization": f"Bearer {token}"},
                )

            if resp.status_code < 400:
                logger.info("notification_delivered", id=notification.id, user=notification.user)
            else:
                logger.warning(
                    "notification_delivery_failed",
                    id=notification.id,
                    status=resp.status_code,
                    body=resp.text[:200],
                )
        except httpx.HTTPError as e:
            logger.error("notification_delivery_error", id=notification.id, error=str(e))

    async def list_notifications(
        self,
        user: Optional[str] = None,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        """List notifications, newest first."""
        async with get_session() as session:
            query = select(NotificationModel)

            if user:
                query = query.where(NotificationModel.user == user)
            if unread_only:
                query = query.where(NotificationModel.read == False)  # noqa: E712

            query = query.order_by(NotificationModel.created_at.desc()).limit(limit)

            result = await session.execute(query)
            return [Notification.model_validate(row) for row in result.scalars().all()]

    async def mark_as_read(self, notification_id: str) -> Notification:
        async with get_session() as session:
            row = await session.get(NotificationModel, notification_id)
            if row is None:
                raise NotFound("notification", notification_id)

            row.read = True
            await session.flush()
            return Notification.model_validate(row)

    async def mark_all_as_read(self, user: str) -> int:
        """Mark all of a user's notifications as read. Returns how many changed."""
        async with get_session() as session:
            result = await session.execute(
                update(NotificationModel)
                .where(NotificationModel.user == user)
                .where(NotificationModel.read == False)  # noqa: E712
                .values(read=True)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        logger.info("notifications_marked_read", user=user, count=count)
        return count

    async def get_unread_count(self, user: str) -> int:
        async with get_session() as session:
            result = await session.execute(
                select(sa_func.count()).select_from(NotificationModel)
                .where(NotificationModel.user == user)
                .where(NotificationModel.read == False)  # noqa: E712
            )
            return result.scalar_one()

    async def delete_notification(self, notification_id: str) -> None:
        async with get_session() as session:
            row = await session.get(NotificationModel, notification_id)
            if row is None:
                raise NotFound("notification", notification_id)
            await session.delete(row)


@lru_cache()
def get_notification_service() -> NotificationService:
    """Get singleton NotificationService instance."""
    return NotificationService()

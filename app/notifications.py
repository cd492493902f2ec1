"""
Notification records for customers and restaurants, pushed to any open
notification channel of the recipient through the bus.
"""
import logging
from datetime import timedelta

from app.bus import EventBus, notification_topic, notifications_refresh_topic
from app.metrics import notifications_created_total
from app.models import Notification, utcnow
from app.store import NotificationStore

logger = logging.getLogger(__name__)


def restaurant_recipient(restaurant_id: str) -> str:
    """Recipient id under which a restaurant's staff receive notifications."""
    return f"restaurant:{restaurant_id}"


class NotificationService:

    def __init__(self, store: NotificationStore, bus: EventBus, recent_seconds: int = 0):
        self.store = store
        self.bus = bus
        self.recent_seconds = recent_seconds

    async def notify(self, recipient_id: str, message: str) -> Notification | None:
        if not recipient_id or not message:
            return None
        notification = await self.store.add(Notification(recipient_id=recipient_id, message=message))
        notifications_created_total.inc()
        logger.info("Notification %s created for recipient=%s", notification.id, recipient_id)
        await self.bus.publish(notification_topic(recipient_id), recipient_id, notification)
        return notification

    async def notify_many(self, recipient_ids: list[str], message: str) -> list[Notification]:
        created = []
        for recipient_id in recipient_ids:
            try:
                notification = await self.notify(recipient_id, message)
            except Exception:
                logger.exception("Failed to notify recipient=%s", recipient_id)
                continue
            if notification is not None:
                created.append(notification)
        return created

    async def mark_all_seen(self, recipient_id: str) -> int:
        affected = await self.store.mark_all_seen(recipient_id, utcnow())
        logger.info("Marked %d notification(s) seen for recipient=%s", affected, recipient_id)
        if affected:
            await self.bus.publish(notifications_refresh_topic(recipient_id))
        return affected

    async def unseen(self, recipient_id: str) -> list[Notification]:
        return await self.store.find_for_recipient(recipient_id)

    async def current(self, recipient_id: str) -> list[Notification]:
        """What a live notification channel shows: unseen, plus recently seen if configured."""
        seen_since = None
        if self.recent_seconds > 0:
            seen_since = utcnow() - timedelta(seconds=self.recent_seconds)
        return await self.store.find_for_recipient(recipient_id, seen_since=seen_since)

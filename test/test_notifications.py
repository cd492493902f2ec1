from datetime import timedelta

import pytest

from app.bus import notification_topic, notifications_refresh_topic
from app.memory_store import MemoryNotificationStore
from app.models import utcnow
from app.notifications import NotificationService


@pytest.mark.asyncio
async def test_notify_persists_unseen_and_publishes(services, bus):
    received = []
    bus.subscribe(notification_topic("u-1"), lambda *p: received.append(p))

    notification = await services.notifications.notify("u-1", "hello")

    assert notification.seen_at is None
    assert await services.notifications.unseen("u-1") == [notification]
    assert received == [("u-1", notification)]


@pytest.mark.asyncio
@pytest.mark.parametrize("recipient,message", [("", "hello"), ("u-1", ""), (None, "hello")])
async def test_notify_with_empty_argument_is_a_no_op(services, bus, recipient, message):
    received = []
    bus.subscribe(notification_topic("u-1"), lambda *p: received.append(p))
    assert await services.notifications.notify(recipient, message) is None
    assert await services.notifications.unseen("u-1") == []
    assert received == []


class FlakyStore(MemoryNotificationStore):
    async def add(self, notification):
        if notification.recipient_id == "broken":
            raise RuntimeError("store down")
        return await super().add(notification)


@pytest.mark.asyncio
async def test_notify_many_isolates_failures(bus):
    service = NotificationService(FlakyStore(), bus)
    created = await service.notify_many(["a", "broken", "", "b"], "promo")
    assert [n.recipient_id for n in created] == ["a", "b"]


@pytest.mark.asyncio
async def test_mark_all_seen_is_idempotent(services, bus):
    refreshes = []
    bus.subscribe(notifications_refresh_topic("u-1"), lambda *p: refreshes.append(p))
    await services.notifications.notify("u-1", "one")
    await services.notifications.notify("u-1", "two")
    await services.notifications.notify("u-2", "other")

    assert await services.notifications.mark_all_seen("u-1") == 2
    assert await services.notifications.unseen("u-1") == []
    assert await services.notifications.mark_all_seen("u-1") == 0
    assert await services.notifications.unseen("u-1") == []

    assert refreshes == [()]
    assert len(await services.notifications.unseen("u-2")) == 1


@pytest.mark.asyncio
async def test_current_includes_recently_seen_when_window_set(bus):
    store = MemoryNotificationStore()
    service = NotificationService(store, bus, recent_seconds=600)
    await service.notify("u-1", "seen a moment ago")
    await store.mark_all_seen("u-1", utcnow())
    await service.notify("u-1", "old")
    await store.mark_all_seen("u-1", utcnow() - timedelta(hours=1))
    await service.notify("u-1", "fresh")

    messages = [n.message for n in await service.current("u-1")]
    assert messages == ["seen a moment ago", "fresh"]
    assert [n.message for n in await service.unseen("u-1")] == ["fresh"]

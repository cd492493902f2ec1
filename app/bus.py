"""
In-process topic publish/subscribe.

One EventBus is built per application and passed to every component that
publishes or listens. Topics are plain strings built only through the helpers
below, so publishers and subscribers cannot drift apart.

Delivery is synchronous on the publishing task: publish awaits each subscriber
in registration order. Mutations of the topic map are serialized by a lock;
publish iterates a copy taken at call time, so a subscriber added mid-publish
may miss that event and one removed mid-publish may still receive it.
"""
import inspect
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from app.metrics import bus_events_published_total, bus_subscriber_errors_total

logger = logging.getLogger(__name__)

MARKETING_TOPIC = "marketingUpdated"
RESTAURANT_TOPIC_PREFIX = "restaurantUpdated-"
NOTIFICATION_TOPIC_PREFIX = "sendNotification"
NOTIFICATIONS_REFRESH_TOPIC_PREFIX = "sendNotifications"


def _require_id(value: str, what: str) -> str:
    if not value:
        raise ValueError(f"{what} is required to build a topic name")
    return str(value)


def marketing_topic() -> str:
    return MARKETING_TOPIC


def restaurant_topic(restaurant_id: str) -> str:
    return RESTAURANT_TOPIC_PREFIX + _require_id(restaurant_id, "restaurant_id")


def notification_topic(recipient_id: str) -> str:
    """Carries (recipient_id, notification) for one newly created notification."""
    return NOTIFICATION_TOPIC_PREFIX + _require_id(recipient_id, "recipient_id")


def notifications_refresh_topic(recipient_id: str) -> str:
    """Payload-less trigger: listeners re-fetch the recipient's notifications."""
    return NOTIFICATIONS_REFRESH_TOPIC_PREFIX + _require_id(recipient_id, "recipient_id")


def topic_kind(topic: str) -> str:
    # Longest prefix first: "sendNotifications" also starts with "sendNotification".
    if topic == MARKETING_TOPIC:
        return "marketing"
    if topic.startswith(RESTAURANT_TOPIC_PREFIX):
        return "restaurant"
    if topic.startswith(NOTIFICATIONS_REFRESH_TOPIC_PREFIX):
        return "notifications_refresh"
    if topic.startswith(NOTIFICATION_TOPIC_PREFIX):
        return "notification"
    return "other"


_handle_ids = itertools.count(1)


@dataclass(frozen=True, eq=False)
class Subscription:
    """Opaque handle identifying one registration. Compared by identity."""
    topic: str
    callback: Callable[..., Any] = field(repr=False)
    id: int = field(default_factory=lambda: next(_handle_ids))


class EventBus:

    def __init__(self):
        self._topics: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Callable[..., Any]) -> Subscription:
        """Register callback under topic. The same callback twice means two deliveries."""
        handle = Subscription(topic=topic, callback=callback)
        with self._lock:
            self._topics.setdefault(topic, []).append(handle)
        logger.debug("Subscribed handle=%s to topic=%s", handle.id, topic)
        return handle

    def unsubscribe(self, topic: str, handle: Subscription) -> None:
        """Remove exactly this handle. No-op if already removed or topic unknown."""
        with self._lock:
            handles = self._topics.get(topic)
            if not handles:
                return
            remaining = [h for h in handles if h is not handle]
            if len(remaining) == len(handles):
                return
            if remaining:
                self._topics[topic] = remaining
            else:
                del self._topics[topic]
        logger.debug("Unsubscribed handle=%s from topic=%s", handle.id, topic)

    async def publish(self, topic: str, *payload: Any) -> int:
        """
        Deliver payload to every subscriber registered on topic at call time.
        A failing subscriber is logged and skipped; the publisher never sees
        the error. Returns the number of subscribers that ran without error.
        """
        with self._lock:
            handles = list(self._topics.get(topic, ()))
        bus_events_published_total.labels(topic_kind=topic_kind(topic)).inc()
        logger.debug("Publishing topic=%s to %d subscriber(s)", topic, len(handles))

        delivered = 0
        for handle in handles:
            try:
                result = handle.callback(*payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                bus_subscriber_errors_total.inc()
                logger.exception("Subscriber handle=%s failed on topic=%s", handle.id, topic)
        return delivered

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def topics(self) -> list[str]:
        with self._lock:
            return list(self._topics)

    def clear(self) -> None:
        with self._lock:
            self._topics.clear()

"""
Live dashboard channels.

Each channel owns long-lived connections. On connect it pushes a full
snapshot, subscribes one callback closed over the connection, and registers a
close handler that removes exactly that subscription. A failed send is
treated as a disconnect. Nothing polls: every later push is triggered by a
publish elsewhere.
"""
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.bus import (
    EventBus,
    Subscription,
    marketing_topic,
    notification_topic,
    notifications_refresh_topic,
    restaurant_topic,
)
from app.metrics import live_connections
from app.models import OrderFilter, OrderStatus
from app.notifications import NotificationService
from app.store import OrderStore

logger = logging.getLogger(__name__)


class Connection(Protocol):
    async def send(self, text: str) -> None: ...

    def on_close(self, handler: Callable[[], None]) -> None: ...

    async def close(self) -> None: ...


class WebSocketConnection:
    """
    Connection over a Starlette websocket. Close handlers run exactly once,
    whichever side closes first; a handler added after close runs at once.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False
        self._handlers: list[Callable[[], None]] = []

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionError("Connection already closed")
        await self.websocket.send_text(text)

    def on_close(self, handler: Callable[[], None]) -> None:
        if self.closed:
            handler()
            return
        self._handlers.append(handler)

    async def close(self, code: int = 1000) -> None:
        if self.closed:
            return
        try:
            if self.websocket.application_state == WebSocketState.CONNECTED:
                await self.websocket.close(code=code)
        except RuntimeError as e:
            logger.debug("Websocket already closed: %s", e)
        finally:
            self._fire_close()

    async def listen(self) -> None:
        """Drain inbound frames until the peer goes away, then run close handlers."""
        try:
            while not self.closed:
                await self.websocket.receive_text()
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # receive after our own close
            logger.debug("Websocket receive stopped: %s", e)
        finally:
            self._fire_close()

    def _fire_close(self) -> None:
        if self.closed:
            return
        self.closed = True
        handlers, self._handlers = self._handlers, []
        for handler in handlers:
            try:
                handler()
            except Exception:
                logger.exception("Close handler failed")


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def dumps(data: Any) -> str:
    return json.dumps(data, default=_json_default)


async def compute_dashboard(store: OrderStore, restaurant_id: str | None = None) -> dict:
    """
    Full aggregate view over all orders, or one restaurant's. Recomputed from
    the store on every call; nothing is maintained incrementally.
    """
    order_filter = OrderFilter(restaurant_id=restaurant_id)
    orders = await store.find_by_filter(order_filter)
    counts = await store.aggregate_count_by_status(order_filter)
    daily = await store.aggregate_daily_summary(order_filter)
    total = sum(
        (o.total_price for o in orders if o.status != OrderStatus.CANCELLED),
        Decimal("0"),
    )
    return {
        "order_count": len(orders),
        "order_counts_by_status": counts,
        "total_price": total,
        "daily_summary": [d.model_dump() for d in daily],
    }


class LiveChannel(ABC):
    name = "live"

    def __init__(self, bus: EventBus):
        self.bus = bus

    @abstractmethod
    def topics(self, scope: str | None) -> list[str]:
        ...

    @abstractmethod
    async def snapshot(self, scope: str | None) -> Any:
        ...

    async def push(self, connection: Connection, scope: str | None) -> None:
        view = await self.snapshot(scope)
        try:
            await connection.send(dumps(view))
        except Exception as e:
            logger.info("%s push failed, closing connection: %s", self.name, e)
            await connection.close()

    async def connect(self, connection: Connection, scope: str | None = None) -> list[Subscription]:
        await self.push(connection, scope)

        async def on_event(*_payload):
            await self.push(connection, scope)

        handles = [(topic, self.bus.subscribe(topic, on_event)) for topic in self.topics(scope)]
        live_connections.labels(channel=self.name).inc()

        def teardown():
            for topic, handle in handles:
                self.bus.unsubscribe(topic, handle)
            live_connections.labels(channel=self.name).dec()
            logger.info("%s channel closed (scope=%s)", self.name, scope)

        connection.on_close(teardown)
        logger.info("%s channel opened (scope=%s)", self.name, scope)
        return [handle for _, handle in handles]


class MarketingChannel(LiveChannel):
    """Global aggregates across every restaurant."""
    name = "marketing"

    def __init__(self, bus: EventBus, store: OrderStore):
        super().__init__(bus)
        self.store = store

    def topics(self, scope):
        return [marketing_topic()]

    async def snapshot(self, scope):
        return await compute_dashboard(self.store)


class RestaurantChannel(LiveChannel):
    """Aggregates for one restaurant; scope is the restaurant id."""
    name = "restaurant"

    def __init__(self, bus: EventBus, store: OrderStore):
        super().__init__(bus)
        self.store = store

    def topics(self, scope):
        return [restaurant_topic(scope)]

    async def snapshot(self, scope):
        return await compute_dashboard(self.store, restaurant_id=scope)


class NotificationChannel(LiveChannel):
    """A recipient's current notifications; scope is the recipient id."""
    name = "notifications"

    def __init__(self, bus: EventBus, notifications: NotificationService):
        super().__init__(bus)
        self.notifications = notifications

    def topics(self, scope):
        return [notification_topic(scope), notifications_refresh_topic(scope)]

    async def snapshot(self, scope):
        return [n.model_dump(mode="json") for n in await self.notifications.current(scope)]

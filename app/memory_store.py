"""
In-memory stores. Used when no DATABASE_URL is configured, and by the tests.
A single lock makes read-validate-write on one order atomic.
"""
import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from app.errors import ConflictError, NotFound
from app.models import DailySummary, Notification, Order, OrderFilter, OrderStatus
from app.store import NotificationStore, OrderStore


class MemoryOrderStore(OrderStore):

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._lock = threading.Lock()

    async def create(self, order: Order) -> Order:
        with self._lock:
            self._orders[order.id] = order.model_copy(deep=True)
        return order

    async def find_by_id(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order.model_copy(deep=True)

    async def find_by_filter(self, order_filter: OrderFilter) -> list[Order]:
        with self._lock:
            found = [o.model_copy(deep=True) for o in self._orders.values() if order_filter.matches(o)]
        return sorted(found, key=lambda o: o.ordered_at, reverse=True)

    async def save(self, order: Order, expected_status: OrderStatus) -> Order:
        with self._lock:
            current = self._orders.get(order.id)
            if current is None:
                raise NotFound(f"Order {order.id} not found")
            if current.status != expected_status:
                raise ConflictError(
                    f"Order {order.id} is {current.status.value}, expected {expected_status.value}"
                )
            self._orders[order.id] = order.model_copy(deep=True)
        return order

    async def aggregate_count_by_status(self, order_filter: OrderFilter) -> dict[str, int]:
        counts: dict[str, int] = defaultdict(int)
        for order in await self.find_by_filter(order_filter):
            counts[order.status.value] += 1
        return dict(counts)

    async def aggregate_daily_summary(self, order_filter: OrderFilter) -> list[DailySummary]:
        days: dict[str, list[Decimal]] = defaultdict(list)
        for order in await self.find_by_filter(order_filter):
            days[order.ordered_at.date().isoformat()].append(order.total_price)
        return [
            DailySummary(day=day, count=len(prices), total_price=sum(prices, Decimal("0")))
            for day, prices in sorted(days.items())
        ]


class MemoryNotificationStore(NotificationStore):

    def __init__(self):
        self._notifications: list[Notification] = []
        self._lock = threading.Lock()

    async def add(self, notification: Notification) -> Notification:
        with self._lock:
            self._notifications.append(notification.model_copy())
        return notification

    async def find_for_recipient(
        self, recipient_id: str, seen_since: datetime | None = None
    ) -> list[Notification]:
        with self._lock:
            return [
                n.model_copy() for n in self._notifications
                if n.recipient_id == recipient_id and (
                    n.seen_at is None or (seen_since is not None and n.seen_at > seen_since)
                )
            ]

    async def mark_all_seen(self, recipient_id: str, seen_at: datetime) -> int:
        affected = 0
        with self._lock:
            for i, n in enumerate(self._notifications):
                if n.recipient_id == recipient_id and n.seen_at is None:
                    self._notifications[i] = n.model_copy(update={"seen_at": seen_at})
                    affected += 1
        return affected

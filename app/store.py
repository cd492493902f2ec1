"""
Persistence interfaces for orders and notifications.

Two backends implement them: app.memory_store (dicts, single process) and
app.db (Postgres via asyncpg). Stores hand out copies; callers never mutate
stored state in place.
"""
from abc import ABC, abstractmethod
from datetime import datetime

from app.models import DailySummary, Notification, Order, OrderFilter, OrderStatus


class OrderStore(ABC):

    @abstractmethod
    async def create(self, order: Order) -> Order:
        ...

    @abstractmethod
    async def find_by_id(self, order_id: str) -> Order:
        """Raises NotFound when absent."""

    @abstractmethod
    async def find_by_filter(self, order_filter: OrderFilter) -> list[Order]:
        """Matching orders, newest first."""

    @abstractmethod
    async def save(self, order: Order, expected_status: OrderStatus) -> Order:
        """
        Compare-and-set write: persists order only if the stored status still
        equals expected_status. Raises ConflictError otherwise.
        """

    @abstractmethod
    async def aggregate_count_by_status(self, order_filter: OrderFilter) -> dict[str, int]:
        ...

    @abstractmethod
    async def aggregate_daily_summary(self, order_filter: OrderFilter) -> list[DailySummary]:
        """Per-day count and price sum, ascending by day."""

    async def close(self) -> None:
        return None


class NotificationStore(ABC):

    @abstractmethod
    async def add(self, notification: Notification) -> Notification:
        ...

    @abstractmethod
    async def find_for_recipient(
        self, recipient_id: str, seen_since: datetime | None = None
    ) -> list[Notification]:
        """Unseen notifications, plus those seen after seen_since when given. Oldest first."""

    @abstractmethod
    async def mark_all_seen(self, recipient_id: str, seen_at: datetime) -> int:
        """Stamp every unseen notification of the recipient; returns rows affected."""

    async def close(self) -> None:
        return None

"""
Async Postgres stores: orders (current state + line items snapshot) and notifications.
Status changes go through a compare-and-set UPDATE keyed on the expected current status,
so two writers starting from the same state cannot both succeed.
"""
import json
from datetime import datetime
from decimal import Decimal

import asyncpg

from app.errors import ConflictError, InternalError, NotFound
from app.models import DailySummary, LineItem, Notification, Order, OrderFilter, OrderStatus
from app.store import NotificationStore, OrderStore

_pool: asyncpg.Pool | None = None


async def get_pool(database_url: str) -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                customer_id VARCHAR(255) NOT NULL,
                restaurant_id VARCHAR(255) NOT NULL,
                courier_id VARCHAR(255),
                status VARCHAR(32) NOT NULL,
                ordered_at TIMESTAMPTZ NOT NULL,
                delivered_at TIMESTAMPTZ,
                line_items JSONB NOT NULL,
                total_price NUMERIC(12, 2) NOT NULL
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_restaurant_id
            ON orders(restaurant_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_status
            ON orders(status);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                id VARCHAR(64) PRIMARY KEY,
                recipient_id VARCHAR(255) NOT NULL,
                message TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                seen_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notifications_recipient_id
            ON notifications(recipient_id);
        """)


def _where(order_filter: OrderFilter) -> tuple[str, list]:
    clauses, args = [], []
    for column in ("customer_id", "restaurant_id", "courier_id"):
        value = getattr(order_filter, column)
        if value is not None:
            args.append(value)
            clauses.append(f"{column} = ${len(args)}")
    if order_filter.statuses is not None:
        args.append([s.value for s in order_filter.statuses])
        clauses.append(f"status = ANY(${len(args)}::varchar[])")
    sql = " WHERE " + " AND ".join(clauses) if clauses else ""
    return sql, args


def _daily_summary_sql(where: str) -> str:
    # Days are UTC days, matching the in-memory store.
    return f"""
        SELECT to_char(date_trunc('day', ordered_at AT TIME ZONE 'UTC'), 'YYYY-MM-DD') AS day,
               COUNT(*) AS count,
               COALESCE(SUM(total_price), 0) AS total_price
        FROM orders{where}
        GROUP BY day
        ORDER BY day ASC;
    """


def _order_from_row(row) -> Order:
    return Order(
        id=row["id"],
        customer_id=row["customer_id"],
        restaurant_id=row["restaurant_id"],
        courier_id=row["courier_id"],
        status=OrderStatus(row["status"]),
        ordered_at=row["ordered_at"],
        delivered_at=row["delivered_at"],
        line_items=tuple(LineItem(**item) for item in json.loads(row["line_items"])),
        total_price=row["total_price"],
    )


def _notification_from_row(row) -> Notification:
    return Notification(
        id=row["id"],
        recipient_id=row["recipient_id"],
        message=row["message"],
        created_at=row["created_at"],
        seen_at=row["seen_at"],
    )


class PostgresOrderStore(OrderStore):

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create(self, order: Order) -> Order:
        items = json.dumps([{"name": i.name, "unit_price": str(i.unit_price)} for i in order.line_items])
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO orders (id, customer_id, restaurant_id, courier_id, status,
                                        ordered_at, delivered_at, line_items, total_price)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9);
                    """,
                    order.id,
                    order.customer_id,
                    order.restaurant_id,
                    order.courier_id,
                    order.status.value,
                    order.ordered_at,
                    order.delivered_at,
                    items,
                    order.total_price,
                )
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return order

    async def find_by_id(self, order_id: str) -> Order:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM orders WHERE id = $1;", order_id)
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        if row is None:
            raise NotFound(f"Order {order_id} not found")
        return _order_from_row(row)

    async def find_by_filter(self, order_filter: OrderFilter) -> list[Order]:
        where, args = _where(order_filter)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(f"SELECT * FROM orders{where} ORDER BY ordered_at DESC;", *args)
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return [_order_from_row(r) for r in rows]

    async def save(self, order: Order, expected_status: OrderStatus) -> Order:
        """
        Only the mutable columns are written; line items, total and ordered_at
        are never touched after creation.
        """
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        UPDATE orders
                        SET status = $1, courier_id = $2, delivered_at = $3
                        WHERE id = $4 AND status = $5
                        RETURNING *;
                        """,
                        order.status.value,
                        order.courier_id,
                        order.delivered_at,
                        order.id,
                        expected_status.value,
                    )
                    if row is None:
                        exists = await conn.fetchval("SELECT 1 FROM orders WHERE id = $1;", order.id)
                        if exists is None:
                            raise NotFound(f"Order {order.id} not found")
                        raise ConflictError(f"Order {order.id} is no longer {expected_status.value}")
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return _order_from_row(row)

    async def aggregate_count_by_status(self, order_filter: OrderFilter) -> dict[str, int]:
        where, args = _where(order_filter)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT status, COUNT(*) AS count FROM orders{where} GROUP BY status;", *args
                )
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return {r["status"]: r["count"] for r in rows}

    async def aggregate_daily_summary(self, order_filter: OrderFilter) -> list[DailySummary]:
        where, args = _where(order_filter)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(_daily_summary_sql(where), *args)
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return [DailySummary(day=r["day"], count=r["count"], total_price=Decimal(r["total_price"])) for r in rows]


class PostgresNotificationStore(NotificationStore):

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def add(self, notification: Notification) -> Notification:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO notifications (id, recipient_id, message, created_at, seen_at)
                    VALUES ($1, $2, $3, $4, $5);
                    """,
                    notification.id,
                    notification.recipient_id,
                    notification.message,
                    notification.created_at,
                    notification.seen_at,
                )
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return notification

    async def find_for_recipient(
        self, recipient_id: str, seen_since: datetime | None = None
    ) -> list[Notification]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT * FROM notifications
                    WHERE recipient_id = $1
                      AND (seen_at IS NULL OR ($2::timestamptz IS NOT NULL AND seen_at > $2))
                    ORDER BY created_at ASC;
                    """,
                    recipient_id,
                    seen_since,
                )
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        return [_notification_from_row(r) for r in rows]

    async def mark_all_seen(self, recipient_id: str, seen_at: datetime) -> int:
        try:
            async with self.pool.acquire() as conn:
                result = await conn.execute(
                    "UPDATE notifications SET seen_at = $1 WHERE recipient_id = $2 AND seen_at IS NULL;",
                    seen_at,
                    recipient_id,
                )
        except asyncpg.PostgresError as e:
            raise InternalError(str(e)) from e
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(result.split()[-1])

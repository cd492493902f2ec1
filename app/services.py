"""
Application wiring: one bus, one pair of stores and the services built on them.
Built once per app in the lifespan and reachable from routes via app.state.
"""
import logging
from dataclasses import dataclass

from app.bus import EventBus
from app.channels import MarketingChannel, NotificationChannel, RestaurantChannel
from app.config import Settings
from app.db import PostgresNotificationStore, PostgresOrderStore, close_pool, get_pool, init_schema
from app.memory_store import MemoryNotificationStore, MemoryOrderStore
from app.notifications import NotificationService
from app.orders import OrderService
from app.redis_client import IdempotencyGuard, close_redis, get_redis
from app.store import NotificationStore, OrderStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    bus: EventBus
    order_store: OrderStore
    notification_store: NotificationStore
    notifications: NotificationService
    orders: OrderService
    marketing_channel: MarketingChannel
    restaurant_channel: RestaurantChannel
    notification_channel: NotificationChannel
    idempotency: IdempotencyGuard | None = None

    async def close(self) -> None:
        self.bus.clear()
        await self.order_store.close()
        await self.notification_store.close()
        if self.idempotency is not None:
            await close_redis()
        if self.settings.database_url:
            await close_pool()


def build_services(
    settings: Settings,
    order_store: OrderStore,
    notification_store: NotificationStore,
    idempotency: IdempotencyGuard | None = None,
) -> Services:
    bus = EventBus()
    notifications = NotificationService(notification_store, bus, settings.notification_recent_seconds)
    return Services(
        settings=settings,
        bus=bus,
        order_store=order_store,
        notification_store=notification_store,
        notifications=notifications,
        orders=OrderService(order_store, bus, notifications),
        marketing_channel=MarketingChannel(bus, order_store),
        restaurant_channel=RestaurantChannel(bus, order_store),
        notification_channel=NotificationChannel(bus, notifications),
        idempotency=idempotency,
    )


async def open_services(settings: Settings) -> Services:
    if settings.database_url:
        pool = await get_pool(settings.database_url)
        await init_schema(pool)
        order_store, notification_store = PostgresOrderStore(pool), PostgresNotificationStore(pool)
        logger.info("Using Postgres stores")
    else:
        order_store, notification_store = MemoryOrderStore(), MemoryNotificationStore()
        logger.info("DATABASE_URL not set, using in-memory stores")

    idempotency = None
    if settings.redis_url:
        idempotency = IdempotencyGuard(await get_redis(settings.redis_url), settings.idempotency_ttl_seconds)
    return build_services(settings, order_store, notification_store, idempotency)

import redis.asyncio as redis

_redis: redis.Redis | None = None


async def get_redis(redis_url: str) -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


class IdempotencyGuard:
    """
    Remembers Idempotency-Key values for order placement so a retried POST
    returns the order created by the first attempt instead of a duplicate.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 86400):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def claim(self, key: str) -> str | None:
        """
        Returns None if this key is new (caller proceeds, then calls remember).
        Returns the stored order id, or "" while the first attempt is in flight.
        Uses SET NX: if we set it, we're first.
        """
        redis_key = f"idempotency:order:{key}"
        was_set = await self.client.set(redis_key, "", nx=True, ex=self.ttl_seconds)
        if was_set:
            return None
        return await self.client.get(redis_key) or ""

    async def remember(self, key: str, order_id: str) -> None:
        await self.client.set(f"idempotency:order:{key}", order_id, ex=self.ttl_seconds)

    async def release(self, key: str) -> None:
        await self.client.delete(f"idempotency:order:{key}")

"""
Idempotency-Key handling on order placement, against an in-memory stand-in
for the few Redis commands the guard issues.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from _helper import CUSTOMER, BrokenNotificationStore, user_header
from app.main import create_app
from app.memory_store import MemoryNotificationStore, MemoryOrderStore
from app.redis_client import IdempotencyGuard
from app.routes.orders import PlaceOrderBody, place_order
from app.services import build_services


class RecordingRedis:
    def __init__(self):
        self.values = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def get(self, key):
        return self.values.get(key)

    async def delete(self, key):
        self.values.pop(key, None)


@pytest.mark.asyncio
async def test_claim_then_remember():
    guard = IdempotencyGuard(RecordingRedis())
    assert await guard.claim("k") is None
    assert await guard.claim("k") == ""
    await guard.remember("k", "order-1")
    assert await guard.claim("k") == "order-1"
    await guard.release("k")
    assert await guard.claim("k") is None


def test_retried_placement_returns_first_order(settings):
    services = build_services(
        settings, MemoryOrderStore(), MemoryNotificationStore(), idempotency=IdempotencyGuard(RecordingRedis())
    )
    body = {"restaurant_id": "r-1", "line_items": [{"name": "Soup", "unit_price": "7.50"}]}
    headers = {**user_header(CUSTOMER), "Idempotency-Key": "abc"}

    with TestClient(create_app(settings, services=services)) as client:
        first = client.post("/orders/create", json=body, headers=headers)
        second = client.post("/orders/create", json=body, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["order"]["id"] == second.json()["order"]["id"]


def test_key_survives_a_failed_notification(settings):
    services = build_services(
        settings, MemoryOrderStore(), BrokenNotificationStore(), idempotency=IdempotencyGuard(RecordingRedis())
    )
    body = {"restaurant_id": "r-1", "line_items": [{"name": "Soup", "unit_price": "7.50"}]}
    headers = {**user_header(CUSTOMER), "Idempotency-Key": "abc"}

    with TestClient(create_app(settings, services=services)) as client:
        first = client.post("/orders/create", json=body, headers=headers)
        second = client.post("/orders/create", json=body, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["order"]["id"] == second.json()["order"]["id"]


class CancelledOrderStore(MemoryOrderStore):
    async def create(self, order):
        raise asyncio.CancelledError()


@pytest.mark.asyncio
async def test_cancelled_placement_releases_key(settings):
    redis = RecordingRedis()
    services = build_services(
        settings, CancelledOrderStore(), MemoryNotificationStore(), idempotency=IdempotencyGuard(redis)
    )
    body = PlaceOrderBody(restaurant_id="r-1", line_items=[{"name": "Soup", "unit_price": "7.50"}])

    with pytest.raises(asyncio.CancelledError):
        await place_order(body, idempotency_key="abc", principal=CUSTOMER, services=services)
    assert redis.values == {}

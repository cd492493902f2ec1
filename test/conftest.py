"""
Pytest configuration and fixtures: in-memory stores wired exactly as the app
wires them, plus a TestClient sharing those services.
"""
import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.memory_store import MemoryNotificationStore, MemoryOrderStore
from app.services import build_services


@pytest.fixture
def settings():
    return Settings(database_url=None, redis_url=None, local_principal=None, notification_recent_seconds=0)


@pytest.fixture
def services(settings):
    return build_services(settings, MemoryOrderStore(), MemoryNotificationStore())


@pytest.fixture
def bus(services):
    return services.bus


@pytest.fixture
def client(settings, services):
    app = create_app(settings, services=services)
    with TestClient(app) as test_client:
        yield test_client

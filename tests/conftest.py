"""
Pytest configuration for Event Gateway tests.
"""
import os

# Set test environment variables before the app module is imported
os.environ["SINK_BACKEND"] = "memory"
os.environ.setdefault("DEBUG", "false")

import pytest
from httpx import ASGITransport, AsyncClient

from event_gateway.core.config import Settings
from event_gateway.main import create_app
from event_gateway.services.gateway import Gateway


@pytest.fixture
def settings() -> Settings:
    """Fast settings: tiny backoff, one topic routed to one queue."""
    return Settings(
        _env_file=None,
        subscriptions={"orders": ["orders-queue"]},
        base_backoff_ms=1,
        max_backoff_ms=5,
        max_attempts=3,
        high_water_mark=10,
        dispatch_workers=2,
        sink_timeout_seconds=1.0,
    )


@pytest.fixture
async def gateway(settings):
    """A started gateway, drained and stopped after the test."""
    gw = Gateway(settings)
    await gw.start()
    yield gw
    await gw.stop()


@pytest.fixture
async def client(settings, gateway):
    """HTTP client bound to the app; the gateway fixture drives the lifecycle."""
    app = create_app(settings, gateway=gateway)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

"""
Event Gateway - Main FastAPI Application

Accepts events over HTTP and relays them, through an in-process broker, to
one or more durable queues with at-least-once delivery.

Key Features:
- POST /events/{topic} ingress with size, media type and topic validation
- Bounded admission with 503 + Retry-After under backpressure
- Per-subscription retry with exponential backoff and jitter
- Dead-letter routing for failed and exhausted deliveries
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI

from .api import router
from .core.config import Settings, settings as default_settings
from .services.gateway import Gateway


def create_app(settings: Optional[Settings] = None, gateway: Optional[Gateway] = None) -> FastAPI:
    """
    Build the FastAPI application.

    The Gateway is created here, not in the lifespan, so callers can reach
    ``app.state.gateway`` before the app starts serving.
    """
    settings = settings or default_settings
    gateway = gateway or Gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.

        Handles startup (connect sinks, start broker) and shutdown (drain).
        """
        await gateway.start()
        yield
        await gateway.stop()

    app = FastAPI(
        title="Event Gateway",
        description="Event ingress and durable fan-out gateway",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.state.gateway = gateway
    app.include_router(router)

    @app.get("/", tags=["Info"])
    async def root() -> Dict[str, str]:
        """Root endpoint with service info."""
        return {
            "service": settings.service_name,
            "version": settings.service_version,
            "docs": "/docs",
        }

    return app


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if default_settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=default_settings.service_port)

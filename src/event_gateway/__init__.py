"""
Event Gateway - HTTP event ingress with durable fan-out.

Accepted events are relayed to every subscribed durable queue with
at-least-once delivery, retry with backoff, and dead-letter routing.
"""

__version__ = "0.1.0"


def get_app():
    """Get the FastAPI application instance (lazy import to avoid initialization issues)."""
    from .main import app
    return app


__all__ = ["get_app", "__version__"]

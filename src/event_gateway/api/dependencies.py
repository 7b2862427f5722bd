"""FastAPI dependencies for common request handling."""
from fastapi import Request

from ..services.gateway import Gateway


def get_gateway(request: Request) -> Gateway:
    """Return the Gateway attached to the running application."""
    return request.app.state.gateway

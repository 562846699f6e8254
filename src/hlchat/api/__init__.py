"""HTTP and websocket surface of the gateway."""

from .endpoints import auth_router, messages_router, system_router

__all__ = ["auth_router", "messages_router", "system_router"]

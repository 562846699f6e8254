"""Pydantic schemas for the gateway HTTP surface."""

from .auth import AuthRequest, AuthResponse
from .message import MessageOut, MessageRequest, MessageResponse

__all__ = [
    "AuthRequest",
    "AuthResponse",
    "MessageOut",
    "MessageRequest",
    "MessageResponse",
]

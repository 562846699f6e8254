"""SQLAlchemy models for the chat gateway."""

from .message import ChatMessage

__all__ = ["ChatMessage"]

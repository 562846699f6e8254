"""Data access helpers."""

from .message_repo import MessageRepository

__all__ = ["MessageRepository"]

"""Client-side message values."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from hlchat.core.clock import Clock, now_ms
from hlchat.core.signatures import addresses_match
from hlchat.core.typed_data import canonical_message_text


@dataclass(frozen=True)
class Message:
    """One chat entry as seen by a room client."""

    room: str
    address: str
    content: str
    timestamp: int
    nonce: str = ""
    signature: str = ""
    display_name: str | None = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Message:
        """Build a message from a relay history row or broadcast frame.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        try:
            return cls(
                room=str(data["room"]),
                address=str(data["address"]),
                content=str(data["content"]),
                timestamp=int(data["timestamp"]),
                nonce=str(data.get("nonce") or ""),
                signature=str(data.get("signature") or ""),
                display_name=data.get("name") or None,
            )
        except (KeyError, TypeError) as err:
            raise ValueError(f"malformed message payload: {err}") from err

    def is_from(self, address: str | None) -> bool:
        return addresses_match(self.address, address)

    def signing_text(self) -> str:
        """Return the plain payload this message's signature covers."""
        return canonical_message_text(
            address=self.address,
            name=self.display_name,
            content=self.content,
            timestamp=self.timestamp,
            room=self.room,
            nonce=self.nonce,
        )


@dataclass(frozen=True)
class MessageDraft:
    """An unsigned outgoing message."""

    room: str
    address: str
    content: str
    timestamp: int
    nonce: str
    display_name: str | None = None

    @classmethod
    def create(
        cls,
        room: str,
        address: str,
        content: str,
        *,
        display_name: str | None = None,
        max_length: int = 500,
        clock: Clock = now_ms,
    ) -> MessageDraft:
        """Start a draft stamped with the current time and a fresh nonce."""
        return cls(
            room=room,
            address=address,
            content=content[:max_length],
            timestamp=clock(),
            nonce=uuid.uuid4().hex,
            display_name=display_name or None,
        )

    def signing_text(self) -> str:
        return self.signed("").signing_text()

    def signed(self, signature: str) -> Message:
        return Message(
            room=self.room,
            address=self.address,
            content=self.content,
            timestamp=self.timestamp,
            nonce=self.nonce,
            signature=signature,
            display_name=self.display_name,
        )


@dataclass(frozen=True)
class ChatEntry:
    """A message in the room timeline; ``pending`` until the transport confirms it."""

    message: Message
    pending: bool = False

    def confirmed(self, message: Message | None = None) -> ChatEntry:
        return replace(self, message=message or self.message, pending=False)

"""Transport interface shared by the relay and mesh backends."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import timedelta

from hlchat.client.models import Message, MessageDraft
from hlchat.client.signing import WalletSigner

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], None]
StatusCallback = Callable[[bool], None]


class SubscriptionHandle:
    """Live binding to one room on one transport.

    Closing is idempotent: the first call stops the listener and releases any
    remote subscription, later calls do nothing.
    """

    def __init__(
        self,
        room_id: str,
        task: asyncio.Task[None] | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.room_id = room_id
        self.task = task
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.task is not None and not self.task.done():
            self.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.task
        if self._on_close is not None:
            await self._on_close()
        logger.info("Subscription to %s torn down", self.room_id)


class Transport(ABC):
    """Uniform capability interface over a message backend.

    Implementations suppress echoes of the local wallet's own messages before
    invoking ``on_message``.
    """

    def __init__(self, local_address: str | None = None) -> None:
        self.local_address = local_address

    async def connect(self, signer: WalletSigner | None = None) -> bool:
        """Prepare the transport and report whether it is online.

        ``signer`` binds the local wallet; without one the transport is read-only.
        """
        if signer is not None:
            self.local_address = signer.address
        return True

    @abstractmethod
    async def load_history(self, room_id: str, window: timedelta | None = None) -> list[Message]:
        """Return stored messages for ``room_id``, oldest first."""

    @abstractmethod
    async def subscribe(
        self,
        room_id: str,
        on_message: MessageCallback,
        on_status: StatusCallback | None = None,
    ) -> SubscriptionHandle:
        """Start delivering live messages for ``room_id``."""

    @abstractmethod
    async def send(self, draft: MessageDraft, signature: str) -> Message:
        """Publish a signed message and return it as accepted."""

    async def teardown(self, handle: SubscriptionHandle | None) -> None:
        """Close ``handle``; safe to call on an already-closed handle."""
        if handle is not None:
            await handle.close()

    async def close(self) -> None:
        """Release network resources held by the transport."""

    def is_own(self, message: Message) -> bool:
        return message.is_from(self.local_address)

"""Room synchronizer: keeps one room's timeline in step with a transport.

The synchronizer owns at most one live subscription. Every room activation
is tagged with a generation number; results that come back for an older
generation are discarded so a slow load for a previous room can never write
into the current one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from functools import partial

from hlchat.client.config import ClientSettings
from hlchat.client.models import ChatEntry, Message, MessageDraft
from hlchat.client.signing import WalletSigner
from hlchat.client.transport import SubscriptionHandle, Transport
from hlchat.core.clock import Clock, now_ms
from hlchat.core.errors import ChatError, HistoryLoadFailed, SendFailed, describe_error
from hlchat.core.typed_data import room_id as make_room_id

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RoomState(str, Enum):
    """Lifecycle of the active room."""

    IDLE = "idle"
    SWITCHING = "switching"
    LOADING_HISTORY = "loading_history"
    SUBSCRIBED = "subscribed"
    FAILED = "failed"


class SyncListener:
    """Receives timeline updates; override the callbacks you need."""

    def on_message(self, message: Message) -> None:
        pass

    def on_history_loaded(self, messages: list[Message]) -> None:
        pass

    def on_message_confirmed(self, message: Message) -> None:
        pass

    def on_connection_status_change(self, connected: bool) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass

    def on_state_change(self, state: RoomState) -> None:
        pass


class RoomSynchronizer:
    """Drives history loading, live updates and optimistic sends for one room at a time."""

    def __init__(
        self,
        transport: Transport,
        listener: SyncListener | None = None,
        settings: ClientSettings | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = now_ms,
    ) -> None:
        self.transport = transport
        self.listener = listener or SyncListener()
        self.settings = settings or ClientSettings()
        self._sleep = sleep
        self._clock = clock
        self._signer: WalletSigner | None = None
        self._room_id: str | None = None
        self._state = RoomState.IDLE
        self._entries: list[ChatEntry] = []
        self._handle: SubscriptionHandle | None = None
        self._generation = 0
        self._subscription_lock = asyncio.Lock()

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @property
    def state(self) -> RoomState:
        return self._state

    @property
    def entries(self) -> list[ChatEntry]:
        return list(self._entries)

    @property
    def messages(self) -> list[Message]:
        return [entry.message for entry in self._entries]

    @property
    def subscription(self) -> SubscriptionHandle | None:
        return self._handle

    def _set_state(self, state: RoomState) -> None:
        if state is self._state:
            return
        logger.info("Room %s: %s -> %s", self._room_id, self._state.value, state.value)
        self._state = state
        self.listener.on_state_change(state)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _on_status(self, connected: bool) -> None:
        self.listener.on_connection_status_change(connected)

    async def connect(self, signer: WalletSigner | None = None) -> bool:
        """Connect the transport, binding ``signer`` as the local wallet."""
        self._signer = signer
        online = await self.transport.connect(signer)
        self.listener.on_connection_status_change(online)
        return online

    # --- Room switching -----------------------------------------------------------
    async def set_room(self, pair: str, market: str) -> None:
        """Make ``{pair}_{market}`` the active room.

        Does nothing if it already is, unless the room is in the ``FAILED``
        state, in which case it is activated again. Otherwise the current
        subscription is torn down before anything is loaded for the new room.

        Raises:
            HistoryLoadFailed: If history could not be loaded after retrying.
        """
        room = make_room_id(pair, market)
        if room == self._room_id and self._state is not RoomState.FAILED:
            return
        self._room_id = room
        await self._activate(room, switching=True)

    async def _activate(
        self, room: str, max_attempts: int | None = None, *, switching: bool = False
    ) -> list[Message]:
        """Tear down, load history, then subscribe, all under one generation."""
        self._generation += 1
        generation = self._generation
        if switching:
            self._set_state(RoomState.SWITCHING)

        async with self._subscription_lock:
            await self._teardown()
        if switching:
            self._entries = []
        if not self._is_current(generation):
            return []

        history = await self._load_history(room, generation, max_attempts)
        if not self._is_current(generation):
            return history
        await self._subscribe(room, generation)
        return history

    async def _teardown(self) -> None:
        handle, self._handle = self._handle, None
        await self.transport.teardown(handle)

    async def _subscribe(self, room: str, generation: int) -> None:
        async with self._subscription_lock:
            if not self._is_current(generation):
                return
            try:
                handle = await self.transport.subscribe(
                    room, partial(self._on_live_message, generation), self._on_status
                )
            except Exception as err:
                if self._is_current(generation):
                    self._set_state(RoomState.FAILED)
                    self.listener.on_error(err)
                raise
            if not self._is_current(generation):
                await self.transport.teardown(handle)
                return
            self._handle = handle
            self._set_state(RoomState.SUBSCRIBED)

    # --- History ------------------------------------------------------------------
    async def load_history_with_retry(self, max_attempts: int | None = None) -> list[Message]:
        """Reload the active room's history and subscribe to it again.

        This is also how a room in the ``FAILED`` state is recovered. The
        live subscription is torn down first, so a room that ends up
        ``FAILED`` never keeps one.

        Raises:
            HistoryLoadFailed: After the last attempt fails.
        """
        if self._room_id is None:
            raise ChatError("no active room")
        return await self._activate(self._room_id, max_attempts)

    async def _load_history(self, room: str, generation: int, max_attempts: int | None) -> list[Message]:
        """Load history, waiting ``attempt * HISTORY_BACKOFF_SECONDS`` between attempts.

        Results for a generation that is no longer current are returned but
        not applied.
        """
        attempts = max_attempts or self.settings.history_max_attempts
        self._set_state(RoomState.LOADING_HISTORY)

        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                history = await self.transport.load_history(room)
            except Exception as err:
                last_error = err
                logger.warning(
                    "History load for %s failed (attempt %d/%d): %s", room, attempt, attempts, err
                )
                if not self._is_current(generation):
                    return []
                if attempt < attempts:
                    await self._sleep(attempt * self.settings.history_backoff_seconds)
                    if not self._is_current(generation):
                        return []
                continue

            ordered = sorted(history, key=lambda m: m.timestamp)
            if self._is_current(generation):
                self._entries = [ChatEntry(message) for message in ordered]
                self.listener.on_history_loaded(list(ordered))
            return ordered

        error = HistoryLoadFailed()
        error.__cause__ = last_error
        if self._is_current(generation):
            self._set_state(RoomState.FAILED)
            self.listener.on_error(error)
        raise error

    # --- Live messages ------------------------------------------------------------
    def _on_live_message(self, generation: int, message: Message) -> None:
        if not self._is_current(generation) or message.room != self._room_id:
            return
        key = (message.address.lower(), message.timestamp)
        if any((e.message.address.lower(), e.message.timestamp) == key for e in self._entries):
            return
        self._entries.append(ChatEntry(message))
        self.listener.on_message(message)

    # --- Sending ------------------------------------------------------------------
    async def send_message(
        self,
        content: str,
        signer: WalletSigner | None = None,
        *,
        display_name: str | None = None,
    ) -> Message:
        """Sign and send ``content`` to the active room.

        The message is shown as pending straight away and confirmed when the
        transport accepts it. On failure the pending entry is removed and
        nothing is retried.

        Raises:
            SendFailed: Carrying a user-facing description of the cause.
        """
        signer = signer or self._signer
        if signer is None:
            raise SendFailed("Connect a wallet to send messages.")
        if self._room_id is None:
            raise SendFailed("Select a room before sending.")

        draft = MessageDraft.create(
            self._room_id,
            signer.address,
            content,
            display_name=display_name,
            max_length=self.settings.max_content_length,
            clock=self._clock,
        )
        try:
            signature = await signer.sign_message(draft.signing_text())
        except Exception as err:
            raise self._send_failed(err) from err

        pending = ChatEntry(draft.signed(signature), pending=True)
        self._entries.append(pending)
        self.listener.on_message(pending.message)

        try:
            confirmed = await self.transport.send(draft, signature)
        except Exception as err:
            if pending in self._entries:
                self._entries.remove(pending)
            raise self._send_failed(err) from err

        for index, entry in enumerate(self._entries):
            if entry is pending:
                self._entries[index] = pending.confirmed(confirmed)
                self.listener.on_message_confirmed(confirmed)
                break
        return confirmed

    def _send_failed(self, cause: Exception) -> SendFailed:
        error = SendFailed(describe_error(cause))
        error.__cause__ = cause
        logger.warning("Send to %s failed: %s", self._room_id, cause)
        self.listener.on_error(error)
        return error

    async def close(self) -> None:
        """Tear down the subscription and release the transport."""
        self._generation += 1
        async with self._subscription_lock:
            await self._teardown()
        await self.transport.close()
        self._set_state(RoomState.IDLE)

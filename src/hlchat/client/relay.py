"""Relay transport: the central gateway for history and sends, a websocket for live updates."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any
from urllib.parse import quote

import httpx
import websockets
from websockets.exceptions import WebSocketException

from hlchat.client.config import ClientSettings
from hlchat.client.models import Message, MessageDraft
from hlchat.client.signing import WalletSigner
from hlchat.client.transport import (
    MessageCallback,
    StatusCallback,
    SubscriptionHandle,
    Transport,
)
from hlchat.core.clock import Clock, now_ms
from hlchat.core.errors import TransportError, error_from_detail
from hlchat.core.typed_data import split_room

logger = logging.getLogger(__name__)

HTTP_OK = 200

WebSocketConnect = Callable[[str], AbstractAsyncContextManager[Any]]


class RelayTransport(Transport):
    """Talks to the chat gateway over HTTP and its ``/ws/{room}`` channel.

    Every send is authenticated by the gateway; history is its unbounded
    relational query.
    """

    def __init__(
        self,
        local_address: str | None = None,
        settings: ClientSettings | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        ws_connect: WebSocketConnect | None = None,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(local_address)
        self.settings = settings or ClientSettings()
        self._http_transport = http_transport
        self._ws_connect = ws_connect or websockets.connect
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.relay_base_url.rstrip("/"),
                timeout=httpx.Timeout(self.settings.relay_http_timeout_seconds),
                transport=self._http_transport,
            )
        return self._client

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code == HTTP_OK:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("error") if isinstance(body, dict) else None
        if not detail:
            raise TransportError(f"relay responded with {response.status_code}")
        raise error_from_detail(str(detail), response.status_code)

    async def connect(self, signer: WalletSigner | None = None) -> bool:
        """Bind the wallet and run the login handshake; read-only without a signer."""
        await super().connect(signer)
        if signer is not None:
            await self.authenticate(signer)
        return True

    async def authenticate(self, signer: WalletSigner) -> str:
        """Sign the login statement and store the session token the gateway issues."""
        timestamp = self._clock()
        text = self.settings.login_message_template.format(timestamp=timestamp)
        signature = await signer.sign_message(text)
        try:
            response = await self._http().post(
                "/auth",
                json={"address": signer.address, "signature": signature, "timestamp": timestamp},
            )
        except httpx.HTTPError as err:
            raise TransportError(f"relay unreachable: {err}") from err
        self._raise_for_error(response)
        self._token = response.json()["token"]
        logger.info("Relay session established for %s", signer.address.lower())
        return self._token

    async def load_history(self, room_id: str, window: timedelta | None = None) -> list[Message]:
        params: dict[str, Any] = {"room": room_id}
        if window is not None:
            params["since"] = self._clock() - int(window.total_seconds() * 1000)
        try:
            response = await self._http().get("/messages", params=params)
        except httpx.HTTPError as err:
            raise TransportError(f"relay unreachable: {err}") from err
        self._raise_for_error(response)

        messages = []
        for row in response.json():
            try:
                messages.append(Message.from_payload(row))
            except ValueError as err:
                logger.warning("Skipping malformed history row in %s: %s", room_id, err)
        logger.debug("Loaded %d relay message(s) for %s", len(messages), room_id)
        return messages

    async def subscribe(
        self,
        room_id: str,
        on_message: MessageCallback,
        on_status: StatusCallback | None = None,
    ) -> SubscriptionHandle:
        handle = SubscriptionHandle(room_id)
        handle.task = asyncio.create_task(self._listen(handle, on_message, on_status))
        logger.info("Subscribed to relay room %s", room_id)
        return handle

    async def _listen(
        self,
        handle: SubscriptionHandle,
        on_message: MessageCallback,
        on_status: StatusCallback | None,
    ) -> None:
        url = f"{self.settings.ws_base_url}/ws/{quote(handle.room_id, safe='')}"
        while not handle.closed:
            try:
                async with self._ws_connect(url) as socket:
                    if on_status:
                        on_status(True)
                    async for frame in socket:
                        self._dispatch(handle.room_id, frame, on_message)
            except (OSError, WebSocketException) as err:
                logger.warning("Relay socket for %s dropped: %s", handle.room_id, err)
            except Exception as err:
                logger.error("Relay listener for %s failed: %s", handle.room_id, err, exc_info=True)
            if on_status:
                on_status(False)
            if handle.closed:
                break
            await asyncio.sleep(self.settings.relay_reconnect_seconds)

    def _dispatch(self, room_id: str, frame: str | bytes, on_message: MessageCallback) -> None:
        try:
            message = Message.from_payload(json.loads(frame))
        except ValueError as err:
            logger.warning("Ignoring undecodable relay frame in %s: %s", room_id, err)
            return
        if message.room != room_id or self.is_own(message):
            return
        try:
            on_message(message)
        except Exception as err:
            logger.error("Message callback for %s failed: %s", room_id, err, exc_info=True)

    async def send(self, draft: MessageDraft, signature: str) -> Message:
        pair, market = split_room(draft.room)
        body = {
            "signature": signature,
            "message": draft.signing_text(),
            "address": draft.address,
            "name": draft.display_name,
            "pair": pair,
            "market": market,
        }
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            response = await self._http().post("/message", json=body, headers=headers)
        except httpx.HTTPError as err:
            raise TransportError(f"relay unreachable: {err}") from err
        self._raise_for_error(response)
        return draft.signed(signature)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


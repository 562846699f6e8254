"""Mesh transport over a Waku node's REST API.

There is no gateway on the mesh. Records are pushed straight into the peer
network, so authenticity rests on the signature embedded in each record.
Receivers verify it and drop records whose nonce they have already seen,
but nothing rate-limits senders or checks display-name ownership. This is a
weaker guarantee than the relay transport gives.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import math
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from typing import Any
from urllib.parse import quote

import httpx

from hlchat.client.config import ClientSettings
from hlchat.client.models import Message, MessageDraft
from hlchat.client.signing import WalletSigner
from hlchat.client.transport import (
    MessageCallback,
    StatusCallback,
    SubscriptionHandle,
    Transport,
)
from hlchat.client.wire import decode_message, encode_message
from hlchat.core.clock import Clock, now_ms
from hlchat.core.errors import NoCapablePeer, TransportError
from hlchat.core.signatures import addresses_match, recover_text_signer

logger = logging.getLogger(__name__)

HTTP_OK = 200
NS_PER_MS = 1_000_000
MAX_HISTORY_PAGES = 50
SEEN_NONCE_LIMIT = 10_000

# Protocol families; nodes advertise versioned ids such as /vac/waku/store-query/3.0.0.
STORE_PROTOCOL = "/vac/waku/store"
LIGHTPUSH_PROTOCOL = "/vac/waku/lightpush"
FILTER_PROTOCOL = "/vac/waku/filter"

Sleep = Callable[[float], Awaitable[None]]


def content_topic(room_id: str) -> str:
    """Return the content topic a room's records are published on."""
    return f"/hl-chat/1/{room_id}/proto"


def _is_connected(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.lower() == "connected"
    return bool(value)


def peer_protocols(peer: Mapping[str, Any]) -> set[str]:
    """Return the protocols a peer entry advertises over a live connection.

    Older nodes list ``{"protocol": ..., "connected": ...}`` objects, newer ones
    plain strings with a peer-level ``connected`` flag.
    """
    peer_connected = peer.get("connected")
    protocols: set[str] = set()
    for entry in peer.get("protocols") or []:
        if isinstance(entry, str):
            name, connected = entry, peer_connected
        elif isinstance(entry, Mapping):
            name, connected = entry.get("protocol"), entry.get("connected", peer_connected)
        else:
            continue
        if name and _is_connected(connected):
            protocols.add(str(name))
    return protocols


class MeshTransport(Transport):
    """Store, filter and lightpush against a single Waku REST endpoint."""

    def __init__(
        self,
        local_address: str | None = None,
        settings: ClientSettings | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(local_address)
        self.settings = settings or ClientSettings()
        self.pubsub_topic = self.settings.mesh_pubsub_topic
        self._http_transport = http_transport
        self._sleep = sleep
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._seen_nonces: OrderedDict[str, None] = OrderedDict()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.mesh_node_url.rstrip("/"),
                timeout=httpx.Timeout(self.settings.mesh_http_timeout_seconds),
                transport=self._http_transport,
            )
        return self._client

    # --- Peers --------------------------------------------------------------------
    async def peers(self) -> list[dict[str, Any]]:
        """Return the node's peer table."""
        try:
            response = await self._http().get("/admin/v1/peers")
        except httpx.HTTPError as err:
            raise TransportError(f"mesh node unreachable: {err}") from err
        if response.status_code != HTTP_OK:
            raise TransportError(f"mesh node responded with {response.status_code}")
        body = response.json()
        return [peer for peer in body if isinstance(peer, dict)] if isinstance(body, list) else []

    async def has_peer(self, capability: str | None = None) -> bool:
        for peer in await self.peers():
            protocols = peer_protocols(peer)
            if capability is None and protocols:
                return True
            if capability and any(p.startswith(capability) for p in protocols):
                return True
        return False

    async def wait_for_peer(self, capability: str | None = None) -> None:
        """Poll the peer table until a peer offers ``capability``.

        Raises:
            NoCapablePeer: If none appears within ``mesh_peer_wait_seconds``.
        """
        poll = max(self.settings.mesh_peer_poll_seconds, 0.01)
        attempts = max(1, math.ceil(self.settings.mesh_peer_wait_seconds / poll))
        for attempt in range(1, attempts + 1):
            try:
                if await self.has_peer(capability):
                    return
            except TransportError as err:
                logger.debug("Peer lookup failed: %s", err)
            if attempt < attempts:
                await self._sleep(poll)
        raise NoCapablePeer(f"no peer available for {capability or 'any protocol'}")

    async def connect(self, signer: WalletSigner | None = None) -> bool:
        await super().connect(signer)
        try:
            await self.wait_for_peer()
        except NoCapablePeer:
            logger.warning("No mesh peers connected; messages cannot be sent yet")
            return False
        logger.info("Connected to mesh via %s", self.settings.mesh_node_url)
        return True

    # --- Records ------------------------------------------------------------------
    def _remember(self, nonce: str) -> None:
        self._seen_nonces[nonce] = None
        self._seen_nonces.move_to_end(nonce)
        while len(self._seen_nonces) > SEEN_NONCE_LIMIT:
            self._seen_nonces.popitem(last=False)

    def _verified(self, message: Message) -> bool:
        if not self.settings.mesh_verify_signatures:
            return True
        if not message.nonce or not message.signature:
            return False
        signer = recover_text_signer(message.signing_text(), message.signature)
        return addresses_match(signer, message.address)

    def _decode(self, room_id: str, record: Any) -> Message | None:
        if not isinstance(record, Mapping) or not record.get("payload"):
            return None
        try:
            payload = base64.b64decode(record["payload"], validate=True)
            message = decode_message(payload, room_id)
        except (binascii.Error, ValueError) as err:
            logger.warning("Dropping undecodable mesh record in %s: %s", room_id, err)
            return None
        if not self._verified(message):
            logger.warning("Dropping mesh record with bad signature from %s", message.address)
            return None
        return message

    # --- History ------------------------------------------------------------------
    async def load_history(self, room_id: str, window: timedelta | None = None) -> list[Message]:
        """Query the store for the last ``window`` (default 12 hours) of a room."""
        await self.wait_for_peer(STORE_PROTOCOL)
        window = window or timedelta(hours=self.settings.mesh_history_window_hours)
        end_ms = self._clock()
        start_ms = end_ms - int(window.total_seconds() * 1000)
        params: dict[str, Any] = {
            "pubsubTopic": self.pubsub_topic,
            "contentTopics": content_topic(room_id),
            "startTime": start_ms * NS_PER_MS,
            "endTime": end_ms * NS_PER_MS,
            "includeData": "true",
            "ascending": "true",
            "pageSize": self.settings.mesh_history_page_size,
        }

        messages: list[Message] = []
        seen: set[str] = set()
        for _page in range(MAX_HISTORY_PAGES):
            try:
                response = await self._http().get("/store/v3/messages", params=params)
            except httpx.HTTPError as err:
                raise TransportError(f"store query failed: {err}") from err
            if response.status_code != HTTP_OK:
                raise TransportError(f"store query responded with {response.status_code}")
            body = response.json()
            status = body.get("statusCode", HTTP_OK)
            if status != HTTP_OK:
                raise TransportError(f"store query failed: {body.get('statusDesc') or status}")

            for item in body.get("messages") or []:
                message = self._decode(room_id, item.get("message") if isinstance(item, dict) else None)
                if message is None or message.nonce in seen:
                    continue
                seen.add(message.nonce)
                messages.append(message)

            cursor = body.get("paginationCursor")
            if not cursor:
                break
            params["paginationCursor"] = cursor

        for nonce in seen:
            self._remember(nonce)
        messages.sort(key=lambda m: m.timestamp)
        logger.debug("Loaded %d mesh message(s) for %s", len(messages), room_id)
        return messages

    # --- Live updates -------------------------------------------------------------
    def _filter_body(self, topic: str) -> dict[str, Any]:
        return {
            "requestId": uuid.uuid4().hex,
            "contentFilters": [topic],
            "pubsubTopic": self.pubsub_topic,
        }

    async def subscribe(
        self,
        room_id: str,
        on_message: MessageCallback,
        on_status: StatusCallback | None = None,
    ) -> SubscriptionHandle:
        await self.wait_for_peer(FILTER_PROTOCOL)
        topic = content_topic(room_id)
        try:
            response = await self._http().post("/filter/v2/subscriptions", json=self._filter_body(topic))
        except httpx.HTTPError as err:
            raise TransportError(f"filter subscribe failed: {err}") from err
        if response.status_code != HTTP_OK:
            raise TransportError(f"filter subscribe responded with {response.status_code}")

        async def unsubscribe() -> None:
            try:
                await self._http().request(
                    "DELETE", "/filter/v2/subscriptions", json=self._filter_body(topic)
                )
            except httpx.HTTPError as err:
                logger.warning("Filter unsubscribe for %s failed: %s", room_id, err)

        handle = SubscriptionHandle(room_id, on_close=unsubscribe)
        handle.task = asyncio.create_task(self._poll(handle, on_message, on_status))
        if on_status:
            on_status(True)
        logger.info("Subscribed to mesh topic %s", topic)
        return handle

    async def _poll(
        self,
        handle: SubscriptionHandle,
        on_message: MessageCallback,
        on_status: StatusCallback | None,
    ) -> None:
        path = f"/filter/v2/messages/{quote(content_topic(handle.room_id), safe='')}"
        online = True

        def report(connected: bool) -> None:
            nonlocal online
            if connected != online and on_status:
                on_status(connected)
            online = connected

        try:
            while not handle.closed:
                try:
                    response = await self._http().get(path)
                    records = response.json() if response.status_code == HTTP_OK else []
                except httpx.HTTPError as err:
                    logger.warning("Filter poll for %s failed: %s", handle.room_id, err)
                    report(False)
                except ValueError as err:
                    logger.warning("Filter poll for %s returned an unreadable body: %s", handle.room_id, err)
                    report(False)
                else:
                    report(True)
                    for record in records if isinstance(records, list) else []:
                        self._deliver(handle.room_id, record, on_message)
                await self._sleep(self.settings.mesh_poll_interval_seconds)
        except Exception as err:
            logger.error("Filter polling for %s stopped: %s", handle.room_id, err, exc_info=True)
            report(False)

    def _deliver(self, room_id: str, record: Any, on_message: MessageCallback) -> None:
        message = self._decode(room_id, record)
        if message is None or message.nonce in self._seen_nonces:
            return
        self._remember(message.nonce)
        if self.is_own(message):
            return
        try:
            on_message(message)
        except Exception as err:
            logger.error("Message callback for %s failed: %s", room_id, err, exc_info=True)

    # --- Send ---------------------------------------------------------------------
    async def send(self, draft: MessageDraft, signature: str) -> Message:
        await self.wait_for_peer(LIGHTPUSH_PROTOCOL)
        message = draft.signed(signature)
        body = {
            "pubsubTopic": self.pubsub_topic,
            "message": {
                "payload": base64.b64encode(encode_message(message)).decode("ascii"),
                "contentTopic": content_topic(draft.room),
                "timestamp": draft.timestamp * NS_PER_MS,
                "version": 0,
            },
        }
        try:
            response = await self._http().post("/lightpush/v1/message", json=body)
        except httpx.HTTPError as err:
            raise TransportError(f"lightpush failed: {err}") from err
        if response.status_code != HTTP_OK:
            raise TransportError(f"lightpush responded with {response.status_code}: {response.text}")
        self._remember(message.nonce)
        logger.debug("Pushed message %s to %s", message.nonce, draft.room)
        return message

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

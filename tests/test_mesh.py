# tests/test_mesh.py
from __future__ import annotations

import asyncio
import base64
import json
from datetime import timedelta

import httpx
import pytest
from eth_account import Account

from hlchat.client.config import ClientSettings
from hlchat.client.mesh import MeshTransport, content_topic, peer_protocols
from hlchat.client.models import Message, MessageDraft
from hlchat.client.signing import LocalWalletSigner
from hlchat.client.wire import decode_message, encode_message
from hlchat.core.errors import NoCapablePeer, TransportError

from tests.conftest import sign_text

NOW_MS = 1_700_000_000_000
STORE = {"protocol": "/vac/waku/store-query/3.0.0", "connected": True}
LIGHTPUSH = {"protocol": "/vac/waku/lightpush/2.0.0-beta1", "connected": True}
FILTER = {"protocol": "/vac/waku/filter-subscribe/2.0.0-beta1", "connected": True}


def record(account, *, room: str = "BTC_perp", content: str = "gm", timestamp: int = NOW_MS, nonce: str = "n1",
           forged_by=None) -> dict:
    message = Message(room=room, address=account.address, content=content, timestamp=timestamp, nonce=nonce)
    signature = sign_text(forged_by or account, message.signing_text())
    signed = Message(
        room=room, address=account.address, content=content, timestamp=timestamp, nonce=nonce, signature=signature
    )
    return {
        "payload": base64.b64encode(encode_message(signed)).decode(),
        "contentTopic": content_topic(room),
        "timestamp": timestamp * 1_000_000,
    }


class FakeNode:
    """In-memory stand-in for a Waku node's REST API."""

    def __init__(self, protocols: list[dict] | None = None) -> None:
        self.protocols = protocols if protocols is not None else [STORE, LIGHTPUSH, FILTER]
        self.store_pages: list[dict] = []
        self.filter_queue: list[dict] = []
        self.filter_responses: list[httpx.Response] = []
        self.pushed: list[dict] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/admin/v1/peers":
            peers = [{"multiaddr": "/ip4/10.0.0.1/tcp/60000", "protocols": self.protocols}] if self.protocols else []
            return httpx.Response(200, json=peers)
        if path == "/store/v3/messages":
            return httpx.Response(200, json=self.store_pages.pop(0))
        if path == "/lightpush/v1/message":
            self.pushed.append(json.loads(request.content))
            return httpx.Response(200, text="OK")
        if path == "/filter/v2/subscriptions":
            return httpx.Response(200, json={"requestId": "x", "statusDesc": "OK"})
        if path.startswith("/filter/v2/messages/"):
            if self.filter_responses:
                return self.filter_responses.pop(0)
            batch, self.filter_queue = self.filter_queue, []
            return httpx.Response(200, json=batch)
        return httpx.Response(404)

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)


class Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture()
def settings() -> ClientSettings:
    return ClientSettings(
        mesh_node_url="http://node.test",
        mesh_peer_wait_seconds=1.0,
        mesh_peer_poll_seconds=0.5,
        mesh_poll_interval_seconds=0.01,
    )


@pytest.fixture()
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture()
def sleeps() -> Sleeps:
    return Sleeps()


@pytest.fixture()
def mesh(settings, node, sleeps) -> MeshTransport:
    return MeshTransport(
        settings=settings,
        http_transport=httpx.MockTransport(node.handler),
        sleep=sleeps,
        clock=lambda: NOW_MS,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_peer_protocols_reads_both_peer_table_formats() -> None:
    legacy = {"protocols": [STORE, {"protocol": "/vac/waku/relay/2.0.0", "connected": False}]}
    current = {"protocols": ["/vac/waku/lightpush/2.0.0-beta1"], "connected": "Connected"}
    offline = {"protocols": ["/vac/waku/lightpush/2.0.0-beta1"], "connected": "NotConnected"}

    assert peer_protocols(legacy) == {"/vac/waku/store-query/3.0.0"}
    assert peer_protocols(current) == {"/vac/waku/lightpush/2.0.0-beta1"}
    assert peer_protocols(offline) == set()


@pytest.mark.asyncio
async def test_waiting_for_a_missing_capability_times_out(settings, sleeps) -> None:
    node = FakeNode(protocols=[LIGHTPUSH])
    mesh = MeshTransport(settings=settings, http_transport=httpx.MockTransport(node.handler), sleep=sleeps)

    with pytest.raises(NoCapablePeer):
        await mesh.load_history("BTC_perp")

    assert sleeps.delays == [0.5]
    assert node.calls("GET", "/admin/v1/peers") == 2


@pytest.mark.asyncio
async def test_connect_reports_offline_without_peers(settings, sleeps) -> None:
    node = FakeNode(protocols=[])
    mesh = MeshTransport(settings=settings, http_transport=httpx.MockTransport(node.handler), sleep=sleeps)

    assert await mesh.connect(LocalWalletSigner.generate()) is False


@pytest.mark.asyncio
async def test_history_is_paginated_verified_and_sorted(mesh, node) -> None:
    alice, mallory = Account.create(), Account.create()
    later = record(alice, content="second", timestamp=NOW_MS - 1000, nonce="b")
    earlier = record(alice, content="first", timestamp=NOW_MS - 5000, nonce="a")
    forged = record(alice, content="forged", nonce="c", forged_by=mallory)
    node.store_pages = [
        {"statusCode": 200, "messages": [{"message": later}, {"message": forged}], "paginationCursor": "page-2"},
        {"statusCode": 200, "messages": [{"message": earlier}, {"message": later}, {"messageHash": "0x1"}]},
    ]

    history = await mesh.load_history("BTC_perp")

    assert [m.content for m in history] == ["first", "second"]
    store_calls = [r for r in node.requests if r.url.path == "/store/v3/messages"]
    assert len(store_calls) == 2
    first_params = store_calls[0].url.params
    assert first_params["contentTopics"] == "/hl-chat/1/BTC_perp/proto"
    assert first_params["pubsubTopic"] == "/waku/2/rs/999/42000"
    assert int(first_params["startTime"]) == (NOW_MS - 12 * 3600 * 1000) * 1_000_000
    assert first_params["ascending"] == "true"
    assert store_calls[1].url.params["paginationCursor"] == "page-2"


@pytest.mark.asyncio
async def test_history_window_can_be_narrowed(mesh, node) -> None:
    node.store_pages = [{"statusCode": 200, "messages": []}]

    await mesh.load_history("BTC_perp", timedelta(hours=1))

    params = [r for r in node.requests if r.url.path == "/store/v3/messages"][0].url.params
    assert int(params["startTime"]) == (NOW_MS - 3600 * 1000) * 1_000_000


@pytest.mark.asyncio
async def test_store_failure_raises(mesh, node) -> None:
    node.store_pages = [{"statusCode": 503, "statusDesc": "store unavailable"}]

    with pytest.raises(TransportError):
        await mesh.load_history("BTC_perp")


@pytest.mark.asyncio
async def test_send_pushes_encoded_record(mesh, node) -> None:
    signer = LocalWalletSigner.generate()
    draft = MessageDraft.create("ETH_spot", signer.address, "wen moon", clock=lambda: NOW_MS)
    signature = await signer.sign_message(draft.signing_text())

    sent = await mesh.send(draft, signature)

    body = node.pushed[0]
    assert body["pubsubTopic"] == "/waku/2/rs/999/42000"
    assert body["message"]["contentTopic"] == "/hl-chat/1/ETH_spot/proto"
    assert body["message"]["timestamp"] == NOW_MS * 1_000_000
    assert decode_message(base64.b64decode(body["message"]["payload"]), "ETH_spot") == sent


@pytest.mark.asyncio
async def test_subscription_delivers_verified_messages_from_others(mesh, node) -> None:
    me, friend, mallory = Account.create(), Account.create(), Account.create()
    mesh.local_address = me.address
    received: list[Message] = []
    statuses: list[bool] = []

    handle = await mesh.subscribe("BTC_perp", received.append, statuses.append)
    node.filter_queue = [
        record(me, content="my echo", nonce="mine"),
        record(friend, content="bad sig", nonce="x", forged_by=mallory),
        record(friend, content="hello", nonce="f1"),
        record(friend, content="hello again", nonce="f1"),
    ]
    await wait_until(lambda: len(received) >= 1)

    assert [m.content for m in received] == ["hello"]
    assert statuses == [True]
    assert node.calls("POST", "/filter/v2/subscriptions") == 1

    await mesh.teardown(handle)
    await mesh.teardown(handle)

    assert node.calls("DELETE", "/filter/v2/subscriptions") == 1
    assert handle.task is not None and handle.task.done()


@pytest.mark.asyncio
async def test_teardown_unsubscribes_once(mesh, node) -> None:
    handle = await mesh.subscribe("BTC_perp", lambda m: None)

    await mesh.teardown(handle)
    await mesh.teardown(handle)
    await mesh.teardown(None)

    deletes = [r for r in node.requests if r.method == "DELETE"]
    assert len(deletes) == 1
    assert json.loads(deletes[0].content)["contentFilters"] == ["/hl-chat/1/BTC_perp/proto"]
    assert handle.closed


@pytest.mark.asyncio
async def test_live_record_with_seen_nonce_is_dropped(mesh, node) -> None:
    friend = Account.create()
    node.store_pages = [{"statusCode": 200, "messages": [{"message": record(friend, content="old", nonce="h1")}]}]
    await mesh.load_history("BTC_perp")
    received: list[Message] = []

    handle = await mesh.subscribe("BTC_perp", received.append)
    node.filter_queue = [record(friend, content="old", nonce="h1"), record(friend, content="new", nonce="l1")]
    await wait_until(lambda: len(received) >= 1)
    node.filter_queue = [record(friend, content="new replayed", nonce="l1")]
    await wait_until(lambda: node.filter_queue == [])
    await asyncio.sleep(0.05)

    assert [m.content for m in received] == ["new"]
    await mesh.teardown(handle)


@pytest.mark.asyncio
async def test_unreadable_poll_reports_offline_and_keeps_polling(mesh, node) -> None:
    friend = Account.create()
    received: list[Message] = []
    statuses: list[bool] = []
    node.filter_responses = [httpx.Response(200, text="<html>gateway timeout</html>")]

    handle = await mesh.subscribe("BTC_perp", received.append, statuses.append)
    await wait_until(lambda: False in statuses)
    node.filter_queue = [record(friend, content="back", nonce="r1")]
    await wait_until(lambda: len(received) == 1)

    assert statuses == [True, False, True]
    assert handle.task is not None and not handle.task.done()
    await mesh.teardown(handle)


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_polling(mesh, node) -> None:
    friend = Account.create()
    received: list[Message] = []

    def on_message(message: Message) -> None:
        received.append(message)
        if message.content == "boom":
            raise RuntimeError("listener bug")

    handle = await mesh.subscribe("BTC_perp", on_message)
    node.filter_queue = [record(friend, content="boom", nonce="b1")]
    await wait_until(lambda: len(received) == 1)
    node.filter_queue = [record(friend, content="after", nonce="b2")]
    await wait_until(lambda: len(received) == 2)

    assert handle.task is not None and not handle.task.done()
    await mesh.teardown(handle)

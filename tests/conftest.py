# tests/conftest.py
from __future__ import annotations

import json
import os
import time
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("JWT_SECRET", "test-secret-for-session-tokens")

from hlchat.api.dependencies import get_broadcaster_dep, get_gateway_dep
from hlchat.core.security import create_session_token
from hlchat.core.typed_data import canonical_message_text
from hlchat.db.session import Base
from hlchat.db.session import get_db as app_get_session
from hlchat.main import app as fastapi_app
from hlchat.repositories.message_repo import MessageRepository
from hlchat.services.broadcast import RoomBroadcaster
from hlchat.services.gateway import MessageGateway
from hlchat.services.replay import NonceGuard, RateLimiter

TEST_DB_URL = "sqlite://"


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: int | None = None) -> None:
        self.now = now if now is not None else int(time.time() * 1000)

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeNames:
    """Name ownership stand-in keyed by lower-cased address."""

    def __init__(self, owned: dict[str, set[str]] | None = None) -> None:
        self.owned = owned or {}
        self.calls: list[tuple[str, str | None]] = []

    async def owns_name(self, address: str, name: str | None) -> bool:
        self.calls.append((address, name))
        if not name:
            return True
        return name.lower() in {n.lower() for n in self.owned.get(address.lower(), set())}

    def sweep(self) -> int:
        return 0


def sign_text(account: LocalAccount, text: str) -> str:
    signed = account.sign_message(encode_defunct(text=text))
    return "0x" + bytes(signed.signature).hex()


def signed_message(
    account: LocalAccount,
    *,
    content: str = "hi",
    timestamp: int | None = None,
    nonce: str = "n1",
    room: str = "BTC_perp",
    name: str | None = None,
) -> tuple[str, str]:
    """Return ``(payload, signature)`` for a plain-mode chat message."""
    payload = canonical_message_text(
        address=account.address,
        name=name,
        content=content,
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        room=room,
        nonce=nonce,
    )
    return payload, sign_text(account, payload)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def repository(db_session: Session) -> MessageRepository:
    return MessageRepository(db_session)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def names() -> FakeNames:
    return FakeNames()


@pytest.fixture()
def gateway(clock: FakeClock, names: FakeNames) -> MessageGateway:
    return MessageGateway(
        NonceGuard(clock=clock),
        RateLimiter(clock=clock),
        names,  # type: ignore[arg-type]
        clock=clock,
    )


@pytest.fixture()
def broadcaster() -> RoomBroadcaster:
    return RoomBroadcaster()


@pytest.fixture()
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    session_factory: sessionmaker[Session],
    gateway: MessageGateway,
    broadcaster: RoomBroadcaster,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_gateway_dep] = lambda: gateway
    app.dependency_overrides[get_broadcaster_dep] = lambda: broadcaster
    try:
        yield
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def wallet() -> LocalAccount:
    return Account.create()


@pytest.fixture()
def other_wallet() -> LocalAccount:
    return Account.create()


@pytest.fixture()
def auth_headers(wallet: LocalAccount) -> dict[str, str]:
    """Return authorization headers for ``wallet``."""
    return {"Authorization": f"Bearer {create_session_token(wallet.address)}"}


@pytest.fixture()
def make_message(wallet: LocalAccount) -> Callable[..., dict[str, Any]]:
    """Build a ``POST /message`` body signed by ``wallet``."""

    def _make(**kwargs: Any) -> dict[str, Any]:
        account = kwargs.pop("account", wallet)
        payload, signature = signed_message(account, **kwargs)
        fields = json.loads(payload)
        pair, _, market = fields["room"].rpartition("_")
        return {
            "signature": signature,
            "message": payload,
            "address": account.address,
            "pair": pair,
            "market": market,
        }

    return _make

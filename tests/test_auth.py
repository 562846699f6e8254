# tests/test_auth.py
from __future__ import annotations

import time

from eth_account.messages import encode_typed_data
from fastapi.testclient import TestClient

from hlchat.core.security import decode_session_token
from hlchat.core.typed_data import create_login_typed_data

from tests.conftest import sign_text


def _now() -> int:
    return int(time.time() * 1000)


def test_plain_login_issues_session_token(client: TestClient, wallet) -> None:
    timestamp = _now()
    signature = sign_text(wallet, f"HyperLiquidChat login {timestamp}")

    r = client.post("/auth", json={"address": wallet.address, "signature": signature, "timestamp": timestamp})

    assert r.status_code == 200
    assert decode_session_token(r.json()["token"]) == wallet.address.lower()


def test_typed_login_issues_session_token(client: TestClient, wallet) -> None:
    timestamp = _now()
    typed = create_login_typed_data(timestamp, "login-nonce")
    signed = wallet.sign_message(encode_typed_data(full_message=typed))

    r = client.post(
        "/auth",
        json={
            "address": wallet.address,
            "signature": "0x" + bytes(signed.signature).hex(),
            "timestamp": timestamp,
            "typedData": typed,
        },
    )

    assert r.status_code == 200
    assert r.json()["token"]


def test_stale_login_is_rejected(client: TestClient, wallet) -> None:
    timestamp = _now() - 3 * 60 * 1000
    signature = sign_text(wallet, f"HyperLiquidChat login {timestamp}")

    r = client.post("/auth", json={"address": wallet.address, "signature": signature, "timestamp": timestamp})

    assert r.status_code == 400
    assert r.json() == {"error": "stale timestamp"}


def test_login_for_someone_elses_address_is_rejected(client: TestClient, wallet, other_wallet) -> None:
    timestamp = _now()
    signature = sign_text(other_wallet, f"HyperLiquidChat login {timestamp}")

    r = client.post("/auth", json={"address": wallet.address, "signature": signature, "timestamp": timestamp})

    assert r.status_code == 400
    assert r.json() == {"error": "signature mismatch"}


def test_login_with_missing_fields_is_rejected(client: TestClient, wallet) -> None:
    r = client.post("/auth", json={"address": wallet.address})

    assert r.status_code == 400
    assert r.json() == {"error": "address, signature, timestamp required"}

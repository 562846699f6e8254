"""Signed payload formats.

Two formats are accepted for both login and chat messages:

* a plain string signed with ``personal_sign`` (EIP-191), and
* EIP-712 structured data, which wallets can render field by field.
"""

from __future__ import annotations

import json
from typing import Any

EIP712_DOMAIN: dict[str, str] = {"name": "Hyperliquid Chat", "version": "1"}

EIP712_DOMAIN_TYPE: list[dict[str, str]] = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
]

LOGIN_TYPE: dict[str, list[dict[str, str]]] = {
    "Login": [
        {"name": "message", "type": "string"},
        {"name": "timestamp", "type": "uint256"},
        {"name": "nonce", "type": "string"},
    ]
}

MESSAGE_TYPE: dict[str, list[dict[str, str]]] = {
    "ChatMessage": [
        {"name": "room", "type": "string"},
        {"name": "content", "type": "string"},
        {"name": "timestamp", "type": "uint256"},
        {"name": "nonce", "type": "string"},
    ]
}

LOGIN_STATEMENT = "Sign in to Hyperliquid Chat"


def room_id(pair: str, market: str) -> str:
    """Return the room key for a trading pair and market."""
    return f"{pair}_{market}"


def split_room(room: str) -> tuple[str, str]:
    """Split a room key back into ``(pair, market)``."""
    pair, sep, market = room.rpartition("_")
    if not sep:
        return room, ""
    return pair, market


def create_login_typed_data(timestamp: int, nonce: str) -> dict[str, Any]:
    """Build EIP-712 typed data for the login handshake."""
    return {
        "domain": dict(EIP712_DOMAIN),
        "primaryType": "Login",
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **LOGIN_TYPE},
        "message": {
            "message": LOGIN_STATEMENT,
            "timestamp": timestamp,
            "nonce": nonce,
        },
    }


def create_message_typed_data(room: str, content: str, timestamp: int, nonce: str) -> dict[str, Any]:
    """Build EIP-712 typed data for a chat message."""
    return {
        "domain": dict(EIP712_DOMAIN),
        "primaryType": "ChatMessage",
        "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **MESSAGE_TYPE},
        "message": {
            "room": room,
            "content": content,
            "timestamp": timestamp,
            "nonce": nonce,
        },
    }


def canonical_message_text(
    *,
    address: str,
    name: str | None,
    content: str,
    timestamp: int,
    room: str,
    nonce: str,
) -> str:
    """Return the exact JSON string a wallet signs for a plain-mode message.

    Key order and compact separators are fixed so that a receiver holding
    only the decoded fields can rebuild the signed bytes.
    """
    return json.dumps(
        {
            "address": address,
            "name": name or "",
            "content": content,
            "timestamp": timestamp,
            "room": room,
            "nonce": nonce,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )

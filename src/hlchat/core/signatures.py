"""Wallet signature recovery for plain-text and EIP-712 payloads."""

from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data


def normalize_address(address: str) -> str:
    """Return the canonical lower-cased hex form of a wallet address."""
    return address.strip().lower()


def addresses_match(left: str | None, right: str | None) -> bool:
    """Compare two wallet addresses case-insensitively."""
    if not left or not right:
        return False
    return normalize_address(left) == normalize_address(right)


def recover_text_signer(text: str, signature: str) -> str | None:
    """Recover the address that ``personal_sign``-ed ``text``.

    Args:
        text: Exact string that was signed on the client.
        signature: Hex-encoded 65-byte signature.

    Returns:
        The recovered checksum address, or None when the signature is malformed.
    """
    try:
        return Account.recover_message(encode_defunct(text=text), signature=signature)
    except Exception:
        return None


def _strip_domain_type(typed_data: dict[str, Any]) -> dict[str, Any]:
    types = dict(typed_data.get("types") or {})
    types.pop("EIP712Domain", None)
    return types


def recover_typed_data_signer(typed_data: dict[str, Any], signature: str) -> str:
    """Recover the signer of an EIP-712 payload.

    Raises:
        ValueError: If the typed data is malformed or the signature cannot be
            recovered.
    """
    domain = typed_data.get("domain")
    message = typed_data.get("message")
    if not isinstance(domain, dict) or not isinstance(message, dict):
        raise ValueError("typed data requires domain and message objects")
    signable = encode_typed_data(
        domain_data=domain,
        message_types=_strip_domain_type(typed_data),
        message_data=message,
    )
    return Account.recover_message(signable, signature=signature)

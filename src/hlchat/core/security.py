"""Session tokens issued to wallets that completed the login handshake."""

from __future__ import annotations

import time

from jose import JWTError, jwt

from hlchat.core.errors import InvalidSessionToken
from hlchat.core.settings import settings
from hlchat.core.signatures import normalize_address


def create_session_token(address: str, *, now: int | None = None) -> str:
    """Issue a session token for an authenticated wallet."""
    issued_at = int(now if now is not None else time.time())
    subject = normalize_address(address)
    payload = {
        "sub": subject,
        "address": subject,
        "role": "authenticated",
        "iat": issued_at,
        "exp": issued_at + settings.session_token_ttl_seconds,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> str:
    """Return the wallet address a session token was issued to.

    Raises:
        InvalidSessionToken: If the token is expired, forged or malformed.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as err:
        raise InvalidSessionToken() from err
    address = payload.get("address") or payload.get("sub")
    if not address:
        raise InvalidSessionToken()
    return normalize_address(str(address))

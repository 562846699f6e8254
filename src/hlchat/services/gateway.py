"""Message authentication gateway.

Every write to the relay transport passes through :class:`MessageGateway`.
A message is accepted only when its signature recovers to the claimed
address, its timestamp is fresh, its nonce has never been seen and the
sender is inside its rate budget. Accepted messages are persisted; the
caller fans them out.

Check order matters for the bookkeeping side effects:

1. parse and validate fields (pure)
2. recover the signer (pure)
3. freshness (pure)
4. nonce lookup (pure)
5. rate window hit (counts the attempt even if a later step rejects it)
6. nonce claim (only after signature and freshness passed)
7. display-name ownership
8. persistence
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from hlchat.core.clock import Clock, now_ms
from hlchat.core.errors import (
    InvalidMessage,
    InvalidTypedData,
    NameNotOwned,
    NonceReused,
    RateLimited,
    SignatureMismatch,
    StaleTimestamp,
    StorageError,
)
from hlchat.core.security import create_session_token
from hlchat.core.signatures import (
    addresses_match,
    normalize_address,
    recover_text_signer,
    recover_typed_data_signer,
)
from hlchat.core.settings import settings
from hlchat.core.typed_data import split_room
from hlchat.models.message import ChatMessage
from hlchat.repositories.message_repo import CommitGuard, MessageRepository
from hlchat.schemas.message import MessageOut
from hlchat.services.names import NameOwnershipCache, get_name_cache
from hlchat.services.replay import (
    NonceGuard,
    RateLimiter,
    get_nonce_guard,
    get_rate_limiter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageClaims:
    """Fields a sender asserted in the signed payload."""

    address: str
    name: str | None
    content: str
    timestamp: int
    room: str
    nonce: str
    pair: str
    market: str


def _as_timestamp(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidMessage()
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise InvalidMessage() from err


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


class MessageGateway:
    """Authenticates signed chat messages and login handshakes."""

    def __init__(
        self,
        nonces: NonceGuard | None = None,
        rates: RateLimiter | None = None,
        names: NameOwnershipCache | None = None,
        *,
        clock: Clock = now_ms,
        freshness_ms: int | None = None,
        login_freshness_ms: int | None = None,
        max_content_length: int | None = None,
        storage_timeout_seconds: float | None = None,
    ) -> None:
        self.nonces = nonces or get_nonce_guard()
        self.rates = rates or get_rate_limiter()
        self.names = names or get_name_cache()
        self._clock = clock
        self.freshness_ms = freshness_ms if freshness_ms is not None else settings.message_freshness_ms
        self.login_freshness_ms = (
            login_freshness_ms if login_freshness_ms is not None else settings.login_freshness_ms
        )
        self.max_content_length = (
            max_content_length if max_content_length is not None else settings.max_content_length
        )
        self.storage_timeout_seconds = (
            storage_timeout_seconds
            if storage_timeout_seconds is not None
            else settings.storage_timeout_seconds
        )

    # --- Claims -------------------------------------------------------------------
    def _build_claims(
        self,
        fields: dict[str, Any],
        *,
        claimed_address: str | None,
        name: str | None,
        pair: str | None,
        market: str | None,
    ) -> MessageClaims:
        address = _text(fields.get("address")) or _text(claimed_address)
        content = _text(fields.get("content"))
        room = _text(fields.get("room"))
        nonce = _text(fields.get("nonce"))
        if not address or not content or not room or not nonce or fields.get("timestamp") is None:
            raise InvalidMessage()
        timestamp = _as_timestamp(fields.get("timestamp"))

        pair = _text(fields.get("pair")) or _text(pair)
        market = _text(fields.get("market")) or _text(market)
        if pair and market:
            if room != f"{pair}_{market}":
                raise InvalidMessage()
        else:
            pair, market = split_room(room)

        return MessageClaims(
            address=address,
            name=_text(fields.get("name")) or _text(name),
            content=content,
            timestamp=timestamp,
            room=room,
            nonce=nonce,
            pair=pair,
            market=market,
        )

    def _recover(self, payload: str | dict[str, Any], signature: str) -> tuple[dict[str, Any], str | None]:
        """Return the signed fields and the recovered signer address."""
        if isinstance(payload, dict):
            message = payload.get("message")
            if not isinstance(message, dict):
                raise InvalidMessage()
            try:
                recovered = recover_typed_data_signer(payload, signature)
            except Exception as err:
                logger.warning("EIP-712 message verification failed: %s", err)
                raise InvalidTypedData() from err
            return message, recovered

        try:
            fields = json.loads(payload)
        except (TypeError, ValueError) as err:
            raise InvalidMessage() from err
        if not isinstance(fields, dict):
            raise InvalidMessage()
        return fields, recover_text_signer(payload, signature)

    # --- Checks -------------------------------------------------------------------
    def _check_fresh(self, timestamp: int, window_ms: int) -> None:
        if abs(self._clock() - timestamp) > window_ms:
            raise StaleTimestamp()

    async def authenticate_and_accept(
        self,
        payload: str | dict[str, Any],
        signature: str,
        claimed_address: str | None = None,
        *,
        repository: MessageRepository,
        name: str | None = None,
        pair: str | None = None,
        market: str | None = None,
    ) -> MessageOut:
        """Verify a signed message and persist it.

        Args:
            payload: Either the exact JSON string that was ``personal_sign``-ed
                or an EIP-712 typed-data object.
            signature: Hex-encoded wallet signature over ``payload``.
            claimed_address: Address the caller says signed the payload. For
                typed data this supplies the address when the signed message
                does not carry one.
            repository: Destination for accepted messages.
            name: Display name claimed outside the signed payload.
            pair: Trading pair claimed outside the signed payload.
            market: Market claimed outside the signed payload.

        Returns:
            The stored message, ready for fan-out.

        Raises:
            InvalidMessage: Required fields are missing or inconsistent.
            SignatureMismatch: The signer is not the claimed address.
            StaleTimestamp: The timestamp is outside the freshness window.
            NonceReused: The nonce was already accepted.
            RateLimited: The address exceeded its window budget.
            NameNotOwned: The registry does not list the display name.
            StorageError: The message could not be persisted.
        """
        fields, recovered = self._recover(payload, signature)
        claims = self._build_claims(
            fields,
            claimed_address=claimed_address,
            name=name,
            pair=pair,
            market=market,
        )

        if not addresses_match(recovered, claims.address):
            raise SignatureMismatch()
        if claimed_address and not addresses_match(claimed_address, claims.address):
            raise SignatureMismatch()

        self._check_fresh(claims.timestamp, self.freshness_ms)

        if self.nonces.is_used(claims.nonce):
            raise NonceReused()

        if not self.rates.hit(claims.address):
            logger.info("Rate limit exceeded for %s", normalize_address(claims.address))
            raise RateLimited()

        if not self.nonces.claim(claims.nonce):
            raise NonceReused()

        if claims.name and not await self.names.owns_name(claims.address, claims.name):
            raise NameNotOwned()

        stored = await self._persist(claims, signature, repository)
        logger.debug("Accepted message %s in room %s", claims.nonce, claims.room)
        return MessageOut.model_validate(stored)

    async def _persist(
        self,
        claims: MessageClaims,
        signature: str,
        repository: MessageRepository,
    ) -> ChatMessage:
        row = ChatMessage(
            room=claims.room,
            address=normalize_address(claims.address),
            name=claims.name,
            content=claims.content[: self.max_content_length],
            timestamp=claims.timestamp,
            pair=claims.pair,
            market=claims.market,
            nonce=claims.nonce,
            signature=signature,
        )
        guard = CommitGuard()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(repository.append, row, guard=guard),
                timeout=self.storage_timeout_seconds,
            )
        except TimeoutError as err:
            if not guard.abandon():
                return row
            logger.error("Message insert timed out for room %s", claims.room)
            raise StorageError() from err
        except SQLAlchemyError as err:
            logger.error("Message insert failed for room %s: %s", claims.room, err, exc_info=True)
            raise StorageError() from err

    # --- Login --------------------------------------------------------------------
    def authenticate_login(
        self,
        address: str,
        signature: str,
        timestamp: int,
        typed_data: dict[str, Any] | None = None,
    ) -> str:
        """Verify a login signature and return a session token.

        Plain logins sign ``LOGIN_MESSAGE_TEMPLATE`` formatted with the
        timestamp; typed logins sign an EIP-712 ``Login`` payload.
        """
        self._check_fresh(timestamp, self.login_freshness_ms)

        if typed_data is not None:
            message = typed_data.get("message")
            if isinstance(message, dict) and message.get("timestamp") is not None:
                if _as_timestamp(message.get("timestamp")) != timestamp:
                    raise InvalidMessage()
            try:
                recovered: str | None = recover_typed_data_signer(typed_data, signature)
            except Exception as err:
                logger.warning("EIP-712 login verification failed: %s", err)
                raise InvalidTypedData() from err
        else:
            text = settings.login_message_template.format(timestamp=timestamp)
            recovered = recover_text_signer(text, signature)

        if not addresses_match(recovered, address):
            raise SignatureMismatch()

        logger.info("Issued session token for %s", normalize_address(address))
        return create_session_token(address)


_gateway: MessageGateway | None = None


def get_gateway() -> MessageGateway:
    """Return the process-wide message gateway."""
    global _gateway
    if _gateway is None:
        _gateway = MessageGateway()
    return _gateway

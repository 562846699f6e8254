"""Error taxonomy shared by the gateway and the room client.

Every error carries a short, wire-stable ``detail`` string. The gateway
renders it as ``{"error": detail}`` and the relay transport maps it back to
the matching class, so both sides agree on the classification.
"""

from __future__ import annotations

HTTP_BAD_REQUEST = 400
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500


class ChatError(RuntimeError):
    """Base exception for all chat failures."""

    status_code: int = HTTP_BAD_REQUEST
    detail: str = "invalid request"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class AuthError(ChatError):
    """Raised when the gateway refuses a message or login."""


class SignatureMismatch(AuthError):
    detail = "signature mismatch"


class InvalidTypedData(SignatureMismatch):
    detail = "invalid typed data signature"


class StaleTimestamp(AuthError):
    detail = "stale timestamp"


class NonceReused(AuthError):
    detail = "nonce already used"


class RateLimited(AuthError):
    status_code = HTTP_TOO_MANY_REQUESTS
    detail = "rate limit exceeded"


class NameNotOwned(AuthError):
    detail = "name not owned by address"


class InvalidMessage(AuthError):
    detail = "invalid message fields"


class InvalidSessionToken(AuthError):
    detail = "invalid session token"


class StorageError(ChatError):
    """Raised when an accepted message could not be persisted."""

    status_code = HTTP_INTERNAL_SERVER_ERROR
    detail = "db insert failed"


class TransportError(ChatError):
    """Base class for client-side transport failures."""

    detail = "transport failure"


class NoCapablePeer(TransportError):
    detail = "no peer available"


class HistoryLoadFailed(TransportError):
    detail = "history load failed"


class SendFailed(TransportError):
    detail = "send failed"


_ERRORS_BY_DETAIL: dict[str, type[ChatError]] = {
    cls.detail: cls
    for cls in (
        SignatureMismatch,
        InvalidTypedData,
        StaleTimestamp,
        NonceReused,
        RateLimited,
        NameNotOwned,
        InvalidMessage,
        InvalidSessionToken,
        StorageError,
    )
}


def error_from_detail(detail: str, status_code: int | None = None) -> ChatError:
    """Rebuild a typed error from a gateway ``{"error": detail}`` body."""
    cls = _ERRORS_BY_DETAIL.get(detail)
    if cls is not None:
        return cls()
    if status_code == HTTP_TOO_MANY_REQUESTS:
        return RateLimited(detail)
    if status_code is not None and status_code >= HTTP_INTERNAL_SERVER_ERROR:
        return StorageError(detail)
    return ChatError(detail)


_USER_MESSAGES: list[tuple[type[ChatError], str]] = [
    (RateLimited, "Too many messages! Please wait a moment before sending again."),
    (StaleTimestamp, "Message expired. Please try again."),
    (SignatureMismatch, "Signature verification failed. Please reconnect your wallet."),
    (NonceReused, "This message was already sent."),
    (NameNotOwned, "The selected name is not owned by your wallet."),
    (InvalidSessionToken, "Your session expired. Please reconnect your wallet."),
    (StorageError, "The chat server could not store your message. Please try again."),
    (NoCapablePeer, "No chat peers are reachable right now. Please try again later."),
    (HistoryLoadFailed, "Failed to load chat history. Please refresh."),
]


def describe_error(exc: BaseException) -> str:
    """Return a human-readable classification of ``exc`` for the UI layer."""
    cause = exc
    # SendFailed wraps the transport error that caused it.
    if isinstance(exc, SendFailed) and exc.__cause__ is not None:
        cause = exc.__cause__
    for cls, text in _USER_MESSAGES:
        if isinstance(cause, cls):
            return text
    if isinstance(cause, ChatError):
        return cause.detail
    return "Something went wrong. Please try again."

"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from hlchat.core.errors import InvalidSessionToken
from hlchat.core.security import decode_session_token
from hlchat.core.settings import settings
from hlchat.db.session import get_db
from hlchat.repositories.message_repo import MessageRepository
from hlchat.services.broadcast import RoomBroadcaster, get_broadcaster
from hlchat.services.gateway import MessageGateway, get_gateway

# Missing credentials are reported by the gateway as `invalid session token`.
bearer_scheme = HTTPBearer(auto_error=False)

SessionDep = Annotated[Session, Depends(get_db)]


def get_gateway_dep() -> MessageGateway:
    return get_gateway()


def get_broadcaster_dep() -> RoomBroadcaster:
    return get_broadcaster()


def get_message_repository(db: SessionDep) -> MessageRepository:
    """Wrap the request session in a message repository."""
    return MessageRepository(db)


def get_session_address(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str | None:
    """Return the wallet address bound to the bearer token, if one is required.

    Raises:
        InvalidSessionToken: If tokens are required and the header is missing
            or the token does not validate.
    """
    if credentials is None:
        if settings.require_session_token:
            raise InvalidSessionToken()
        return None
    return decode_session_token(credentials.credentials)


GatewayDep = Annotated[MessageGateway, Depends(get_gateway_dep)]
BroadcasterDep = Annotated[RoomBroadcaster, Depends(get_broadcaster_dep)]
RepositoryDep = Annotated[MessageRepository, Depends(get_message_repository)]
SessionAddressDep = Annotated[str | None, Depends(get_session_address)]

"""Room message endpoints: authenticated submit, history and live fan-out."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from hlchat.api.dependencies import (
    BroadcasterDep,
    GatewayDep,
    RepositoryDep,
    SessionAddressDep,
)
from hlchat.core.errors import InvalidMessage, InvalidSessionToken
from hlchat.core.signatures import addresses_match
from hlchat.schemas.message import MessageOut, MessageRequest, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])

MAX_HISTORY_LIMIT = 1000


@router.post("/message", response_model=MessageResponse)
async def post_message(
    body: MessageRequest,
    gateway: GatewayDep,
    repository: RepositoryDep,
    broadcaster: BroadcasterDep,
    session_address: SessionAddressDep,
) -> MessageResponse:
    """Authenticate, store and fan out a signed room message."""
    payload: str | dict[str, Any]
    if body.typed_data is not None:
        payload = body.typed_data
    elif body.message:
        payload = body.message
    else:
        raise InvalidMessage("signature and message required")

    if session_address and body.address and not addresses_match(session_address, body.address):
        raise InvalidSessionToken()

    stored = await gateway.authenticate_and_accept(
        payload,
        body.signature,
        body.address or session_address,
        repository=repository,
        name=body.name,
        pair=body.pair,
        market=body.market,
    )

    delivered = await broadcaster.publish(stored.room, stored.model_dump())
    logger.debug("Fanned out message to %d subscriber(s) in %s", delivered, stored.room)
    return MessageResponse(success=True)


@router.get("/messages", response_model=list[MessageOut])
async def list_messages(
    repository: RepositoryDep,
    room: str = Query(..., min_length=1),
    since: int | None = Query(None, description="Only messages signed at or after this ms timestamp"),
    limit: int | None = Query(None, ge=1, le=MAX_HISTORY_LIMIT),
) -> list[MessageOut]:
    """Return the stored history of a room in ascending timestamp order."""
    rows = repository.list_room(room, since=since, limit=limit)
    return [MessageOut.model_validate(row) for row in rows]


@router.websocket("/ws/{room:path}")
async def room_socket(websocket: WebSocket, room: str, broadcaster: BroadcasterDep) -> None:
    """Stream every accepted message for ``room`` to the connected client."""
    await websocket.accept()
    broadcaster.join(room, websocket)
    try:
        while True:
            # Inbound frames are keepalives only.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.leave(room, websocket)

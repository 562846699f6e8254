"""Per-room fan-out of accepted messages to live subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class RoomSocket(Protocol):
    """The part of a websocket the broadcaster needs."""

    async def send_json(self, data: Any) -> None: ...


class RoomBroadcaster:
    """Tracks websocket subscribers by room and pushes messages to them.

    Single event loop only. Sockets that fail to receive are dropped.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, set[RoomSocket]] = defaultdict(set)

    def subscriber_count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def join(self, room: str, socket: RoomSocket) -> None:
        self._rooms[room].add(socket)
        logger.debug("Socket joined room %s (%d live)", room, len(self._rooms[room]))

    def leave(self, room: str, socket: RoomSocket) -> None:
        sockets = self._rooms.get(room)
        if not sockets:
            return
        sockets.discard(socket)
        if not sockets:
            self._rooms.pop(room, None)

    async def publish(self, room: str, payload: dict[str, Any]) -> int:
        """Send ``payload`` to every socket in ``room``; return deliveries."""
        sockets = list(self._rooms.get(room, ()))
        if not sockets:
            return 0

        results = await asyncio.gather(
            *(socket.send_json(payload) for socket in sockets),
            return_exceptions=True,
        )
        delivered = 0
        for socket, result in zip(sockets, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Dropping subscriber in room %s: %s", room, result)
                self.leave(room, socket)
            else:
                delivered += 1
        return delivered


_broadcaster = RoomBroadcaster()


def get_broadcaster() -> RoomBroadcaster:
    """Return the process-wide room broadcaster."""
    return _broadcaster

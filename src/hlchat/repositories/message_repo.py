"""Data access helpers for room messages."""
from __future__ import annotations

import threading

from sqlalchemy import select
from sqlalchemy.orm import Session

from hlchat.models.message import ChatMessage

__all__ = ["CommitGuard", "InsertAbandoned", "MessageRepository"]


class InsertAbandoned(RuntimeError):
    """Raised on the writer thread when the caller gave up before commit."""


class CommitGuard:
    """Lets a caller that stopped waiting veto an insert still in flight.

    The commit and the veto take the same lock, so exactly one of them wins:
    either the row is committed and :meth:`abandon` reports it, or the
    writer rolls back.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._abandoned = False
        self.committed = False

    def abandon(self) -> bool:
        """Veto the commit. Returns False if the row was already committed."""
        with self._lock:
            if self.committed:
                return False
            self._abandoned = True
            return True

    def commit(self, session: Session) -> bool:
        with self._lock:
            if self._abandoned:
                session.rollback()
                return False
            session.commit()
            self.committed = True
            return True


class MessageRepository:
    """Thin wrapper around database access for chat messages."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def append(self, message: ChatMessage, *, guard: CommitGuard | None = None) -> ChatMessage:
        """Insert ``message`` and commit; the table is append-only.

        With a ``guard`` the insert runs on a private session, so the caller
        may close its own session while the write is still in flight, and
        the commit only happens if the guard has not been abandoned.

        Raises:
            InsertAbandoned: If the guard was abandoned before the commit.
        """
        if guard is None:
            return self._commit(self.session, message)
        session = Session(bind=self.session.get_bind(), expire_on_commit=False)
        try:
            return self._commit(session, message, guard)
        finally:
            session.close()

    @staticmethod
    def _commit(session: Session, message: ChatMessage, guard: CommitGuard | None = None) -> ChatMessage:
        try:
            session.add(message)
            if guard is None:
                session.commit()
            else:
                session.flush()
                if not guard.commit(session):
                    raise InsertAbandoned(f"insert of {message.nonce} abandoned")
        except Exception:
            session.rollback()
            raise
        session.refresh(message)
        return message

    def list_room(self, room: str, *, since: int | None = None, limit: int | None = None) -> list[ChatMessage]:
        """Return messages for ``room`` sorted by ascending timestamp.

        Args:
            room: Exact, case-sensitive room key.
            since: Optional lower bound on the signing timestamp (ms).
            limit: Optional cap on the number of rows, keeping the newest.
        """
        stmt = select(ChatMessage).where(ChatMessage.room == room)
        if since is not None:
            stmt = stmt.where(ChatMessage.timestamp >= since)
        if limit is not None:
            newest = stmt.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc()).limit(limit)
            rows = list(self.session.execute(newest).scalars())
            rows.reverse()
            return rows
        stmt = stmt.order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
        return list(self.session.execute(stmt).scalars())

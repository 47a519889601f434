"""Conversation store: sessions and their append-only message log.

Every operation is scoped by owner id. Touching a session that belongs to someone
else raises Forbidden and is logged as a security event; unknown sessions raise
NotFound.

Message writes are idempotent on (session_id, client_id). The insert is issued as
``INSERT ... ON CONFLICT DO NOTHING`` against the unique constraint and the stored
row is read back, so a retried write returns the first write's row unchanged.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coachrag.errors import Forbidden, InvalidRequest, NotFound
from coachrag.models import ConversationMessage, ConversationSession, Role
from coachrag.utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New conversation"


@dataclass
class NewMessage:
    role: str
    content: str
    client_id: str
    action_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredMessage:
    id: int
    session_id: str
    owner_id: str
    role: str
    content: str
    action_type: Optional[str]
    metadata: Dict[str, Any]
    client_id: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: ConversationMessage) -> "StoredMessage":
        return cls(
            id=row.id,
            session_id=row.session_id,
            owner_id=row.owner_id,
            role=row.role,
            content=row.content,
            action_type=row.action_type,
            metadata=dict(row.meta or {}),
            client_id=row.client_id,
            created_at=row.created_at,
        )


class ConversationStore:
    def __init__(self, db: Session):
        self.db = db

    # Sessions

    def create_session(self, owner_id: str, title: Optional[str] = None) -> ConversationSession:
        if not owner_id:
            raise InvalidRequest("owner id is required")
        now = utc_now()
        session = ConversationSession(
            owner_id=owner_id,
            title=(title or "").strip()[:255] or DEFAULT_TITLE,
            created_at=now,
            last_message_at=now,
            is_active=True,
        )
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        logger.info("session created", extra={"ctx_session_id": session.id, "ctx_owner_id": owner_id})
        return session

    def get_session(self, session_id: str, owner_id: str) -> ConversationSession:
        """Load a session the caller owns.

        Raises:
            NotFound: No session with that id.
            Forbidden: The session belongs to another owner.
        """
        session = self.db.get(ConversationSession, session_id)
        if session is None:
            raise NotFound(f"session {session_id} not found")
        if session.owner_id != owner_id:
            logger.warning(
                "cross-owner session access rejected",
                extra={
                    "ctx_event": "security.cross_owner_access",
                    "ctx_session_id": session_id,
                    "ctx_owner_id": owner_id,
                },
            )
            raise Forbidden("session belongs to another user")
        return session

    def list_sessions(self, owner_id: str, include_inactive: bool = False) -> List[ConversationSession]:
        stmt = select(ConversationSession).where(ConversationSession.owner_id == owner_id)
        if not include_inactive:
            stmt = stmt.where(ConversationSession.is_active.is_(True))
        stmt = stmt.order_by(ConversationSession.last_message_at.desc(), ConversationSession.id)
        return list(self.db.execute(stmt).scalars().all())

    def touch_session(self, session_id: str, owner_id: str, timestamp: Optional[datetime] = None) -> None:
        session = self.get_session(session_id, owner_id)
        session.last_message_at = timestamp or utc_now()
        self.db.commit()

    # Messages

    def append_message(self, session_id: str, owner_id: str, message: NewMessage) -> StoredMessage:
        """Append one message and touch the session.

        A second call with the same (session_id, client_id) returns the stored
        original; its content is never overwritten.
        """
        return self.append_turn(session_id, owner_id, [message])[0]

    def append_turn(
        self, session_id: str, owner_id: str, messages: Sequence[NewMessage]
    ) -> List[StoredMessage]:
        """Append several messages and touch the session in one transaction.

        Either every message is stored (or already was) and last_message_at is
        updated, or nothing is committed.
        """
        if not messages:
            return []
        for m in messages:
            self._validate(m)
        try:
            session = self.get_session(session_id, owner_id)
            now = utc_now()
            stored = [self._insert(session_id, owner_id, m, now) for m in messages]
            session.last_message_at = now
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return stored

    def list_messages(
        self,
        session_id: str,
        owner_id: str,
        order: str = "asc",
        limit: Optional[int] = None,
    ) -> List[StoredMessage]:
        """Messages of a session ordered by created_at, then insertion order.

        Args:
            order: "asc" (chronological) or "desc" (newest first).
            limit: Optional maximum number of rows.
        """
        if order not in ("asc", "desc"):
            raise InvalidRequest("order must be 'asc' or 'desc'")
        self.get_session(session_id, owner_id)
        stmt = select(ConversationMessage).where(
            ConversationMessage.session_id == session_id,
            ConversationMessage.owner_id == owner_id,
        )
        if order == "asc":
            stmt = stmt.order_by(ConversationMessage.created_at, ConversationMessage.id)
        else:
            stmt = stmt.order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return [StoredMessage.from_row(r) for r in self.db.execute(stmt).scalars().all()]

    def recent_messages(self, session_id: str, owner_id: str, limit: int) -> List[StoredMessage]:
        """The last ``limit`` messages, oldest first."""
        rows = self.list_messages(session_id, owner_id, order="desc", limit=limit)
        rows.reverse()
        return rows

    @staticmethod
    def _validate(message: NewMessage) -> None:
        if message.role not in (Role.USER.value, Role.ASSISTANT.value):
            raise InvalidRequest(f"unknown role {message.role!r}")
        if not (message.content or "").strip():
            raise InvalidRequest("message content must be non-empty")
        if not (message.client_id or "").strip():
            raise InvalidRequest("client id is required")

    def _insert(
        self, session_id: str, owner_id: str, message: NewMessage, created_at: datetime
    ) -> StoredMessage:
        table = ConversationMessage.__table__
        values = {
            "session_id": session_id,
            "owner_id": owner_id,
            "role": message.role,
            "content": message.content,
            "action_type": message.action_type,
            "metadata": dict(message.metadata or {}),
            "client_id": message.client_id,
            "created_at": created_at,
        }
        dialect = self.db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            dialect_insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = dialect_insert(table).values(values).on_conflict_do_nothing(
                index_elements=["session_id", "client_id"]
            )
            self.db.execute(stmt)
        else:
            try:
                with self.db.begin_nested():
                    self.db.execute(insert(table).values(values))
            except IntegrityError:
                # already stored under this client id
                logger.debug("insert conflict on %s", message.client_id)

        row = self.db.execute(
            select(ConversationMessage).where(
                ConversationMessage.session_id == session_id,
                ConversationMessage.client_id == message.client_id,
            )
        ).scalar_one()
        if row.content != message.content:
            logger.info(
                "duplicate client id, keeping original message",
                extra={"ctx_session_id": session_id, "ctx_client_id": message.client_id},
            )
        return StoredMessage.from_row(row)

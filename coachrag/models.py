"""Database ORM models.

Defines the persistent entities of the document/conversation engine:
- Document: an uploaded file owned by one user; only completed documents are searchable.
- Chunk: an immutable, embedded fragment of a document (pgvector column).
- ConversationSession: a user's conversation; last_message_at is the retention clock.
- ConversationMessage: an append-only turn, idempotent on (session_id, client_id).
- SessionContext: short-term scratch context tied to one session, optionally
  pointing at a chunk. Cleared together with its session.
- UserProfile: coaching profile consumed by prompt personalization.
"""
import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from pgvector.sqlalchemy import Vector

from coachrag.config import settings
from coachrag.db import Base
from coachrag.utils import new_id, utc_now

JSONType = JSON().with_variant(JSONB(), "postgresql")


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Document(Base):
    """An uploaded document. Upload itself happens outside this service."""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(64), nullable=False)
    filename = Column(String(512), nullable=False)
    status = Column(String(16), nullable=False, default=DocumentStatus.PENDING.value)
    chunk_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    chunks = relationship("Chunk", back_populates="document", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_documents_owner", "owner_id"),)


class Chunk(Base):
    """Vector-embedded document chunk used for retrieval.

    Each row represents a chunk of a document along with:
    - ownership and page-level metadata (owner_id, page_number)
    - its position within the document (chunk_index, unique per document)
    - an embedding vector (pgvector) for nearest-neighbour search

    Notes:
        The embedding dimension is derived from settings.EMBEDDING_DIM and must
        match the embedding model configured in coachrag.config.Settings.
    """
    __tablename__ = "document_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    owner_id = Column(String(64), nullable=False)

    page_number = Column(Integer, nullable=False, default=1)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    token_count = Column(Integer, nullable=True)

    embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    document = relationship("Document", back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_owner", "owner_id"),
        Index("idx_document_chunks_document", "document_id"),
    )


class ConversationSession(Base):
    __tablename__ = "conversation_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False, default="New conversation")
    created_at = Column(DateTime, default=utc_now, nullable=False)
    last_message_at = Column(DateTime, default=utc_now, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    messages = relationship("ConversationMessage", back_populates="session", cascade="all, delete-orphan")
    contexts = relationship("SessionContext", back_populates="session", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_sessions_owner_last_message", "owner_id", "last_message_at"),
        Index("idx_sessions_last_message", "last_message_at"),
    )


class ConversationMessage(Base):
    """One append-only turn of a conversation.

    ``client_id`` is the writer-supplied idempotency key; the unique constraint on
    (session_id, client_id) is what collapses retried writes into a single row.
    The JSON ``metadata`` column carries citations, the fallback flag and the
    document the turn was grounded in.
    """
    __tablename__ = "conversation_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36), ForeignKey("conversation_sessions.id", ondelete="CASCADE"), nullable=False
    )
    owner_id = Column(String(64), nullable=False)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    action_type = Column(String(32), nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    client_id = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    session = relationship("ConversationSession", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("session_id", "client_id", name="uq_messages_session_client"),
        Index("idx_messages_session_created", "session_id", "created_at"),
    )


class SessionContext(Base):
    """Per-session scratch chunk references; written by the upstream chat collaborator."""

    __tablename__ = "session_contexts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36), ForeignKey("conversation_sessions.id", ondelete="CASCADE"), nullable=False
    )
    owner_id = Column(String(64), nullable=False)
    chunk_id = Column(Integer, ForeignKey("document_chunks.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    session = relationship("ConversationSession", back_populates="contexts")

    __table_args__ = (Index("idx_session_contexts_session", "session_id"),)


class UserProfile(Base):
    __tablename__ = "user_profiles"

    owner_id = Column(String(64), primary_key=True)
    current_position = Column(String(255), nullable=True)
    primary_function = Column(String(255), nullable=True)
    company_size = Column(String(64), nullable=True)
    top_challenges = Column(JSONType, nullable=True)
    personality_scores = Column(JSONType, nullable=True)
    preferred_coaching_style = Column(String(255), nullable=True)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

"""Database setup and session utilities for SQLAlchemy.

This module centralizes engine/session initialization, metadata base, and helpers:
- init_db: Ensures the pgvector extension exists (PostgreSQL only), creates the
  required tables and the HNSW index over document_chunks.embedding.
- session_scope: Context-managed transactional scope for imperative workflows.
- get_db: FastAPI dependency to yield a per-request SQLAlchemy Session.

Configuration is read from coachrag.config.settings.DATABASE_URL. SQLite URLs are
accepted for local runs and tests; vector search then ranks in Python.
"""
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from coachrag.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # in-memory databases must share one connection across threads
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"pool_pre_ping": True}


# SQLAlchemy setup
engine = create_engine(settings.DATABASE_URL, future=True, **_engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def is_postgres(bind: Any) -> bool:
    """Return True when the engine/connection/session speaks the PostgreSQL dialect."""
    if isinstance(bind, Session):
        bind = bind.get_bind()
    return bind.dialect.name == "postgresql"


def init_db(bind: Optional[Engine] = None) -> None:
    """Initialize database extensions, tables, and vector indexes.

    On PostgreSQL ensures the pgvector extension is available and creates the HNSW
    index over document_chunks.embedding if missing. Tables are created from the
    SQLAlchemy metadata on every dialect.

    Args:
        bind: Optional engine; defaults to the module engine.

    This function is idempotent and safe to run multiple times.
    """
    bind = bind or engine
    postgres = is_postgres(bind)
    if postgres:
        with bind.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()

    # Import models after Base is defined
    from coachrag import models  # noqa: F401

    Base.metadata.create_all(bind=bind)

    if postgres:
        with bind.connect() as conn:
            conn.execute(
                text(
                    """
                    CREATE INDEX IF NOT EXISTS idx_document_chunks_embedding_hnsw
                    ON document_chunks USING hnsw (embedding vector_cosine_ops)
                    """
                )
            )
            conn.commit()


@contextmanager
def session_scope():
    """Provide a transactional scope around a series of operations.

    Yields:
        Session: A SQLAlchemy session bound to the configured engine.

    Notes:
        - Commits on successful exit.
        - Rolls back and re-raises on exception.
        - Always closes the session at the end.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator:
    """FastAPI dependency that yields a SQLAlchemy Session.

    Yields:
        Session: A session tied to the current request lifecycle.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

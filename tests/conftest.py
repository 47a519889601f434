"""Test fixtures: in-memory SQLite store, deterministic fake model clients."""

from __future__ import annotations

import hashlib
import math
import os
import re
from datetime import timedelta
from typing import List, Optional, Sequence

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["AUTH_TOKENS"] = "token-alice:alice,token-bob:bob"
os.environ["ADMIN_TOKEN"] = "admin-secret"
os.environ["SWEEP_LOCK_ENABLED"] = "false"
os.environ["LOG_JSON"] = "false"

import pytest

from coachrag.config import settings
from coachrag.errors import CompletionServiceError, EmbeddingServiceError, InvalidRequest
from coachrag.generation import Completion
from coachrag.models import ConversationSession, Document
from coachrag.utils import utc_now

_TOKEN_RE = re.compile(r"\w+")


class HashedEmbedder:
    """Bag-of-words embedder hashing tokens into a fixed number of buckets."""

    def __init__(self, dim: int | None = None, fail: bool = False) -> None:
        self.dim = dim or settings.EMBEDDING_DIM
        self.fail = fail
        self.calls = 0

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        if any(not (t or "").strip() for t in texts):
            raise InvalidRequest("text to embed must be non-empty")
        self.calls += 1
        if self.fail:
            raise EmbeddingServiceError("upstream timeout")
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            vec[int.from_bytes(digest, "little") % self.dim] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]


class FakeCompleter:
    """Records calls; answers with the first source line unless ``reply`` is set."""

    def __init__(self, reply: Optional[str] = None, fail: bool = False, tokens: int = 42) -> None:
        self.reply = reply
        self.fail = fail
        self.tokens = tokens
        self.calls: list = []

    def complete(self, messages, temperature=None, max_tokens=None) -> Completion:
        self.calls.append({"messages": list(messages), "temperature": temperature, "max_tokens": max_tokens})
        if self.fail:
            raise CompletionServiceError("quota exceeded")
        if self.reply is not None:
            return Completion(text=self.reply, tokens_used=self.tokens)
        system = messages[0]["content"]
        first_source = system.split("]:\n", 1)[1].split("\n", 1)[0]
        return Completion(text=f"According to your document: {first_source}", tokens_used=self.tokens)


@pytest.fixture(autouse=True)
def fresh_schema():
    """Recreate all tables around every test."""
    from coachrag.db import Base, engine, init_db

    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    from coachrag.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def embedder() -> HashedEmbedder:
    return HashedEmbedder()


@pytest.fixture
def completer() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def low_threshold(monkeypatch: pytest.MonkeyPatch) -> float:
    monkeypatch.setattr(settings, "MATCH_SIMILARITY_THRESHOLD", 0.5)
    return 0.5


@pytest.fixture
def make_document(db, embedder):
    """Create and ingest a completed document for an owner."""
    from coachrag.ingestion.ingest_document import ingest_document

    def _make(owner_id: str, filename: str, pages: Sequence[str]) -> Document:
        doc = Document(owner_id=owner_id, filename=filename)
        db.add(doc)
        db.commit()
        ingest_document(db, doc, pages, embedder)
        return doc

    return _make


@pytest.fixture
def make_session(db):
    """Create a conversation session whose last message is ``age_days`` old."""

    def _make(owner_id: str = "alice", age_days: float = 0, title: str = "Chat") -> ConversationSession:
        ts = utc_now() - timedelta(days=age_days)
        session = ConversationSession(owner_id=owner_id, title=title, created_at=ts, last_message_at=ts)
        db.add(session)
        db.commit()
        return session

    return _make

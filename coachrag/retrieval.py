"""Chunk store: persisted document fragments with vector search.

This module implements:
- RetrievalResult: ephemeral ranked search hit
- ChunkStore.search: owner-scoped nearest-neighbour search, optionally pinned to
  one document, with a similarity floor
- ChunkStore.add_chunks: persistence of freshly embedded chunks

Vector search uses cosine distance (similarity = 1 - distance), the same metric as
the HNSW ``vector_cosine_ops`` index created by coachrag.db.init_db. On PostgreSQL
ranking happens in SQL via pgvector; other dialects rank the owner's candidate
rows in Python with numpy. Both paths order by similarity descending, then by
lower chunk_index.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sqlalchemy import select
from sqlalchemy.orm import Session

from coachrag.config import settings
from coachrag.db import is_postgres
from coachrag.errors import InvalidRequest
from coachrag.models import Chunk, Document, DocumentStatus
from coachrag.utils import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    chunk_id: int
    document_id: str
    filename: str
    page: int
    chunk_index: int
    similarity: float
    content: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class NewChunk:
    page_number: int
    chunk_index: int
    content: str
    embedding: List[float]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class ChunkStore:
    """Owner-scoped access to document_chunks.

    Args:
        db: Request-scoped SQLAlchemy session.
        threshold: Minimum cosine similarity for a hit; defaults to
            settings.MATCH_SIMILARITY_THRESHOLD.
    """

    def __init__(self, db: Session, threshold: Optional[float] = None):
        self.db = db
        self.threshold = settings.MATCH_SIMILARITY_THRESHOLD if threshold is None else threshold

    def search(
        self,
        query_vector: Sequence[float],
        owner_id: str,
        document_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """Return the top chunks most similar to ``query_vector``.

        Args:
            query_vector: Embedding of the question.
            owner_id: Caller; only their chunks of completed documents are searched.
            document_id: Optional document to scope the search to.
            limit: Maximum number of results; defaults to settings.TOP_K.

        Returns:
            List[RetrievalResult]: Hits at or above the similarity floor, best first.
            An empty list means nothing relevant was found.
        """
        if not owner_id:
            raise InvalidRequest("owner id is required for search")
        limit = settings.TOP_K if limit is None else limit
        if limit <= 0:
            return []
        if len(query_vector) != settings.EMBEDDING_DIM:
            raise InvalidRequest(
                f"query vector has dimension {len(query_vector)}, expected {settings.EMBEDDING_DIM}"
            )

        if is_postgres(self.db):
            hits = self._search_pgvector(query_vector, owner_id, document_id, limit)
        else:
            hits = self._search_scan(query_vector, owner_id, document_id, limit)

        logger.debug(
            "chunk search",
            extra={
                "ctx_owner_id": owner_id,
                "ctx_document_id": document_id,
                "ctx_hits": len(hits),
                "ctx_best": hits[0].similarity if hits else None,
            },
        )
        return hits

    def _scoped(self, stmt, owner_id: str, document_id: Optional[str]):
        stmt = stmt.join(Document, Document.id == Chunk.document_id).where(
            Chunk.owner_id == owner_id,
            Document.owner_id == owner_id,
            Document.status == DocumentStatus.COMPLETED.value,
        )
        if document_id is not None:
            stmt = stmt.where(Chunk.document_id == document_id)
        return stmt

    def _search_pgvector(
        self, qvec: Sequence[float], owner_id: str, document_id: Optional[str], limit: int
    ) -> List[RetrievalResult]:
        distance = Chunk.embedding.cosine_distance(list(qvec))
        stmt = self._scoped(
            select(Chunk, Document.filename, distance.label("distance")), owner_id, document_id
        )
        stmt = (
            stmt.where(distance <= 1.0 - self.threshold)
            .order_by(distance, Chunk.chunk_index, Chunk.id)
            .limit(limit)
        )
        return [
            self._to_result(chunk, filename, 1.0 - float(dist))
            for chunk, filename, dist in self.db.execute(stmt).all()
        ]

    def _search_scan(
        self, qvec: Sequence[float], owner_id: str, document_id: Optional[str], limit: int
    ) -> List[RetrievalResult]:
        stmt = self._scoped(select(Chunk, Document.filename), owner_id, document_id)
        scored: List[Tuple[float, Chunk, str]] = []
        for chunk, filename in self.db.execute(stmt).all():
            sim = cosine_similarity(qvec, chunk.embedding)
            if sim >= self.threshold:
                scored.append((sim, chunk, filename))
        scored.sort(key=lambda item: (-item[0], item[1].chunk_index, item[1].id))
        return [self._to_result(chunk, filename, sim) for sim, chunk, filename in scored[:limit]]

    @staticmethod
    def _to_result(chunk: Chunk, filename: str, similarity: float) -> RetrievalResult:
        return RetrievalResult(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            filename=filename,
            page=chunk.page_number,
            chunk_index=chunk.chunk_index,
            similarity=similarity,
            content=chunk.content,
        )

    def add_chunks(self, document: Document, chunks: Iterable[NewChunk]) -> int:
        """Persist embedded chunks for ``document``; the caller commits.

        Returns:
            int: Number of chunks added.
        """
        count = 0
        for c in chunks:
            if len(c.embedding) != settings.EMBEDDING_DIM:
                raise InvalidRequest(
                    f"chunk {c.chunk_index} has dimension {len(c.embedding)}, "
                    f"expected {settings.EMBEDDING_DIM}"
                )
            self.db.add(
                Chunk(
                    document_id=document.id,
                    owner_id=document.owner_id,
                    page_number=c.page_number,
                    chunk_index=c.chunk_index,
                    content=c.content,
                    token_count=estimate_tokens(c.content),
                    embedding=list(c.embedding),
                )
            )
            count += 1
        self.db.flush()
        return count

"""Document ingestor.

Splits a document's page texts into overlapping chunks, embeds them with the
embedding client in batches, and stores Chunk rows with their page number and a
document-wide chunk_index. The document ends up ``completed`` with its
chunk_count, or ``failed`` with the error when anything goes wrong.

Chunking:
- Uses coachrag.utils.chunk_text with settings.CHUNK_SIZE and settings.CHUNK_OVERLAP

Usage:
  python -m coachrag.ingestion.ingest_document --owner USER_ID --file report.txt

Plain-text files are split into pages on form feed characters.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from coachrag.config import settings
from coachrag.embedding import EmbeddingClient
from coachrag.models import Document, DocumentStatus
from coachrag.retrieval import ChunkStore, NewChunk
from coachrag.utils import chunk_text

logger = logging.getLogger(__name__)


def split_pages(pages: Sequence[str], chunk_size: int, overlap: int) -> List[Tuple[int, str]]:
    """Chunk every page, returning (page_number, chunk) pairs in reading order."""
    out: List[Tuple[int, str]] = []
    for page_number, text in enumerate(pages, start=1):
        for piece in chunk_text(text or "", chunk_size, overlap):
            out.append((page_number, piece))
    return out


def ingest_document(
    db: Session,
    document: Document,
    pages: Sequence[str],
    embedder: EmbeddingClient,
    chunk_size: Optional[int] = None,
    overlap: Optional[int] = None,
) -> int:
    """Chunk, embed and store ``pages`` for ``document``.

    Args:
        db: SQLAlchemy session; committed on success and on failure.
        document: Persisted document row; must not have chunks yet.
        pages: Page texts, page 1 first.
        embedder: Embedding client.
        chunk_size: Chunk size in characters; defaults to settings.CHUNK_SIZE.
        overlap: Overlap in characters; defaults to settings.CHUNK_OVERLAP.

    Returns:
        int: Number of chunks stored.
    """
    chunk_size = chunk_size or settings.CHUNK_SIZE
    overlap = settings.CHUNK_OVERLAP if overlap is None else overlap
    document.status = DocumentStatus.PROCESSING.value
    db.commit()

    pieces = split_pages(pages, chunk_size, overlap)
    logger.info("Ingesting %s: %d chunks over %d pages", document.filename, len(pieces), len(pages))
    try:
        store = ChunkStore(db)
        total = 0
        batch = max(1, settings.EMBED_BATCH_SIZE)
        for start in range(0, len(pieces), batch):
            window = pieces[start:start + batch]
            vectors = embedder.embed_many([text for _, text in window])
            total += store.add_chunks(
                document,
                [
                    NewChunk(page_number=page, chunk_index=start + i, content=text, embedding=vec)
                    for i, ((page, text), vec) in enumerate(zip(window, vectors))
                ],
            )
        document.chunk_count = total
        document.status = DocumentStatus.COMPLETED.value
        document.error = None
        db.commit()
    except Exception as exc:
        db.rollback()
        document.status = DocumentStatus.FAILED.value
        document.error = str(exc)[:1000]
        db.commit()
        logger.exception("Ingestion failed for %s", document.id)
        raise
    logger.info("Ingested %s (%d chunks)", document.id, total)
    return total


def main(argv: Optional[Sequence[str]] = None) -> int:
    from coachrag.db import init_db, session_scope
    from coachrag.logging_config import configure_logging

    configure_logging(stream=sys.stderr)
    p = argparse.ArgumentParser(description="Ingest a plain-text document for one owner.")
    p.add_argument("--owner", required=True, help="Owner id of the document")
    p.add_argument("--file", required=True, help="Path to a UTF-8 text file; pages separated by form feeds")
    p.add_argument("--filename", default=None, help="Display filename (defaults to the file's name)")
    args = p.parse_args(argv)

    path = Path(args.file)
    pages = path.read_text(encoding="utf-8").split("\f")
    init_db()
    with session_scope() as db:
        doc = Document(owner_id=args.owner, filename=args.filename or path.name)
        db.add(doc)
        db.commit()
        count = ingest_document(db, doc, pages, EmbeddingClient())
        sys.stdout.write(f"{doc.id}\t{count}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

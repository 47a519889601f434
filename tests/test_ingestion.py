"""Ingestion and chunking tests."""

from __future__ import annotations

import pytest

from coachrag.errors import EmbeddingServiceError
from coachrag.ingestion.ingest_document import ingest_document, split_pages
from coachrag.models import Chunk, Document, DocumentStatus
from coachrag.utils import chunk_text, make_snippet

from tests.conftest import HashedEmbedder


def test_chunk_text_overlaps_and_covers_text() -> None:
    text = "".join(chr(ord("a") + i % 26) for i in range(1000))

    chunks = chunk_text(text, chunk_size=400, overlap=100)

    assert [len(c) for c in chunks] == [400, 400, 400]
    assert chunks[0][-100:] == chunks[1][:100]
    assert chunks[-1].endswith(text[-50:])


def test_split_pages_numbers_pages_from_one() -> None:
    pages = ["first page", "", "third page"]

    assert split_pages(pages, 1000, 200) == [(1, "first page"), (3, "third page")]


def test_ingest_stores_chunks_and_completes(db, embedder) -> None:
    doc = Document(owner_id="alice", filename="plan.txt")
    db.add(doc)
    db.commit()
    long_page = "Goals for the year. " * 80

    count = ingest_document(db, doc, [long_page, "Second page text."], embedder, chunk_size=500, overlap=50)

    chunks = db.query(Chunk).filter_by(document_id=doc.id).order_by(Chunk.chunk_index).all()
    assert count == len(chunks) > 2
    assert [c.chunk_index for c in chunks] == list(range(count))
    assert chunks[-1].page_number == 2
    assert all(c.owner_id == "alice" for c in chunks)
    assert doc.status == DocumentStatus.COMPLETED.value
    assert doc.chunk_count == count


def test_ingest_failure_marks_document_failed(db) -> None:
    doc = Document(owner_id="alice", filename="plan.txt")
    db.add(doc)
    db.commit()

    with pytest.raises(EmbeddingServiceError):
        ingest_document(db, doc, ["Some text."], HashedEmbedder(fail=True))

    db.refresh(doc)
    assert doc.status == DocumentStatus.FAILED.value
    assert "upstream timeout" in doc.error
    assert db.query(Chunk).count() == 0


def test_make_snippet() -> None:
    assert make_snippet("short", 200) == "short"
    assert make_snippet("x" * 250, 200) == "x" * 200 + "..."

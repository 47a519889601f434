"""Utility helpers shared across the engine.

This module provides:
- utc_now: naive UTC timestamp used for every persisted datetime column
- new_id: random UUID4 string identifiers for documents and sessions
- chunk_text: simple fixed-size character chunking with overlap
- make_snippet: truncation of chunk content for citation display
- estimate_tokens: rough token estimate stored alongside chunks
"""
import uuid
from datetime import datetime, timezone
from typing import List


def utc_now() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Return a new random identifier string."""
    return str(uuid.uuid4())


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Split text into fixed-size character chunks with overlap.

    Ensures chunk_size >= 200 and overlap in [0, chunk_size // 2].

    Args:
        text: Input string to split.
        chunk_size: Target chunk size in characters.
        overlap: Number of characters to overlap between consecutive chunks.

    Returns:
        List[str]: Non-empty trimmed chunks.
    """
    if not text:
        return []
    chunk_size = max(200, chunk_size)
    overlap = max(0, min(overlap, chunk_size // 2))
    chunks: List[str] = []
    start = 0
    n = len(text)
    while start < n:
        end = min(n, start + chunk_size)
        chunks.append(text[start:end].strip())
        if end == n:
            break
        start = end - overlap
    return [c for c in chunks if c]


def make_snippet(content: str, limit: int) -> str:
    """Truncate content to ``limit`` characters, appending an ellipsis when cut."""
    content = (content or "").strip()
    if len(content) <= limit:
        return content
    return content[:limit].rstrip() + "..."


def estimate_tokens(text: str) -> int:
    # ~4 characters per token for English prose
    return max(1, len(text) // 4) if text else 0

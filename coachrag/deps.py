"""Shared FastAPI dependencies.

Model clients are built once per process and injected; stores and services are
built per request around the request's database session.
"""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from coachrag.collaborators import ProfileStore
from coachrag.conversations import ConversationStore
from coachrag.db import get_db
from coachrag.embedding import EmbeddingClient
from coachrag.generation import CompletionClient
from coachrag.orchestrator import QueryService
from coachrag.personalization import PromptPersonalizer
from coachrag.retention import RetentionSweeper

_EMBEDDER: EmbeddingClient | None = None
_COMPLETER: CompletionClient | None = None


def get_embedding_client() -> EmbeddingClient:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = EmbeddingClient()
    return _EMBEDDER


def get_completion_client() -> CompletionClient:
    global _COMPLETER
    if _COMPLETER is None:
        _COMPLETER = CompletionClient()
    return _COMPLETER


def get_query_service(
    db: Session = Depends(get_db),
    embedder: EmbeddingClient = Depends(get_embedding_client),
    completer: CompletionClient = Depends(get_completion_client),
) -> QueryService:
    return QueryService(db, embedder, completer)


def get_conversation_store(db: Session = Depends(get_db)) -> ConversationStore:
    return ConversationStore(db)


def get_sweeper(db: Session = Depends(get_db)) -> RetentionSweeper:
    return RetentionSweeper(db)


def get_personalizer(
    db: Session = Depends(get_db),
    completer: CompletionClient = Depends(get_completion_client),
) -> PromptPersonalizer:
    return PromptPersonalizer(ProfileStore(db), completer)


__all__ = [
    "get_completion_client",
    "get_conversation_store",
    "get_embedding_client",
    "get_personalizer",
    "get_query_service",
    "get_sweeper",
]

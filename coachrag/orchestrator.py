"""Query orchestration: the request-level state machine.

    Embedding -> Searching -> (NoMatch | Assembling -> Completing) -> Persisting -> Responded

``Failed`` is reachable from every state. Embedding and completion failures are
surfaced as EmbeddingUnavailable / CompletionUnavailable and nothing is persisted.
Zero retrieval hits is not an error: a deterministic fallback answer is produced
without calling the completion model.

Persisting the question/answer pair is best-effort relative to answering. A
failed write still returns the answer, with ``persistence`` set to FAILED.
"""
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coachrag.assembler import Citation, assemble
from coachrag.collaborators import DocumentDirectory
from coachrag.config import settings
from coachrag.conversations import ConversationStore, NewMessage, StoredMessage
from coachrag.embedding import EmbeddingClient
from coachrag.errors import (
    CoachRagError,
    CompletionServiceError,
    CompletionUnavailable,
    EmbeddingServiceError,
    EmbeddingUnavailable,
    InvalidRequest,
)
from coachrag.generation import CompletionClient
from coachrag.models import Role
from coachrag.obs import Trace, span
from coachrag.retrieval import ChunkStore, RetrievalResult
from coachrag.utils import new_id, utc_now

logger = logging.getLogger(__name__)

QUERY_ACTION = "document_query"
RESPONSE_ACTION = "document_response"

FALLBACK_TEMPLATE = (
    "I couldn't find relevant information in {source} to answer this question. "
    "Please try rephrasing your question, or re-upload the document if its content "
    "should cover this topic."
)


class QueryState(str, enum.Enum):
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    NO_MATCH = "no_match"
    ASSEMBLING = "assembling"
    COMPLETING = "completing"
    PERSISTING = "persisting"
    RESPONDED = "responded"
    FAILED = "failed"


class PersistenceStatus(str, enum.Enum):
    PERSISTED = "persisted"
    FAILED = "failed"
    SKIPPED = "skipped"  # no session given


@dataclass
class QueryRequest:
    question: str
    owner_id: str
    document_id: Optional[str] = None
    session_id: Optional[str] = None
    include_conversation_context: bool = False
    client_id: Optional[str] = None


@dataclass
class QueryOutcome:
    id: str
    answer: str
    results: List[RetrievalResult]
    citations: List[Citation]
    timestamp: datetime
    tokens_used: int
    fallback: bool
    session_id: Optional[str] = None
    persistence: PersistenceStatus = PersistenceStatus.SKIPPED
    user_message_id: Optional[int] = None
    assistant_message_id: Optional[int] = None
    states: List[QueryState] = field(default_factory=list)

    @property
    def unpersisted(self) -> bool:
        return self.persistence is PersistenceStatus.FAILED


def fallback_answer(filename: Optional[str]) -> str:
    """Deterministic answer used when retrieval finds nothing."""
    source = f'"{filename}"' if filename else "your uploaded documents"
    return FALLBACK_TEMPLATE.format(source=source)


class QueryService:
    """Answers one question per call; holds no state between calls.

    Args:
        db: Request-scoped SQLAlchemy session.
        embedder: Shared embedding client.
        completer: Shared completion client.
        chunks: Optional chunk store; built from ``db`` otherwise.
    """

    def __init__(
        self,
        db: Session,
        embedder: EmbeddingClient,
        completer: CompletionClient,
        chunks: Optional[ChunkStore] = None,
    ):
        self.embedder = embedder
        self.completer = completer
        self.chunks = chunks or ChunkStore(db)
        self.conversations = ConversationStore(db)
        self.documents = DocumentDirectory(db)

    def answer(self, req: QueryRequest) -> QueryOutcome:
        """Run the full pipeline for one question.

        Raises:
            InvalidRequest: Empty question.
            NotFound / Forbidden: Unknown or foreign session.
            EmbeddingUnavailable: The question could not be embedded.
            CompletionUnavailable: The model call failed.
        """
        question = (req.question or "").strip()
        if not question:
            raise InvalidRequest("question must be non-empty")
        if req.session_id:
            self.conversations.get_session(req.session_id, req.owner_id)

        states: List[QueryState] = []
        trace = Trace("query", input={"question": question, "document_id": req.document_id})

        def enter(state: QueryState) -> None:
            states.append(state)
            logger.debug(
                "query state %s", state.value,
                extra={"ctx_state": state.value, "ctx_session_id": req.session_id},
            )

        enter(QueryState.EMBEDDING)
        try:
            with span("embed"):
                qvec = self.embedder.embed(question)
        except EmbeddingServiceError as exc:
            enter(QueryState.FAILED)
            trace.event("failed", {"stage": "embedding"})
            logger.warning("query failed at embedding", extra={"ctx_owner_id": req.owner_id})
            raise EmbeddingUnavailable("embedding service unavailable, retry later") from exc

        enter(QueryState.SEARCHING)
        with span("search", {"document_id": req.document_id}):
            results = self.chunks.search(qvec, req.owner_id, req.document_id, limit=settings.TOP_K)
        trace.event("retrieval_result", {"num_results": len(results)})

        citations: List[Citation] = []
        if not results:
            enter(QueryState.NO_MATCH)
            filename = self.documents.filename(req.document_id, req.owner_id) if req.document_id else None
            text = fallback_answer(filename)
            tokens = 0
            fallback = True
        else:
            enter(QueryState.ASSEMBLING)
            prior: List[StoredMessage] = []
            if req.include_conversation_context and req.session_id:
                prior = self.conversations.recent_messages(
                    req.session_id, req.owner_id, settings.HISTORY_TURNS * 2
                )
            prompt = assemble(question, results, prior, req.document_id)
            citations = prompt.citations

            enter(QueryState.COMPLETING)
            try:
                with span("complete", {"sources": len(citations)}):
                    completion = self.completer.complete(
                        prompt.messages,
                        temperature=settings.ANSWER_TEMPERATURE,
                        max_tokens=settings.ANSWER_MAX_TOKENS,
                    )
            except CompletionServiceError as exc:
                enter(QueryState.FAILED)
                trace.event("failed", {"stage": "completion"})
                logger.warning("query failed at completion", extra={"ctx_owner_id": req.owner_id})
                raise CompletionUnavailable("completion service unavailable, retry later") from exc
            trace.generation("answer", prompt=prompt.messages, output=completion.text,
                             metadata={"sources": len(citations)})
            text = completion.text
            tokens = completion.tokens_used
            fallback = False

        outcome = QueryOutcome(
            id=f"query-{int(time.time() * 1000)}",
            answer=text,
            results=results,
            citations=citations,
            timestamp=utc_now(),
            tokens_used=tokens,
            fallback=fallback,
            session_id=req.session_id,
            states=states,
        )

        if req.session_id:
            enter(QueryState.PERSISTING)
            self._persist(req, question, outcome)

        enter(QueryState.RESPONDED)
        logger.info(
            "query answered",
            extra={
                "ctx_owner_id": req.owner_id,
                "ctx_session_id": req.session_id,
                "ctx_sources": len(citations),
                "ctx_fallback": fallback,
                "ctx_tokens_used": tokens,
                "ctx_persistence": outcome.persistence.value,
            },
        )
        trace.end(output={"fallback": fallback, "persistence": outcome.persistence.value})
        return outcome

    def _persist(self, req: QueryRequest, question: str, outcome: QueryOutcome) -> None:
        base = req.client_id or new_id()
        scope = {"query_type": QUERY_ACTION, "document_id": req.document_id, "fallback": outcome.fallback}
        turn = [
            NewMessage(
                role=Role.USER.value,
                content=question,
                client_id=f"{base}:user",
                action_type=QUERY_ACTION,
                metadata=dict(scope, sources_found=len(outcome.results)),
            ),
            NewMessage(
                role=Role.ASSISTANT.value,
                content=outcome.answer,
                client_id=f"{base}:assistant",
                action_type=RESPONSE_ACTION,
                metadata=dict(
                    scope,
                    citations=[c.to_dict() for c in outcome.citations],
                    sources_used=len(outcome.citations),
                    tokens_used=outcome.tokens_used,
                ),
            ),
        ]
        try:
            user_msg, assistant_msg = self.conversations.append_turn(req.session_id, req.owner_id, turn)
        except (SQLAlchemyError, CoachRagError):
            logger.exception(
                "failed to persist conversation turn",
                extra={"ctx_session_id": req.session_id, "ctx_owner_id": req.owner_id},
            )
            outcome.persistence = PersistenceStatus.FAILED
            return
        outcome.persistence = PersistenceStatus.PERSISTED
        outcome.user_message_id = user_msg.id
        outcome.assistant_message_id = assistant_msg.id

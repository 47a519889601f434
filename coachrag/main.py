"""FastAPI application entrypoint and routes.

Exposes health, document question answering, conversation sessions, operator
retention sweeps and personalized prompt suggestions. Configures logging, CORS
and tracing, and initializes the database schema at startup. Engine errors are
rendered as ``{"error", "detail", "retryable"}`` with their HTTP status.
"""
import logging
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coachrag.auth import require_admin, require_owner
from coachrag.config import settings
from coachrag.conversations import ConversationStore
from coachrag.db import init_db
from coachrag.deps import get_conversation_store, get_personalizer, get_query_service, get_sweeper
from coachrag.errors import CoachRagError, Forbidden, RetentionJobError
from coachrag.logging_config import configure_logging
from coachrag.obs import init_otel
from coachrag.orchestrator import QueryRequest as QueryCommand
from coachrag.orchestrator import QueryService
from coachrag.personalization import PromptPersonalizer
from coachrag.retention import CleanupOptions, RetentionSweeper
from coachrag.schemas import (
    CleanupParams,
    ErrorResponse,
    MessageOut,
    PromptsRequest,
    PromptsResponse,
    PromptsUsage,
    QueryRequest,
    QueryResponse,
    SessionCreate,
    SessionOut,
    Source,
)
from coachrag.utils import make_snippet

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (status.HTTP_400_BAD_REQUEST, status.HTTP_403_FORBIDDEN, status.HTTP_404_NOT_FOUND,
                 status.HTTP_503_SERVICE_UNAVAILABLE)
}
CLEANUP_RESPONSES = {
    **ERROR_RESPONSES,
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}

app = FastAPI(title="Coach RAG API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    """Configure logging/tracing and ensure DB schema and indexes exist."""
    configure_logging()
    init_otel(console=settings.OTEL_CONSOLE_EXPORT)
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; /query and /prompts will fail upstream")
    init_db()


@app.exception_handler(CoachRagError)
async def handle_engine_error(request: Request, exc: CoachRagError) -> JSONResponse:
    content = {"error": exc.code, "detail": exc.message, "retryable": exc.retryable}
    if isinstance(exc, RetentionJobError) and exc.report is not None:
        content["result"] = jsonable_encoder(exc.report.to_dict())
    if exc.http_status >= 500:
        logger.error("request failed: %s", exc.code, extra={"ctx_path": request.url.path})
    return JSONResponse(status_code=exc.http_status, content=content)


@app.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@app.post("/query", response_model=QueryResponse, responses=ERROR_RESPONSES)
def query(
    req: QueryRequest,
    owner_id: str = Depends(require_owner),
    service: QueryService = Depends(get_query_service),
) -> QueryResponse:
    """Answer a question grounded in the caller's documents.

    Workflow:
    - Embed the question and search the caller's chunks (optionally one document)
    - No hits: deterministic fallback answer, no model call
    - Otherwise assemble sources (and grounded history) and generate the answer
    - Persist question and answer to the session when one is given

    Returns:
        QueryResponse: Answer, sources, token usage and persistence flags.
    """
    outcome = service.answer(
        QueryCommand(
            question=req.question,
            owner_id=owner_id,
            document_id=req.document_id,
            session_id=req.session_id,
            include_conversation_context=req.include_conversation_context,
            client_id=req.client_id,
        )
    )
    sources = [
        Source(
            document_id=r.document_id,
            filename=r.filename,
            page=r.page,
            chunk_index=r.chunk_index,
            similarity=round(r.similarity, 2),
            content=make_snippet(r.content, settings.SNIPPET_CHARS),
        )
        for r in outcome.results
    ]
    return QueryResponse(
        id=outcome.id,
        answer=outcome.answer,
        sources=sources,
        timestamp=outcome.timestamp,
        session_id=outcome.session_id,
        tokens_used=outcome.tokens_used,
        user_message_id=outcome.user_message_id,
        assistant_message_id=outcome.assistant_message_id,
        fallback=outcome.fallback,
        unpersisted=outcome.unpersisted,
    )


def _session_out(s) -> SessionOut:
    return SessionOut(
        id=s.id,
        title=s.title,
        created_at=s.created_at,
        last_message_at=s.last_message_at,
        is_active=s.is_active,
    )


@app.post("/sessions", response_model=SessionOut, status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
def create_session(
    body: Optional[SessionCreate] = Body(default=None),
    owner_id: str = Depends(require_owner),
    store: ConversationStore = Depends(get_conversation_store),
) -> SessionOut:
    return _session_out(store.create_session(owner_id, body.title if body else None))


@app.get("/sessions", response_model=List[SessionOut], responses=ERROR_RESPONSES)
def list_sessions(
    owner_id: str = Depends(require_owner),
    store: ConversationStore = Depends(get_conversation_store),
) -> List[SessionOut]:
    return [_session_out(s) for s in store.list_sessions(owner_id)]


@app.get("/sessions/{session_id}/messages", response_model=List[MessageOut], responses=ERROR_RESPONSES)
def list_messages(
    session_id: str,
    order: str = Query("asc", pattern="^(asc|desc)$"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    owner_id: str = Depends(require_owner),
    store: ConversationStore = Depends(get_conversation_store),
) -> List[MessageOut]:
    return [
        MessageOut(
            id=m.id,
            role=m.role,
            content=m.content,
            action_type=m.action_type,
            metadata=m.metadata,
            client_id=m.client_id,
            created_at=m.created_at,
        )
        for m in store.list_messages(session_id, owner_id, order=order, limit=limit)
    ]


def _cleanup_query(
    days_old: int = Query(30, ge=0),
    batch_size: int = Query(100, ge=1, le=1000),
    dry_run: bool = Query(False),
    verbose: bool = Query(False),
) -> CleanupParams:
    return CleanupParams(days_old=days_old, batch_size=batch_size, dry_run=dry_run, verbose=verbose)


def _run_cleanup(params: CleanupParams, sweeper: RetentionSweeper) -> dict:
    outcome = sweeper.run(
        CleanupOptions(
            days_old=params.days_old,
            batch_size=params.batch_size,
            dry_run=params.dry_run,
            verbose=params.verbose,
        )
    )
    return jsonable_encoder(outcome.to_dict())


@app.get("/admin/cleanup", dependencies=[Depends(require_admin)], responses=CLEANUP_RESPONSES)
def cleanup_get(
    params: CleanupParams = Depends(_cleanup_query),
    sweeper: RetentionSweeper = Depends(get_sweeper),
) -> dict:
    """Run one retention batch with options from the query string."""
    return _run_cleanup(params, sweeper)


@app.post("/admin/cleanup", dependencies=[Depends(require_admin)], responses=CLEANUP_RESPONSES)
def cleanup_post(
    body: Optional[CleanupParams] = Body(default=None),
    query_params: CleanupParams = Depends(_cleanup_query),
    sweeper: RetentionSweeper = Depends(get_sweeper),
) -> dict:
    """Run one retention batch; a JSON body takes precedence over the query string."""
    return _run_cleanup(body or query_params, sweeper)


@app.post("/prompts", response_model=PromptsResponse, responses=ERROR_RESPONSES)
def prompts(
    req: PromptsRequest,
    owner_id: str = Depends(require_owner),
    personalizer: PromptPersonalizer = Depends(get_personalizer),
) -> PromptsResponse:
    """Suggest personalized coaching questions for the caller."""
    if req.user_id != owner_id:
        logger.warning(
            "prompt request for another user rejected",
            extra={"ctx_event": "security.cross_owner_access", "ctx_owner_id": owner_id},
        )
        raise Forbidden("cannot generate prompts for another user")
    result = personalizer.generate(owner_id, req.count)
    return PromptsResponse(prompts=result.prompts, usage=PromptsUsage(tokens_used=result.tokens_used))

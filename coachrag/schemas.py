"""Pydantic request/response schemas for the API.

Defines the public contracts used by the FastAPI endpoints. Wire names are
camelCase (the mobile client's convention); Python attributes stay snake_case.
- QueryRequest / QueryResponse / Source: document question answering.
- SessionCreate / SessionOut / MessageOut: conversation sessions and history.
- CleanupParams: retention sweep options.
- PromptsRequest / PromptsResponse: personalized coaching questions.
- ErrorResponse: body of every engine error (documented on each route).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QueryRequest(_CamelModel):
    """Request body for asking a question about uploaded documents.

    Attributes:
        question: The user question to answer.
        document_id: Optional document to scope retrieval to; all of the
            caller's documents are searched otherwise.
        session_id: Optional conversation to persist the turn into.
        include_conversation_context: Fold earlier grounded turns into the prompt.
        client_id: Optional idempotency key; retries with the same key never
            duplicate the persisted turn.
    """
    question: str = Field(..., min_length=1, max_length=4000, description="User question")
    document_id: Optional[str] = Field(default=None, alias="documentId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    include_conversation_context: bool = Field(default=False, alias="includeConversationContext")
    client_id: Optional[str] = Field(default=None, alias="clientId", max_length=100)


class Source(_CamelModel):
    """A citation back to one retrieved chunk.

    Attributes:
        content: Snippet of the chunk, truncated for display.
        similarity: Cosine similarity rounded to two decimals.
    """
    document_id: str = Field(alias="documentId")
    filename: str
    page: int
    chunk_index: int = Field(alias="chunkIndex")
    similarity: float
    content: str


class QueryResponse(_CamelModel):
    """Answer with its sources.

    Attributes:
        fallback: True when nothing relevant was retrieved and the answer is the
            deterministic fallback text.
        unpersisted: True when the answer could not be written to the session.
    """
    id: str
    answer: str
    sources: List[Source]
    timestamp: datetime
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    tokens_used: int = Field(alias="tokensUsed")
    user_message_id: Optional[int] = Field(default=None, alias="userMessageId")
    assistant_message_id: Optional[int] = Field(default=None, alias="assistantMessageId")
    fallback: bool = False
    unpersisted: bool = False


class SessionCreate(_CamelModel):
    title: Optional[str] = Field(default=None, max_length=255)


class SessionOut(_CamelModel):
    id: str
    title: str
    created_at: datetime = Field(alias="createdAt")
    last_message_at: datetime = Field(alias="lastMessageAt")
    is_active: bool = Field(alias="isActive")


class MessageOut(_CamelModel):
    id: int
    role: str
    content: str
    action_type: Optional[str] = Field(default=None, alias="actionType")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    client_id: str = Field(alias="clientId")
    created_at: datetime = Field(alias="createdAt")


class CleanupParams(BaseModel):
    """Retention sweep options (query string or JSON body)."""
    days_old: int = Field(default=30, ge=0)
    batch_size: int = Field(default=100, ge=1, le=1000)
    dry_run: bool = False
    verbose: bool = False


class PromptsRequest(_CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    count: int = Field(default=5, ge=1, le=20)


class PromptsUsage(_CamelModel):
    tokens_used: int = Field(alias="tokensUsed")


class PromptsResponse(_CamelModel):
    prompts: List[str]
    usage: PromptsUsage


class ErrorResponse(BaseModel):
    error: str
    detail: str
    retryable: bool = False
    result: Optional[Dict[str, Any]] = None  # partial retention report

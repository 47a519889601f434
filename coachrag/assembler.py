"""Context assembly for grounded answers.

Turns a question plus ranked chunks (and optionally earlier turns of the same
conversation) into the chat messages sent to the completion client, and reports
which chunks were offered to the model as citations.

Earlier turns are only folded in when they were grounded in the same document
scope and were not fallback answers, oldest first.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from coachrag.config import settings
from coachrag.generation import ChatMessage
from coachrag.retrieval import RetrievalResult

SOURCE_SEPARATOR = "\n\n---\n\n"

SYSTEM_TEMPLATE = (
    "You are an AI assistant with access to the following document context:\n\n"
    "{context}\n\n"
    "Answer the user's question using only this information. Be specific and reference "
    "the content directly from the provided sources. If the sources do not contain the "
    "answer, say so."
)

HISTORY_TEMPLATE = "\n\nPrevious conversation context:\n{history}"


@dataclass
class Citation:
    source: int
    chunk_id: int
    document_id: str
    filename: str
    page: int
    chunk_index: int
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AssembledPrompt:
    system_prompt: str
    messages: List[ChatMessage]
    citations: List[Citation] = field(default_factory=list)
    history_turns: int = 0


def format_source(position: int, result: RetrievalResult) -> str:
    """Render one retrieved chunk as a labelled source block."""
    return f"[Source {position} – {result.filename}, Page {result.page}]:\n{result.content.strip()}"


def is_grounded_turn(turn: Any, document_id: Optional[str]) -> bool:
    """True when ``turn`` was answered from the same document scope and not a fallback."""
    meta = getattr(turn, "metadata", None) or {}
    if meta.get("fallback"):
        return False
    return meta.get("document_id") == document_id


def select_prior_turns(
    turns: Sequence[Any], document_id: Optional[str], limit: Optional[int] = None
) -> List[Any]:
    """Keep the most recent grounded turns, preserving chronological order.

    Args:
        turns: Earlier messages of the session, oldest first.
        document_id: Document scope of the current question.
        limit: Maximum number of turns; defaults to settings.HISTORY_TURNS.
    """
    limit = settings.HISTORY_TURNS if limit is None else limit
    if limit <= 0:
        return []
    grounded = [t for t in turns if is_grounded_turn(t, document_id)]
    return grounded[-limit:]


def assemble(
    question: str,
    results: Sequence[RetrievalResult],
    prior_turns: Optional[Sequence[Any]] = None,
    document_id: Optional[str] = None,
) -> AssembledPrompt:
    """Build the grounded prompt for ``question``.

    Args:
        question: The user's question.
        results: Ranked retrieval results; every one is offered to the model.
        prior_turns: Optional earlier messages of the conversation, oldest first.
        document_id: Document scope of the question, used to filter prior turns.

    Returns:
        AssembledPrompt: system prompt, ordered chat messages and the citations
        parallel to the sources offered.
    """
    blocks: List[str] = []
    citations: List[Citation] = []
    for position, result in enumerate(results, start=1):
        blocks.append(format_source(position, result))
        citations.append(
            Citation(
                source=position,
                chunk_id=result.chunk_id,
                document_id=result.document_id,
                filename=result.filename,
                page=result.page,
                chunk_index=result.chunk_index,
                similarity=result.similarity,
            )
        )

    system_prompt = SYSTEM_TEMPLATE.format(context=SOURCE_SEPARATOR.join(blocks))

    history = select_prior_turns(prior_turns or [], document_id)
    if history:
        lines = [f"{t.role}: {t.content}" for t in history]
        system_prompt += HISTORY_TEMPLATE.format(history="\n".join(lines))

    messages: List[ChatMessage] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": question.strip()},
    ]
    return AssembledPrompt(
        system_prompt=system_prompt,
        messages=messages,
        citations=citations,
        history_turns=len(history),
    )

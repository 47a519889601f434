"""Context assembly tests."""

from __future__ import annotations

from dataclasses import dataclass, field

from coachrag.assembler import SOURCE_SEPARATOR, assemble, select_prior_turns
from coachrag.retrieval import RetrievalResult


@dataclass
class Turn:
    role: str
    content: str
    metadata: dict = field(default_factory=dict)


def _result(i: int, doc: str = "doc-1") -> RetrievalResult:
    return RetrievalResult(
        chunk_id=i,
        document_id=doc,
        filename="plan.pdf",
        page=i + 1,
        chunk_index=i,
        similarity=0.9 - i * 0.1,
        content=f"content number {i}",
    )


def test_blocks_are_labelled_and_separated() -> None:
    prompt = assemble("What is in the plan?", [_result(0), _result(1)])

    assert "[Source 1 – plan.pdf, Page 1]:\ncontent number 0" in prompt.system_prompt
    assert "[Source 2 – plan.pdf, Page 2]:\ncontent number 1" in prompt.system_prompt
    assert SOURCE_SEPARATOR in prompt.system_prompt
    assert prompt.messages[0]["role"] == "system"
    assert prompt.messages[-1] == {"role": "user", "content": "What is in the plan?"}


def test_citations_parallel_offered_results() -> None:
    results = [_result(0), _result(1), _result(2)]

    prompt = assemble("q?", results)

    assert [c.chunk_id for c in prompt.citations] == [0, 1, 2]
    assert [c.source for c in prompt.citations] == [1, 2, 3]
    assert prompt.citations[1].page == 2


def test_only_same_document_non_fallback_turns_are_folded() -> None:
    turns = [
        Turn("user", "old question on doc-1", {"document_id": "doc-1"}),
        Turn("assistant", "old answer on doc-1", {"document_id": "doc-1"}),
        Turn("user", "question on doc-2", {"document_id": "doc-2"}),
        Turn("assistant", "answer on doc-2", {"document_id": "doc-2"}),
        Turn("user", "unanswerable", {"document_id": "doc-1", "fallback": True}),
        Turn("assistant", "I couldn't find relevant information", {"document_id": "doc-1", "fallback": True}),
        Turn("user", "recent question on doc-1", {"document_id": "doc-1"}),
        Turn("assistant", "recent answer on doc-1", {"document_id": "doc-1"}),
    ]

    prompt = assemble("next?", [_result(0)], prior_turns=turns, document_id="doc-1")

    history = prompt.system_prompt.split("Previous conversation context:\n", 1)[1]
    assert history.splitlines() == [
        "user: old question on doc-1",
        "assistant: old answer on doc-1",
        "user: recent question on doc-1",
        "assistant: recent answer on doc-1",
    ]
    assert prompt.history_turns == 4
    assert "doc-2" not in prompt.system_prompt
    assert "couldn't find" not in prompt.system_prompt


def test_history_is_capped_to_most_recent_turns() -> None:
    turns = [Turn("user", f"q{i}", {"document_id": None}) for i in range(10)]

    kept = select_prior_turns(turns, None, limit=3)

    assert [t.content for t in kept] == ["q7", "q8", "q9"]


def test_no_history_block_without_grounded_turns() -> None:
    prompt = assemble("q?", [_result(0)], prior_turns=[Turn("user", "x", {"document_id": "other"})],
                      document_id="doc-1")

    assert "Previous conversation context" not in prompt.system_prompt

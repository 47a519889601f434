"""Embedding and completion client tests against a mocked OpenAI SDK."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from coachrag.embedding import EmbeddingClient
from coachrag.errors import CompletionServiceError, EmbeddingServiceError, InvalidRequest
from coachrag.generation import CompletionClient

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/test")


def _embedding_response(*vectors):
    return SimpleNamespace(data=[SimpleNamespace(embedding=list(v)) for v in vectors])


def _chat_response(content, total_tokens=17):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=total_tokens),
    )


def test_embed_returns_vector() -> None:
    sdk = MagicMock()
    sdk.embeddings.create.return_value = _embedding_response([0.1, 0.2, 0.3])
    client = EmbeddingClient(client=sdk, model="text-embedding-3-small", dim=3)

    assert client.embed("hello") == [0.1, 0.2, 0.3]
    sdk.embeddings.create.assert_called_once_with(model="text-embedding-3-small", input=["hello"])


def test_embed_rejects_blank_text_without_calling_upstream() -> None:
    sdk = MagicMock()
    client = EmbeddingClient(client=sdk, dim=3)

    with pytest.raises(InvalidRequest):
        client.embed("   ")
    sdk.embeddings.create.assert_not_called()


@pytest.mark.parametrize(
    "exc",
    [openai.APITimeoutError(request=_REQUEST), openai.APIConnectionError(request=_REQUEST)],
)
def test_embed_wraps_upstream_errors(exc) -> None:
    sdk = MagicMock()
    sdk.embeddings.create.side_effect = exc

    with pytest.raises(EmbeddingServiceError):
        EmbeddingClient(client=sdk, dim=3).embed("hello")
    assert sdk.embeddings.create.call_count == 1


def test_embed_rejects_wrong_dimension_and_malformed_response() -> None:
    sdk = MagicMock()
    sdk.embeddings.create.return_value = _embedding_response([0.1, 0.2])
    with pytest.raises(EmbeddingServiceError):
        EmbeddingClient(client=sdk, dim=3).embed("hello")

    sdk.embeddings.create.return_value = SimpleNamespace(data=None)
    with pytest.raises(EmbeddingServiceError):
        EmbeddingClient(client=sdk, dim=3).embed("hello")


def test_embed_many_keeps_order() -> None:
    sdk = MagicMock()
    sdk.embeddings.create.return_value = _embedding_response([1.0, 0.0], [0.0, 1.0])

    assert EmbeddingClient(client=sdk, dim=2).embed_many(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]
    assert EmbeddingClient(client=sdk, dim=2).embed_many([]) == []


def test_complete_returns_text_and_usage() -> None:
    sdk = MagicMock()
    sdk.chat.completions.create.return_value = _chat_response("  The answer.  ", total_tokens=99)
    client = CompletionClient(client=sdk, model="gpt-4o-mini")

    result = client.complete([{"role": "user", "content": "q?"}], temperature=0.2, max_tokens=50)

    assert result.text == "The answer."
    assert result.tokens_used == 99
    kwargs = sdk.chat.completions.create.call_args.kwargs
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_tokens"] == 50
    assert kwargs["model"] == "gpt-4o-mini"


def test_complete_wraps_upstream_errors() -> None:
    sdk = MagicMock()
    sdk.chat.completions.create.side_effect = openai.APITimeoutError(request=_REQUEST)

    with pytest.raises(CompletionServiceError):
        CompletionClient(client=sdk).complete([{"role": "user", "content": "q?"}])


def test_complete_rejects_empty_or_malformed_response() -> None:
    sdk = MagicMock()
    sdk.chat.completions.create.return_value = _chat_response("")
    with pytest.raises(CompletionServiceError):
        CompletionClient(client=sdk).complete([{"role": "user", "content": "q?"}])

    sdk.chat.completions.create.return_value = SimpleNamespace(choices=[])
    with pytest.raises(CompletionServiceError):
        CompletionClient(client=sdk).complete([{"role": "user", "content": "q?"}])

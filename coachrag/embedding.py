"""Embedding client wrapping OpenAI's embeddings API.

Provides:
- EmbeddingClient.embed: embed a single non-empty string.
- EmbeddingClient.embed_many: batch embedding used by ingestion.

The client never retries; callers own the retry policy. Any upstream failure
(timeout, quota, malformed response, wrong dimension) surfaces as
EmbeddingServiceError. Models and dimensions come from coachrag.config.settings.
"""
import logging
from typing import List, Optional, Sequence

from openai import OpenAI, OpenAIError

from coachrag.config import settings
from coachrag.errors import EmbeddingServiceError, InvalidRequest

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Stateless text -> vector client.

    Args:
        client: Optional preconfigured OpenAI client; built lazily otherwise.
        model: Embedding model name, defaults to settings.OPENAI_EMBEDDING_MODEL.
        dim: Expected vector dimension, defaults to settings.EMBEDDING_DIM.
        timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        dim: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.model = model or settings.OPENAI_EMBEDDING_MODEL
        self.dim = dim or settings.EMBEDDING_DIM
        self.timeout = timeout or settings.REQUEST_TIMEOUT_SECONDS

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=settings.OPENAI_API_KEY, timeout=self.timeout, max_retries=0
            )
        return self._client

    def embed(self, text: str) -> List[float]:
        """Embed a single string.

        Args:
            text: Text to embed; must be non-empty after trimming.

        Returns:
            List[float]: The embedding vector.

        Raises:
            InvalidRequest: If the text is empty.
            EmbeddingServiceError: If the upstream call fails.
        """
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed a batch of strings in one upstream request.

        Args:
            texts: Input strings, each non-empty after trimming.

        Returns:
            List[List[float]]: One vector per input, in input order.
        """
        if not texts:
            return []
        if any(not (t or "").strip() for t in texts):
            raise InvalidRequest("text to embed must be non-empty")
        try:
            resp = self.client.embeddings.create(model=self.model, input=list(texts))
        except OpenAIError as exc:
            logger.warning("embedding request failed: %s", exc.__class__.__name__)
            raise EmbeddingServiceError(f"embedding request failed: {exc}") from exc

        try:
            vectors = [list(d.embedding) for d in resp.data]
        except (AttributeError, TypeError) as exc:
            raise EmbeddingServiceError("malformed embedding response") from exc
        if len(vectors) != len(texts):
            raise EmbeddingServiceError(
                f"expected {len(texts)} embeddings, got {len(vectors)}"
            )
        for vec in vectors:
            if len(vec) != self.dim:
                raise EmbeddingServiceError(
                    f"embedding dimension {len(vec)} does not match store dimension {self.dim}"
                )
        return vectors

"""Chat completion client using OpenAI chat completions.

Provides:
- Completion: generated text plus total token usage.
- CompletionClient.complete: one stateless chat completion call.

Upstream failures raise CompletionServiceError; no retries happen here.
Configuration is read from coachrag.config.settings.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from openai import OpenAI, OpenAIError

from coachrag.config import settings
from coachrag.errors import CompletionServiceError

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, str]


@dataclass
class Completion:
    text: str
    tokens_used: int


class CompletionClient:
    """Messages -> text client around the OpenAI chat completions endpoint."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout or settings.REQUEST_TIMEOUT_SECONDS

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=settings.OPENAI_API_KEY, timeout=self.timeout, max_retries=0
            )
        return self._client

    def complete(
        self,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Completion:
        """Run one chat completion.

        Args:
            messages: Ordered {role, content} messages.
            temperature: Sampling temperature; defaults to settings.ANSWER_TEMPERATURE.
            max_tokens: Output cap; defaults to settings.ANSWER_MAX_TOKENS.

        Returns:
            Completion: Stripped text and total tokens used.

        Raises:
            CompletionServiceError: On upstream failure or an empty/malformed response.
        """
        payload: List[ChatMessage] = [dict(m) for m in messages]
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=payload,
                temperature=settings.ANSWER_TEMPERATURE if temperature is None else temperature,
                max_tokens=max_tokens or settings.ANSWER_MAX_TOKENS,
            )
        except OpenAIError as exc:
            logger.warning("completion request failed: %s", exc.__class__.__name__)
            raise CompletionServiceError(f"completion request failed: {exc}") from exc

        try:
            content = resp.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError) as exc:
            raise CompletionServiceError("malformed completion response") from exc
        if not content.strip():
            raise CompletionServiceError("completion returned no content")
        usage = getattr(resp, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or 0) if usage is not None else 0
        return Completion(text=content.strip(), tokens_used=tokens)

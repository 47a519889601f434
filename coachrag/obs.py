"""Observability utilities providing optional Langfuse tracing and OpenTelemetry spans.

This module centralizes lightweight observability features:
- Langfuse integration via a minimal Trace wrapper that becomes a safe no-op when
  Langfuse is not configured by environment variables.
- OpenTelemetry span context manager. Spans go to whatever tracer provider is
  installed globally; OTEL_CONSOLE_EXPORT installs a console exporter for local runs.

Environment/config dependencies are read from coachrag.config.settings.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from langfuse import Langfuse
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from coachrag.config import settings

logger = logging.getLogger(__name__)

_langfuse_client: Optional[Langfuse] = None
_otel_inited: bool = False


def _init_langfuse() -> Optional[Langfuse]:
    """Initialize and memoize a Langfuse client if configuration is present.

    Returns:
        Optional[Langfuse]: A Langfuse client instance when LANGFUSE_HOST,
            LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY are configured; otherwise None.
    """
    global _langfuse_client
    if _langfuse_client is not None:
        return _langfuse_client
    if settings.LANGFUSE_HOST and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY:
        _langfuse_client = Langfuse(
            host=settings.LANGFUSE_HOST,
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
        )
        return _langfuse_client
    return None


def init_otel(console: bool = False) -> None:
    """Install a tracer provider, optionally exporting spans to the console.

    Sets the global tracer provider once; later calls are no-ops.
    """
    global _otel_inited
    if _otel_inited:
        return
    tp = TracerProvider()
    if console:
        tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)
    _otel_inited = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Context manager wrapping an OpenTelemetry span around a pipeline stage."""
    tracer = trace.get_tracer("coachrag")
    with tracer.start_as_current_span(name) as otel_span:
        for k, v in (attributes or {}).items():
            if v is not None:
                otel_span.set_attribute(k, v)
        yield otel_span


class Trace:
    """
    Minimal wrapper for a Langfuse trace with no-op methods if not configured.
    """

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None):
        """Create a trace that wraps optional Langfuse state.

        Args:
            name: Logical name of the trace.
            input: Initial input payload to attach to the trace.

        Notes:
            Langfuse failures never break the request; they are logged at debug level
            and the trace turns into a no-op.
        """
        self.name = name
        self.enabled = False
        self._trace = None
        client = _init_langfuse()
        if client is not None:
            try:
                self._trace = client.trace(name=name, input=input or {})
                self.enabled = True
            except Exception:
                logger.debug("langfuse trace creation failed", exc_info=True)
                self._trace = None

    def event(self, name: str, data: Optional[Dict[str, Any]] = None):
        """Record a structured event on the trace if Langfuse is enabled."""
        if not self.enabled:
            return
        try:
            self._trace.event(name=name, input=data or {})
        except Exception:
            logger.debug("langfuse event %s failed", name, exc_info=True)

    def generation(self, name: str, prompt: Any, output: str, metadata: Optional[Dict[str, Any]] = None):
        """Record a generation with input/output text and optional metadata.

        Args:
            name: Logical generation name.
            prompt: The input messages or prompt text.
            output: The generated text output.
            metadata: Optional metadata to attach.
        """
        if not self.enabled:
            return
        try:
            self._trace.generation(
                name=name,
                input=prompt,
                output=output,
                metadata=metadata or {},
                model=settings.OPENAI_MODEL,
            )
        except Exception:
            logger.debug("langfuse generation %s failed", name, exc_info=True)

    def end(self, output: Optional[Dict[str, Any]] = None):
        """Finalize the trace with a structured output payload."""
        if not self.enabled:
            return
        try:
            self._trace.update(output=output or {})
        except Exception:
            logger.debug("langfuse trace end failed", exc_info=True)

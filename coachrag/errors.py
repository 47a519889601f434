"""Exception taxonomy for the document/conversation engine.

Every error carries a stable ``code`` and the HTTP status the API layer renders it
with. ``retryable`` tells clients whether backing off and retrying can help.
"""
from typing import Any, Optional


class CoachRagError(Exception):
    """Base exception for all engine errors."""

    code = "internal_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class InvalidRequest(CoachRagError):
    """Raised when input validation fails."""

    code = "invalid_request"
    http_status = 400


class NotFound(CoachRagError):
    """Raised when a requested resource does not exist."""

    code = "not_found"
    http_status = 404


class Forbidden(CoachRagError):
    """Raised on cross-owner access attempts."""

    code = "forbidden"
    http_status = 403


class EmbeddingServiceError(CoachRagError):
    """Raised by the embedding client when the upstream call fails."""

    code = "embedding_service_error"
    http_status = 503
    retryable = True


class CompletionServiceError(CoachRagError):
    """Raised by the completion client when the upstream call fails."""

    code = "completion_service_error"
    http_status = 503
    retryable = True


class EmbeddingUnavailable(CoachRagError):
    code = "embedding_unavailable"
    http_status = 503
    retryable = True


class CompletionUnavailable(CoachRagError):
    code = "completion_unavailable"
    http_status = 503
    retryable = True


class PersonalizationValidationError(CoachRagError):
    """Raised when generated prompts violate the output contract."""

    code = "personalization_invalid"
    http_status = 502


class RetentionJobError(CoachRagError):
    """Raised when a sweep fails outside a single session's scope.

    ``report`` holds whatever the sweep completed before failing.
    """

    code = "retention_job_failed"
    http_status = 500

    def __init__(self, message: str = "", report: Optional[Any] = None, **context: Any):
        super().__init__(message, **context)
        self.report = report


class SweepInProgress(RetentionJobError):
    code = "sweep_in_progress"
    http_status = 409
    retryable = True

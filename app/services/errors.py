"""
Error taxonomy for the draft generation pipeline.

Every failure that reaches a caller is one of these classes.  Each carries a
stable ``error_kind`` (what API clients switch on) and the HTTP status the
router answers with.
"""
from __future__ import annotations

from typing import Dict


class GenerationPipelineError(Exception):
    """Base class for classified pipeline failures."""

    error_kind: str = "internal_error"
    http_status: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> Dict[str, str]:
        return {"errorKind": self.error_kind, "message": self.message}


class ValidationError(GenerationPipelineError):
    """Caller input is missing or oversized.  Never retried."""

    error_kind = "validation_error"
    http_status = 400


class TransportError(GenerationPipelineError):
    """The generation service could not be reached or answered with an error."""

    error_kind = "service_unavailable"
    http_status = 503


class GenerationTimeoutError(TransportError):
    """A generation attempt exceeded its deadline."""


class ContentBlockedError(GenerationPipelineError):
    """The generation service refused on policy grounds.  Never retried."""

    error_kind = "content_blocked"
    http_status = 422


# The client raises this name for prompt-level refusals; it is the same kind.
PolicyBlockedError = ContentBlockedError


class MalformedResponseError(GenerationPipelineError):
    """The service response did not have the expected envelope shape."""

    error_kind = "malformed_response"
    http_status = 502


class EmptyResponseError(MalformedResponseError):
    """The service returned nothing usable (no envelope or blank text)."""


class UnrecoverableContentError(GenerationPipelineError):
    """Even the fixed fallback document failed content validation."""

    error_kind = "unrecoverable_content"
    http_status = 500


class PersistenceError(GenerationPipelineError):
    """The draft store stayed unreachable after the retry budget."""

    error_kind = "storage_unavailable"
    http_status = 503


def classify_error(exc: BaseException) -> GenerationPipelineError:
    """Map any exception onto the taxonomy; unknown errors become ``internal_error``."""
    if isinstance(exc, GenerationPipelineError):
        return exc
    return GenerationPipelineError(f"Unexpected pipeline failure: {exc}")

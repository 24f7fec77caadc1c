"""Unwraps the generation service envelope into the first candidate's text."""
from __future__ import annotations

import logging
from typing import Any, FrozenSet, Iterable, Optional

from app.services.errors import (
    ContentBlockedError,
    EmptyResponseError,
    MalformedResponseError,
)
from app.services.generation_client import RawServiceResponse

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_FINISH_REASONS: FrozenSet[str] = frozenset(
    {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
)


class ResponseExtractor:
    """
    Validates the envelope link by link and returns the trimmed text of the
    first part of the first candidate.  Other candidates are ignored.
    """

    def __init__(self, blocked_finish_reasons: Optional[Iterable[str]] = None) -> None:
        self.blocked_finish_reasons = frozenset(
            blocked_finish_reasons
            if blocked_finish_reasons is not None
            else DEFAULT_BLOCKED_FINISH_REASONS
        )

    def extract(self, raw: Optional[RawServiceResponse]) -> str:
        if raw is None or raw.response is None:
            raise EmptyResponseError("Generation service returned no response envelope")

        envelope = raw.response
        if not isinstance(envelope, dict):
            raise MalformedResponseError("Invalid response structure: envelope is not an object")

        candidates = envelope.get("candidates")
        if candidates is None or not isinstance(candidates, list):
            raise MalformedResponseError("Missing or invalid field: candidates")
        if not candidates:
            raise MalformedResponseError("Empty field: candidates")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise MalformedResponseError("Invalid field: candidates[0]")

        finish_reason = candidate.get("finishReason")
        if finish_reason in self.blocked_finish_reasons:
            logger.warning("extract: first candidate blocked (finishReason=%s)", finish_reason)
            raise ContentBlockedError(f"Content blocked by safety filters ({finish_reason})")

        content = candidate.get("content")
        if not isinstance(content, dict):
            raise MalformedResponseError("Missing or invalid field: candidates[0].content")

        parts = content.get("parts")
        if parts is None or not isinstance(parts, list):
            raise MalformedResponseError("Missing or invalid field: candidates[0].content.parts")
        if not parts:
            raise MalformedResponseError("Empty field: candidates[0].content.parts")

        first_part: Any = parts[0]
        text = first_part.get("text") if isinstance(first_part, dict) else None
        if not isinstance(text, str):
            raise MalformedResponseError("Missing or invalid field: candidates[0].content.parts[0].text")

        text = text.strip()
        if not text:
            raise EmptyResponseError("Generation service returned empty text content")

        logger.info("extract: %d chars of text via %s", len(text), raw.transport)
        return text

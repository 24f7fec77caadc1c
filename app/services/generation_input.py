"""Per-request input to the generation pipeline and its validation."""
from __future__ import annotations

import dataclasses
from typing import Any, Optional, Tuple

from app.config import settings
from app.services.errors import ValidationError

NOT_PROVIDED_OBSERVATIONS = (
    "No results provided yet - draft will be generated based on available information"
)


@dataclasses.dataclass(frozen=True)
class GenerationInput:
    """Validated, trimmed input.  Lives for one invocation only."""

    job_id: str
    source_text: str
    observations_text: str
    attachment_names: Tuple[str, ...] = ()
    owner_id: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class InputLimits:
    max_source_text: int = settings.MAX_SOURCE_TEXT_LENGTH
    max_observations: int = settings.MAX_OBSERVATIONS_LENGTH
    max_attachments: int = settings.MAX_ATTACHMENTS
    max_job_id: int = settings.MAX_JOB_ID_LENGTH


def _attachment_name(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        name = entry
    elif isinstance(entry, dict):
        name = entry.get("name")
    else:
        name = getattr(entry, "name", None)
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


def validate_generation_input(
    job_id: Any,
    source_text: Any,
    observations_text: Any = None,
    attachments: Any = None,
    owner_id: Optional[str] = None,
    limits: Optional[InputLimits] = None,
) -> GenerationInput:
    """
    Check and normalise caller input.  Raises ``ValidationError`` with a
    caller-correctable message on the first problem found.
    """
    limits = limits or InputLimits()

    if not isinstance(job_id, str) or not job_id.strip():
        raise ValidationError("Job ID is required")
    if len(job_id.strip()) > limits.max_job_id:
        raise ValidationError(f"Job ID exceeds maximum length of {limits.max_job_id} characters")

    if source_text is None:
        raise ValidationError("Source text is required")
    if not isinstance(source_text, str):
        raise ValidationError(f"Source text must be a string, received: {type(source_text).__name__}")
    if not source_text.strip():
        raise ValidationError("Source text cannot be empty or whitespace only")
    if len(source_text.strip()) > limits.max_source_text:
        raise ValidationError(
            f"Source text exceeds maximum length of {limits.max_source_text:,} characters"
        )

    if not isinstance(observations_text, str) or not observations_text.strip():
        observations = NOT_PROVIDED_OBSERVATIONS
    else:
        if len(observations_text.strip()) > limits.max_observations:
            raise ValidationError(
                f"Observations text exceeds maximum length of {limits.max_observations:,} characters"
            )
        observations = observations_text

    names: Tuple[str, ...] = ()
    if attachments is not None:
        if not isinstance(attachments, (list, tuple)):
            raise ValidationError(
                f"Attachments must be an array, received: {type(attachments).__name__}"
            )
        if len(attachments) > limits.max_attachments:
            raise ValidationError(f"Maximum of {limits.max_attachments} attachments allowed")
        names = tuple(name for name in map(_attachment_name, attachments) if name)

    owner = owner_id.strip() if isinstance(owner_id, str) and owner_id.strip() else None

    return GenerationInput(
        job_id=job_id.strip(),
        source_text=source_text.strip(),
        observations_text=observations.strip(),
        attachment_names=names,
        owner_id=owner,
    )

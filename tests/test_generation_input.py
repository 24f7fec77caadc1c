"""Tests for caller input validation."""
import pytest

from app.services.errors import ValidationError
from app.services.generation_input import (
    NOT_PROVIDED_OBSERVATIONS,
    InputLimits,
    validate_generation_input,
)

LIMITS = InputLimits(max_source_text=20, max_observations=10, max_attachments=2, max_job_id=8)


def test_padded_source_text_is_measured_after_trimming():
    padded = "   " + "a" * 20 + "\n\n\n"
    generation_input = validate_generation_input("job-1", padded, limits=LIMITS)
    assert generation_input.source_text == "a" * 20


def test_source_text_over_limit_is_rejected():
    with pytest.raises(ValidationError, match="Source text exceeds"):
        validate_generation_input("job-1", "a" * 21, limits=LIMITS)


def test_padded_observations_are_measured_after_trimming():
    generation_input = validate_generation_input(
        "job-1", "source", "  " + "o" * 10 + "  ", limits=LIMITS
    )
    assert generation_input.observations_text == "o" * 10


def test_blank_observations_use_not_provided_marker():
    generation_input = validate_generation_input("job-1", "source", "   ", limits=LIMITS)
    assert generation_input.observations_text == NOT_PROVIDED_OBSERVATIONS


def test_too_many_attachments_are_rejected():
    with pytest.raises(ValidationError, match="Maximum of 2 attachments"):
        validate_generation_input("job-1", "source", None, ["a", "b", "c"], limits=LIMITS)

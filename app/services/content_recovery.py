"""
Recovery of a key/value section map from free-form model output.

The model is asked for a bare JSON object but routinely wraps it in markdown
fences, prose, comments or half-valid syntax.  Recovery runs an ordered
cascade of pure ``str -> Optional[dict]`` strategies, each more aggressive
than the last, and stops at the first one that yields a JSON *object*:

1. ``fenced_block``     – drop ```json fences, keep the greedy ``{...}`` span
                          on a single line
2. ``aggressive_strip`` – drop any fence tag, ``//`` and ``/* */`` comments,
                          keep the first-to-last brace span across lines
3. ``brace_span``       – slice between the literal first ``{`` and last ``}``
4. ``syntactic_repair`` – quote bare keys and scalar values, drop trailing
                          commas, then re-bound to a brace span

If every strategy fails, a heuristic pass regex-searches the raw text for
known section headings and returns whatever it finds plus a placeholder
title and an ``error_note``.  ``recover`` never raises.
"""
from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any, Callable, Dict, Optional, Pattern, Sequence, Tuple

from app.utils.helpers import truncate_text

logger = logging.getLogger(__name__)

RawSectionMap = Dict[str, Any]


# ---------------------------------------------------------------------------
# Policy (immutable, injected)
# ---------------------------------------------------------------------------

FALLBACK_TITLE_MARKER = "[DRAFT GENERATION FAILED - TITLE REQUIRED]"

FALLBACK_ERROR_NOTE = (
    "This draft was generated using fallback parsing due to AI response "
    "formatting issues. Please review and complete all sections marked with "
    "[STUDENT INPUT REQUIRED]."
)


_WORD = re.compile(r"\w")


def _heading_pattern(alternatives: str) -> Pattern[str]:
    return re.compile(rf"(?:{alternatives})\s*:?\s*[\"']?([^\n\"']+)[\"']?", re.IGNORECASE)


DEFAULT_SECTION_PATTERNS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("title", _heading_pattern("title|heading")),
    ("abstract", _heading_pattern("abstract|summary")),
    ("introduction", _heading_pattern("introduction|intro")),
    ("methods", _heading_pattern("methods?|methodology")),
    ("results", _heading_pattern("results?")),
    ("discussion", _heading_pattern("discussion")),
    ("conclusion", _heading_pattern("conclusion")),
)


@dataclasses.dataclass(frozen=True)
class RecoveryPolicy:
    """Heading patterns and markers used by the heuristic fallback."""

    section_patterns: Tuple[Tuple[str, Pattern[str]], ...] = DEFAULT_SECTION_PATTERNS
    failure_title: str = FALLBACK_TITLE_MARKER
    error_note: str = FALLBACK_ERROR_NOTE


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _parse_object(candidate: str) -> Optional[RawSectionMap]:
    """Accept only a brace-delimited text that parses to a JSON object."""
    if not (candidate.startswith("{") and candidate.endswith("}")):
        return None
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def fenced_block(text: str) -> Optional[RawSectionMap]:
    cleaned = re.sub(r"```json\s*", "", text, flags=re.IGNORECASE)
    cleaned = re.sub(r"```\s*", "", cleaned)
    # No DOTALL: the greedy span must open and close on the same line.
    cleaned = re.sub(r"^[^{]*(\{.*\})[^}]*$", r"\1", cleaned)
    return _parse_object(cleaned.strip())


def aggressive_strip(text: str) -> Optional[RawSectionMap]:
    cleaned = re.sub(r"```[a-zA-Z]*\s*", "", text)
    cleaned = re.sub(r"^[\s\S]*?(\{[\s\S]*\})[\s\S]*?$", r"\1", cleaned)
    cleaned = re.sub(r"\n\s*//.*$", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"/\*[\s\S]*?\*/", "", cleaned)
    return _parse_object(cleaned.strip())


def brace_span(text: str) -> Optional[RawSectionMap]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _parse_object(text[start : end + 1])


def syntactic_repair(text: str) -> Optional[RawSectionMap]:
    cleaned = re.sub(r"```[a-zA-Z]*\s*", "", text)
    cleaned = re.sub(r"```\s*", "", cleaned)
    # Bare keys
    cleaned = re.sub(r"([{,])\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:", r'\1"\2":', cleaned)
    # Bare scalar values
    cleaned = re.sub(r":\s*([^\"\[{][^,}\]]*[^,}\]\s])\s*([,}])", r':"\1"\2', cleaned)
    # Trailing commas
    cleaned = re.sub(r",\s*}", "}", cleaned)
    cleaned = re.sub(r",\s*]", "]", cleaned)
    cleaned = cleaned.strip()
    match = re.search(r"\{[\s\S]*\}", cleaned)
    if match:
        cleaned = match.group(0)
    return _parse_object(cleaned)


@dataclasses.dataclass(frozen=True)
class RecoveryStrategy:
    name: str
    apply: Callable[[str], Optional[RawSectionMap]]


DEFAULT_STRATEGIES: Tuple[RecoveryStrategy, ...] = (
    RecoveryStrategy("fenced_block", fenced_block),
    RecoveryStrategy("aggressive_strip", aggressive_strip),
    RecoveryStrategy("brace_span", brace_span),
    RecoveryStrategy("syntactic_repair", syntactic_repair),
)

HEURISTIC_FALLBACK = "heuristic_fallback"


@dataclasses.dataclass
class RecoveryOutcome:
    """The recovered map and the name of the strategy that produced it."""

    sections: RawSectionMap
    strategy: str

    @property
    def degraded(self) -> bool:
        return self.strategy == HEURISTIC_FALLBACK


# ---------------------------------------------------------------------------
# Recoverer
# ---------------------------------------------------------------------------

class StructuredContentRecoverer:
    """Runs the strategy cascade, then the heuristic fallback."""

    def __init__(
        self,
        policy: Optional[RecoveryPolicy] = None,
        strategies: Sequence[RecoveryStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self.policy = policy or RecoveryPolicy()
        self.strategies = tuple(strategies)

    def recover(self, raw_text: str) -> RawSectionMap:
        return self.recover_detailed(raw_text).sections

    def recover_detailed(self, raw_text: str) -> RecoveryOutcome:
        text = raw_text if isinstance(raw_text, str) else str(raw_text or "")

        for position, strategy in enumerate(self.strategies, start=1):
            try:
                parsed = strategy.apply(text)
            except re.error as exc:
                logger.warning("recover: strategy %s raised %s", strategy.name, exc)
                parsed = None
            if parsed is not None:
                if position > 1:
                    logger.info(
                        "recover: parsed with strategy %d (%s)", position, strategy.name
                    )
                return RecoveryOutcome(sections=parsed, strategy=strategy.name)

        logger.warning(
            "recover: all %d strategies failed, using heuristic extraction. Preview: %s",
            len(self.strategies),
            truncate_text(text, 200),
        )
        return RecoveryOutcome(sections=self._heuristic_sections(text), strategy=HEURISTIC_FALLBACK)

    def _heuristic_sections(self, text: str) -> RawSectionMap:
        found: RawSectionMap = {}
        for key, pattern in self.policy.section_patterns:
            match = pattern.search(text)
            # Captures of bare punctuation (e.g. from a JSON array) are not headings.
            if match and _WORD.search(match.group(1)):
                found[key] = match.group(1).strip()

        found.setdefault("title", self.policy.failure_title)
        found["error_note"] = self.policy.error_note
        return found

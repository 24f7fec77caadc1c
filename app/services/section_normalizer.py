"""
Maps a recovered section map onto the canonical lab-report document.

Public API
----------
SectionNormalizer.normalize(raw_sections) -> SectionedDocument

Steps
-----
1. Alias resolution – numbered / prefixed / synonymous headings are mapped
   onto canonical keys (first alias hit wins; canonical keys already present
   are kept when no alias produced that key).
2. Completion – a ``methods`` value moves to ``recommendations`` when the
   latter is missing, every required body section that is missing, blank or
   not text becomes the sentinel placeholder, and ``abstract`` is synthesised.
3. Title sanity – missing, blank, non-text, placeholder or failure-marker
   titles get a generic title before the content policy runs.
4. Content policy – type, emptiness, length, title shape and serialization
   artifacts are checked.  Any violation replaces the whole document with
   the "validation failed" document, which is validated once more; if even
   that fails ``UnrecoverableContentError`` is raised.
"""
from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from app.services.content_recovery import FALLBACK_TITLE_MARKER
from app.services.errors import UnrecoverableContentError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Document type
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class SectionedDocument:
    """Ordered canonical section key -> section text."""

    sections: Tuple[Tuple[str, str], ...]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "SectionedDocument":
        return cls(sections=tuple((str(k), str(v)) for k, v in mapping.items()))

    @classmethod
    def from_json(cls, payload: str) -> "SectionedDocument":
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Serialized document must be a JSON object")
        return cls.from_mapping(data)

    def to_dict(self) -> Dict[str, str]:
        return dict(self.sections)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.to_dict().get(key, default)

    def keys(self) -> List[str]:
        return [key for key, _ in self.sections]

    def __getitem__(self, key: str) -> str:
        return self.to_dict()[key]

    def __contains__(self, key: object) -> bool:
        return key in self.to_dict()

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    @property
    def title(self) -> str:
        return self.to_dict().get("title", "")

    @property
    def is_degraded(self) -> bool:
        """True when fallback parsing or validation failure shaped this document."""
        return "error_note" in self.to_dict()


# ---------------------------------------------------------------------------
# Policy (immutable, injected)
# ---------------------------------------------------------------------------

PLACEHOLDER = "[STUDENT INPUT REQUIRED]"
REFERENCES_PLACEHOLDER = "[SUGGESTED_REFERENCE - STUDENT INPUT REQUIRED]"
GENERIC_TITLE = "Research Report Draft - Title Required"
VALIDATION_FAILED_TITLE = "Research Report Draft - Validation Failed"
VALIDATION_FAILED_ABSTRACT = "[AI draft unavailable: validation failed - requires human review]"

CANONICAL_ORDER: Tuple[str, ...] = (
    "title",
    "abstract",
    "introduction",
    "objectives",
    "materials",
    "procedures",
    "results",
    "discussion",
    "recommendations",
    "conclusion",
    "references",
    "error_note",
)

REQUIRED_SECTIONS: Tuple[str, ...] = (
    "title",
    "introduction",
    "objectives",
    "materials",
    "procedures",
    "results",
    "discussion",
    "recommendations",
    "conclusion",
    "references",
)

# Heading spelling -> canonical key.  Matched exactly, in this order.
DEFAULT_ALIASES: Tuple[Tuple[str, str], ...] = (
    ("1. Title", "title"),
    ("Title", "title"),
    ("Abstract", "abstract"),
    ("Summary", "abstract"),
    ("2. Introduction", "introduction"),
    ("Introduction", "introduction"),
    ("3. Objectives/Aims", "objectives"),
    ("Objectives/Aims", "objectives"),
    ("Objectives", "objectives"),
    ("Aims", "objectives"),
    ("4. Materials & Reagents", "materials"),
    ("Materials & Reagents", "materials"),
    ("Materials", "materials"),
    ("5. Procedures", "procedures"),
    ("Procedures", "procedures"),
    ("Procedure", "procedures"),
    ("Methods", "procedures"),
    ("6. Results", "results"),
    ("Results", "results"),
    ("7. Discussion (Guidance only)", "discussion"),
    ("7. Discussion", "discussion"),
    ("Discussion", "discussion"),
    ("8. Recommendations (Guidance only)", "recommendations"),
    ("8. Recommendations", "recommendations"),
    ("Recommendations", "recommendations"),
    ("9. Conclusion (Guidance only)", "conclusion"),
    ("9. Conclusion", "conclusion"),
    ("Conclusion", "conclusion"),
    ("10. References", "references"),
    ("References", "references"),
)

DEFAULT_SUSPICIOUS_SUBSTRINGS: Tuple[str, ...] = ("undefined", "null", "[object Object]")


@dataclasses.dataclass(frozen=True)
class SectionPolicy:
    aliases: Tuple[Tuple[str, str], ...] = DEFAULT_ALIASES
    canonical_order: Tuple[str, ...] = CANONICAL_ORDER
    required_sections: Tuple[str, ...] = REQUIRED_SECTIONS
    placeholder: str = PLACEHOLDER
    generic_title: str = GENERIC_TITLE
    failure_marker: str = FALLBACK_TITLE_MARKER
    suspicious_substrings: Tuple[str, ...] = DEFAULT_SUSPICIOUS_SUBSTRINGS
    max_section_length: int = 10_000
    max_title_length: int = 200
    # Non-canonical keys that survive alias resolution
    passthrough_keys: Tuple[str, ...] = ("methods",)


_BRACKETED = re.compile(r"^[\[(].*[\])]$", re.DOTALL)


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class SectionNormalizer:
    """Produces a complete, policy-valid SectionedDocument from any input map."""

    def __init__(self, policy: Optional[SectionPolicy] = None) -> None:
        self.policy = policy or SectionPolicy()

    def normalize(self, raw_sections: Optional[Mapping[str, Any]]) -> SectionedDocument:
        raw = dict(raw_sections) if isinstance(raw_sections, Mapping) else {}

        sections = self._resolve_aliases(raw)
        self._complete(sections)
        self._fix_title(sections)

        violations = self.validate(sections)
        if violations:
            summary = "; ".join(violations)
            logger.warning("normalize: draft validation failed: %s", summary)
            sections = self._validation_failed_sections(summary)
            second = self.validate(sections)
            if second:
                raise UnrecoverableContentError(
                    "Critical validation failure: unable to create valid draft structure "
                    f"({'; '.join(second)})"
                )

        return SectionedDocument.from_mapping(self._ordered(sections))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _resolve_aliases(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        mapped: Dict[str, Any] = {}
        for heading, canonical in self.policy.aliases:
            if canonical in mapped:
                continue
            value = raw.get(heading)
            if value:
                mapped[canonical] = value

        carried = set(self.policy.canonical_order) | set(self.policy.passthrough_keys)
        for key in carried:
            value = raw.get(key)
            if value and key not in mapped:
                mapped[key] = value
        return mapped

    def _complete(self, sections: Dict[str, Any]) -> None:
        if not _is_text(sections.get("recommendations")) and "methods" in sections:
            sections["recommendations"] = sections.pop("methods")
        sections.pop("methods", None)

        # The title is settled by _fix_title, never by the placeholder.
        missing = [
            key
            for key in self.policy.required_sections
            if key != "title" and not _is_text(sections.get(key))
        ]
        for key in missing:
            sections[key] = self.policy.placeholder
        if missing:
            logger.info("normalize: filled %d missing section(s): %s", len(missing), missing)

        if not _is_text(sections.get("abstract")):
            sections["abstract"] = self.policy.placeholder

    def _fix_title(self, sections: Dict[str, Any]) -> None:
        title = sections.get("title")
        if (
            not _is_text(title)
            or self.policy.failure_marker in title
            or title.strip() == self.policy.placeholder
        ):
            sections["title"] = self.policy.generic_title

    # ------------------------------------------------------------------
    # Content policy
    # ------------------------------------------------------------------

    def validate(self, sections: Mapping[str, Any]) -> List[str]:
        """Return every policy violation found (empty list means valid)."""
        errors: List[str] = []
        try:
            json.dumps(dict(sections))
        except (TypeError, ValueError):
            return ["Draft data contains non-serializable content"]

        for key in self.policy.required_sections:
            value = sections.get(key)
            if value is None:
                errors.append(f"Missing required section: {key}")
                continue
            if not isinstance(value, str):
                errors.append(f"Section '{key}' must be a string, received: {type(value).__name__}")
                continue
            if not value.strip():
                errors.append(f"Section '{key}' cannot be empty")
                continue
            if len(value) > self.policy.max_section_length:
                errors.append(
                    f"Section '{key}' exceeds maximum length of "
                    f"{self.policy.max_section_length:,} characters"
                )
                continue
            if any(token in value for token in self.policy.suspicious_substrings):
                errors.append(f"Section '{key}' contains suspicious content patterns")

        title = sections.get("title")
        if isinstance(title, str) and title.strip():
            stripped = title.strip()
            if len(stripped) > self.policy.max_title_length:
                errors.append(f"Title is too long (maximum {self.policy.max_title_length} characters)")
            if _BRACKETED.match(stripped):
                errors.append("Title appears to be a placeholder or error message")
        return errors

    def _validation_failed_sections(self, summary: str) -> Dict[str, str]:
        sections = {key: self.policy.placeholder for key in self.policy.required_sections}
        sections["title"] = VALIDATION_FAILED_TITLE
        sections["abstract"] = VALIDATION_FAILED_ABSTRACT
        if "references" in sections:
            sections["references"] = REFERENCES_PLACEHOLDER
        sections["error_note"] = (
            f"Draft validation failed: {summary}. Please review and complete all sections."
        )
        return sections

    def _ordered(self, sections: Dict[str, Any]) -> Dict[str, str]:
        return {
            key: sections[key]
            for key in self.policy.canonical_order
            if isinstance(sections.get(key), str)
        }


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())

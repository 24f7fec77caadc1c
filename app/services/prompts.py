"""
Prompt construction for draft generation.

The instruction template is owned by whoever deploys the service: it is read
from ``PROMPT_TEMPLATE_PATH`` when that file exists, otherwise the built-in
template below is used.  The pipeline treats it as an opaque prefix.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from pathlib import Path
from typing import Callable, Optional

from app.config import settings
from app.services.generation_input import GenerationInput

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Built-in template (PROMPT_TEMPLATE_PATH overrides it)
# ---------------------------------------------------------------------------

_DEFAULT_TEMPLATE = """\
You are an academic assistant helping a student draft a lab report.
Your task is to generate a structured report with all 10 required sections.

Rules:
1. Sections Title, Introduction, Objectives/Aims, Materials & Reagents, Procedures, and Results:
   - Title - Be descriptive, concise, and specific. Use the one provided on the manual.
   - Introduction - Provide background theory. State the problem and purpose. \
Structure from general to specific. Make it at least 6 sentences.
   - Objectives/Aims - Use a bulleted or numbered list. Start each point with a clear \
action verb. Ensure goals are specific and measurable.
   - Materials - List all equipment and reagents as in the manual.
   - Procedure - Write in paragraph form, past tense and passive voice, detailed \
enough for replication.
   - Results - Present raw and processed data objectively. Do not interpret the data.
   - Never invent results; use exactly what was provided.
   - If no results are provided, write "[STUDENT INPUT REQUIRED - Please add your \
experimental results and observations here]" in the Results section.

2. Sections Discussion, Recommendations, and Conclusion:
   - Do NOT write the full text. Provide guidance, specific to the experiment, on how \
the student should write them.
   - Conclusion guidance must state whether the objectives were met.

3. References:
   - Provide exactly 3 standard textbook references in APA format, relevant to the report.

4. Output format:
   - Return ONLY valid JSON with these keys: title, introduction, objectives, materials, \
procedures, results, discussion, recommendations, conclusion, references.
   - No comments, no markdown, no text outside JSON.
   - If info is missing, write "[STUDENT INPUT REQUIRED]".\
"""

PROMPT_EXCERPT_LENGTH = 1000


@dataclasses.dataclass(frozen=True)
class BuiltPrompt:
    text: str
    variation_key: str

    @property
    def excerpt(self) -> str:
        return self.text[:PROMPT_EXCERPT_LENGTH]


class PromptTemplateSource:
    """Loads the instruction template once per instance."""

    DEFAULT_TEMPLATE = _DEFAULT_TEMPLATE

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path if path is not None else settings.PROMPT_TEMPLATE_PATH)
        self._cached: Optional[str] = None

    def get(self) -> str:
        if self._cached is None:
            self._cached = self._load()
        return self._cached

    def _load(self) -> str:
        try:
            if self.path.is_file():
                content = self.path.read_text(encoding="utf-8").strip()
                if content:
                    logger.info("Prompt template loaded from %s", self.path)
                    return content
        except OSError as exc:
            logger.error("Could not read prompt template %s: %s", self.path, exc)
        logger.warning("Prompt template not found at %s, using built-in template", self.path)
        return self.DEFAULT_TEMPLATE


def format_attachments(names) -> str:
    if not names:
        return ""
    lines = "\n".join(f"{index}. {name}" for index, name in enumerate(names, start=1))
    return f"\n\nUploaded Images ({len(names)} files):\n{lines}"


def build_prompt(
    template: str,
    generation_input: GenerationInput,
    variation_key_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> BuiltPrompt:
    """Prefix the template to the per-call input payload."""
    variation_key = variation_key_factory()
    user_input = (
        f"VARIATION_KEY: {variation_key}\n"
        f"Manual Excerpt:\n{generation_input.source_text}\n\n"
        f"Student Results/Observations:\n{generation_input.observations_text}"
        f"{format_attachments(generation_input.attachment_names)}"
    )
    return BuiltPrompt(text=f"{template}\n\nInput Data:\n{user_input}", variation_key=variation_key)

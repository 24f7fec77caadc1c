"""
Top-level coordinator for draft generation.

Usage
-----
    orchestrator = GenerationOrchestrator()
    result = await orchestrator.submit(job_id, source_text, observations_text)
    if not result.ok:
        ...  # result.error_kind / result.message

``submit`` never raises for pipeline failures: every failure after input
validation schedules a best-effort ``mark_failed`` in the background and is
returned as a classified error.  The document itself is not returned; callers
read it back with ``DraftRepository.fetch``.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from app.models.database_models import ALLOWED_TRANSITIONS, DraftStatus
from app.services.audit import GenerationAuditRecorder
from app.services.content_recovery import StructuredContentRecoverer
from app.services.draft_repository import DraftRepository
from app.services.errors import (
    GenerationPipelineError,
    ValidationError,
    classify_error,
)
from app.services.generation_client import ExternalGenerationClient
from app.services.generation_input import validate_generation_input
from app.services.prompts import PromptTemplateSource, build_prompt
from app.services.response_extractor import ResponseExtractor
from app.services.section_normalizer import SectionNormalizer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result / run state
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class SubmissionResult:
    ok: bool
    job_id: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    http_status: int = 200

    @classmethod
    def success(cls, job_id: str) -> "SubmissionResult":
        return cls(ok=True, job_id=job_id)

    @classmethod
    def failure(cls, job_id: Optional[str], error: GenerationPipelineError) -> "SubmissionResult":
        return cls(
            ok=False,
            job_id=job_id,
            error_kind=error.error_kind,
            message=error.message,
            http_status=error.http_status,
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"success": True, "jobId": self.job_id}
        return {"success": False, "errorKind": self.error_kind, "message": self.message}


class _RunState:
    """Status of one run; rejects transitions out of a terminal state."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        self.status = DraftStatus.PENDING

    def advance(self, new_status: DraftStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise RuntimeError(
                f"Illegal transition for job {self.job_id}: "
                f"{self.status.value} -> {new_status.value}"
            )
        self.status = new_status


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class GenerationOrchestrator:
    """Sequences validation, generation, recovery, normalization and persistence."""

    def __init__(
        self,
        client: Optional[ExternalGenerationClient] = None,
        extractor: Optional[ResponseExtractor] = None,
        recoverer: Optional[StructuredContentRecoverer] = None,
        normalizer: Optional[SectionNormalizer] = None,
        repository: Optional[DraftRepository] = None,
        template_source: Optional[PromptTemplateSource] = None,
        audit_recorder: Optional[GenerationAuditRecorder] = None,
    ) -> None:
        self.client = client or ExternalGenerationClient()
        self.extractor = extractor or ResponseExtractor()
        self.recoverer = recoverer or StructuredContentRecoverer()
        self.normalizer = normalizer or SectionNormalizer()
        self.repository = repository or DraftRepository()
        self.template_source = template_source or PromptTemplateSource()
        self.audit_recorder = audit_recorder
        # Strong references to in-flight status corrections
        self._pending: Set[asyncio.Task] = set()

    async def submit(
        self,
        job_id: Any,
        source_text: Any,
        observations_text: Any = None,
        attachments: Any = None,
        owner_id: Optional[str] = None,
    ) -> SubmissionResult:
        try:
            generation_input = validate_generation_input(
                job_id, source_text, observations_text, attachments, owner_id
            )
        except ValidationError as exc:
            logger.warning("submit: rejected input: %s", exc.message)
            return SubmissionResult.failure(job_id if isinstance(job_id, str) else None, exc)

        job_id = generation_input.job_id
        run = _RunState(job_id)
        started = time.monotonic()
        logger.info(
            "submit: job %s (source %d chars, observations %d chars, %d attachment(s))",
            job_id,
            len(generation_input.source_text),
            len(generation_input.observations_text),
            len(generation_input.attachment_names),
        )

        try:
            await self.repository.create_or_reattach(job_id, generation_input.owner_id)
            run.advance(DraftStatus.PROCESSING)

            prompt = build_prompt(self.template_source.get(), generation_input)
            if self.audit_recorder is not None:
                await self._audit(
                    job_id, "prompt", self.audit_recorder.record_prompt, generation_input, prompt
                )

            raw = await self.client.generate(prompt.text)
            text = self.extractor.extract(raw)
            outcome = self.recoverer.recover_detailed(text)
            document = self.normalizer.normalize(outcome.sections)
            if outcome.degraded or document.is_degraded:
                logger.warning(
                    "submit: job %s produced a degraded document (strategy=%s)",
                    job_id,
                    outcome.strategy,
                )

            await self.repository.finalize(job_id, generation_input.owner_id, document)
            run.advance(DraftStatus.COMPLETED)
        except Exception as exc:
            error = classify_error(exc)
            if error is exc:
                logger.error("submit: job %s failed [%s]: %s", job_id, error.error_kind, error.message)
            else:
                logger.error("submit: job %s failed unexpectedly: %s", job_id, exc, exc_info=True)
            if run.status is DraftStatus.PROCESSING:
                run.advance(DraftStatus.FAILED)
            self._schedule_mark_failed(job_id)
            return SubmissionResult.failure(job_id, error)

        if self.audit_recorder is not None:
            await self._audit(job_id, "document", self.audit_recorder.record_document, job_id, document)

        logger.info(
            "submit: job %s completed in %.2fs", job_id, time.monotonic() - started
        )
        return SubmissionResult.success(job_id)

    async def _audit(
        self, job_id: str, stage: str, record: Callable[..., Awaitable[Any]], *args: Any
    ) -> None:
        """Audit writes are best effort; a failure is logged and the run carries on."""
        try:
            await record(*args)
        except Exception as exc:
            logger.warning("submit: %s audit for job %s failed: %s", stage, job_id, exc)

    # ------------------------------------------------------------------
    # Background status correction
    # ------------------------------------------------------------------

    def _schedule_mark_failed(self, job_id: str) -> asyncio.Task:
        task = asyncio.create_task(self.repository.mark_failed(job_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_corrections(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled status correction to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

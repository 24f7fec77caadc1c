"""
Best-effort audit copy of each generation run, keyed by job id.

Failures here are logged and never affect the job outcome.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.database_models import GenerationAudit
from app.services.generation_input import GenerationInput
from app.services.prompts import BuiltPrompt
from app.services.section_normalizer import SectionedDocument
from app.utils.helpers import generate_hash

logger = logging.getLogger(__name__)


class GenerationAuditRecorder:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if session_factory is None:
            from app.database import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory
        self._timeout = settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout

    async def record_prompt(self, generation_input: GenerationInput, prompt: BuiltPrompt) -> bool:
        return await self._upsert(
            generation_input.job_id,
            {
                "prompt_excerpt": prompt.excerpt,
                "prompt_hash": generate_hash(prompt.text),
                "variation_key": prompt.variation_key,
                "observations_text": generation_input.observations_text,
                "attachments_count": len(generation_input.attachment_names),
            },
        )

    async def record_document(self, job_id: str, document: SectionedDocument) -> bool:
        return await self._upsert(job_id, {"document_json": document.to_dict()})

    async def _upsert(self, job_id: str, values: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(self._write(job_id, values), timeout=self._timeout)
        except Exception as exc:
            logger.warning("audit: could not record generation audit for job %s: %s", job_id, exc)
            return False
        return True

    async def _write(self, job_id: str, values: Dict[str, Any]) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GenerationAudit).where(GenerationAudit.job_id == job_id)
            )
            audit = result.scalar_one_or_none()
            if audit is None:
                audit = GenerationAudit(job_id=job_id)
                session.add(audit)
            for field, value in values.items():
                setattr(audit, field, value)
            audit.updated_at = datetime.now(timezone.utc)
            await session.commit()

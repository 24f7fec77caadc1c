"""
Process-wide generation orchestrator used by the draft routes.

Tests replace it through ``app.dependency_overrides[get_orchestrator]``.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.services.audit import GenerationAuditRecorder
from app.services.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

_orchestrator: Optional[GenerationOrchestrator] = None


def get_orchestrator() -> GenerationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = GenerationOrchestrator(audit_recorder=GenerationAuditRecorder())
        logger.info("Generation orchestrator initialised")
    return _orchestrator


async def shutdown_orchestrator() -> None:
    """Let outstanding status corrections finish before the store goes away."""
    if _orchestrator is not None and _orchestrator.pending_corrections:
        logger.info("Waiting for %d pending status correction(s)", _orchestrator.pending_corrections)
        await _orchestrator.drain()

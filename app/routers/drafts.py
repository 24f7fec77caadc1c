"""
Draft generation endpoints.

Route summary
-------------
POST /api/drafts/generate           run the generation pipeline for a job
GET  /api/drafts/status?jobId=...   read a job's status and document
GET  /api/drafts/{job_id}           same lookup, job id in the path
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from app.dependencies.auth import get_optional_user_id
from app.dependencies.pipeline import get_orchestrator
from app.models.schemas import (
    DraftErrorResponse,
    DraftGenerateRequest,
    DraftGenerateResponse,
    DraftRecordSchema,
    DraftStatusResponse,
)
from app.services.errors import GenerationPipelineError
from app.services.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, error_kind: str, message: str) -> JSONResponse:
    body = DraftErrorResponse(error_kind=error_kind, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@router.post(
    "/generate",
    response_model=DraftGenerateResponse,
    responses={
        400: {"model": DraftErrorResponse},
        422: {"model": DraftErrorResponse},
        500: {"model": DraftErrorResponse},
        502: {"model": DraftErrorResponse},
        503: {"model": DraftErrorResponse},
    },
)
async def generate_draft(
    request: DraftGenerateRequest,
    user_id: Optional[str] = Depends(get_optional_user_id),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Generate a sectioned draft for ``jobId``.

    Resubmitting the same ``jobId`` restarts that job rather than creating a
    new one.  Only the job id is returned; fetch the document from
    ``GET /api/drafts/status``.
    """
    result = await orchestrator.submit(
        job_id=request.job_id,
        source_text=request.source_text,
        observations_text=request.observations_text,
        attachments=request.attachments,
        owner_id=request.owner_id or user_id,
    )
    if result.ok:
        return DraftGenerateResponse(job_id=result.job_id)
    return _error(result.http_status, result.error_kind, result.message)


async def _lookup(job_id: Optional[str], orchestrator: GenerationOrchestrator):
    if job_id is None or not job_id.strip():
        return _error(status.HTTP_400_BAD_REQUEST, "validation_error", "Job ID is required")

    try:
        record = await orchestrator.repository.fetch(job_id.strip())
    except GenerationPipelineError as exc:
        logger.error("Draft lookup failed for job %s: %s", job_id, exc.message)
        return _error(exc.http_status, exc.error_kind, exc.message)

    if record is None:
        return _error(status.HTTP_404_NOT_FOUND, "not_found", f"Draft {job_id} not found")

    return DraftStatusResponse(
        data=DraftRecordSchema(
            job_id=record.job_id,
            owner_id=record.owner_id,
            status=record.status.value,
            document=record.document.to_dict() if record.document else None,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
    )


@router.get("/status", response_model=DraftStatusResponse, response_model_by_alias=True)
async def get_draft_status(
    job_id: Optional[str] = Query(None, alias="jobId"),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Status and (once completed) the document for ``jobId``."""
    return await _lookup(job_id, orchestrator)


@router.get("/{job_id}", response_model=DraftStatusResponse, response_model_by_alias=True)
async def get_draft(
    job_id: str,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    return await _lookup(job_id, orchestrator)

"""Database and schema models for LabDraft."""
from app.models.database_models import (
    ALLOWED_TRANSITIONS,
    Draft,
    DraftStatus,
    GenerationAudit,
)
from app.models.schemas import (
    DraftErrorResponse,
    DraftGenerateRequest,
    DraftGenerateResponse,
    DraftRecordSchema,
    DraftStatusResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "ALLOWED_TRANSITIONS",
    "Draft",
    "DraftStatus",
    "GenerationAudit",
    # Pydantic schemas
    "DraftErrorResponse",
    "DraftGenerateRequest",
    "DraftGenerateResponse",
    "DraftRecordSchema",
    "DraftStatusResponse",
    "HealthCheckResponse",
]

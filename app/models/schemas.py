"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum


class DraftStatusSchema(str, Enum):
    """Draft status values for API responses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Generation Schemas
class DraftGenerateRequest(BaseModel):
    """
    Body of ``POST /api/drafts/generate``.

    Fields are loosely typed: missing or oversized values reach the pipeline's
    own input validation and come back as a structured ``validation_error``.
    """

    job_id: Optional[Any] = Field(None, alias="jobId")
    source_text: Optional[Any] = Field(None, alias="sourceText")
    observations_text: Optional[Any] = Field(None, alias="observationsText")
    attachments: Optional[Any] = None
    owner_id: Optional[str] = Field(None, alias="ownerId")

    model_config = ConfigDict(populate_by_name=True)


class DraftGenerateResponse(BaseModel):
    """Successful submission: only the job id, never the document body."""

    success: bool = True
    job_id: str = Field(..., alias="jobId")

    model_config = ConfigDict(populate_by_name=True)


class DraftErrorResponse(BaseModel):
    """Structured failure returned by every terminal error path."""

    success: bool = False
    error_kind: str = Field(..., alias="errorKind")
    message: str

    model_config = ConfigDict(populate_by_name=True)


class DraftRecordSchema(BaseModel):
    """A stored draft as returned by the read path."""

    job_id: str = Field(..., alias="jobId")
    owner_id: Optional[str] = Field(None, alias="ownerId")
    status: DraftStatusSchema
    document: Optional[Dict[str, str]] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class DraftStatusResponse(BaseModel):
    """Envelope for ``GET /api/drafts/status``."""

    success: bool = True
    data: DraftRecordSchema


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    generation_service: str
    timestamp: datetime

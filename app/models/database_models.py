"""
SQLAlchemy ORM models for the LabDraft database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Enum as SQLEnum,
    JSON,
)
from sqlalchemy.sql import func
import enum

from app.database import Base


# Enums
class DraftStatus(str, enum.Enum):
    """Lifecycle of a generation job (one row per job id)."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DraftStatus.COMPLETED, DraftStatus.FAILED)


# Transitions allowed within a single run.  A resubmission of the same job id
# starts a new run and goes back to PROCESSING from any state.
ALLOWED_TRANSITIONS = {
    DraftStatus.PENDING: frozenset({DraftStatus.PROCESSING}),
    DraftStatus.PROCESSING: frozenset({DraftStatus.COMPLETED, DraftStatus.FAILED}),
    DraftStatus.COMPLETED: frozenset(),
    DraftStatus.FAILED: frozenset(),
}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Models
class Draft(Base):
    """A generation job and, once completed, its serialized sectioned document."""

    __tablename__ = "drafts"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(255), nullable=False, unique=True, index=True)
    # Owner (nullable for anonymous jobs)
    user_id = Column(String(255), nullable=True, index=True)
    status = Column(
        SQLEnum(DraftStatus, name="draftstatus", values_callable=_enum_values),
        nullable=False,
        default=DraftStatus.PENDING,
    )
    draft = Column(Text, nullable=True)  # JSON-serialized SectionedDocument
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class GenerationAudit(Base):
    """Audit copy of what was sent to (and produced by) the generation service."""

    __tablename__ = "generation_audits"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(255), nullable=False, unique=True, index=True)
    prompt_excerpt = Column(Text, nullable=True)  # first 1000 chars
    prompt_hash = Column(String(64), nullable=True)
    variation_key = Column(String(64), nullable=True)
    observations_text = Column(Text, nullable=True)
    attachments_count = Column(Integer, nullable=False, default=0)
    document_json = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

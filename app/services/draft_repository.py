"""
Draft persistence with idempotent, retryable writes keyed by job id.

Public API
----------
DraftRepository.create_or_reattach(job_id, owner_id) -> JobHandle
DraftRepository.finalize(job_id, owner_id, document)  -> int (rows updated)
DraftRepository.mark_failed(job_id)                   -> bool (best effort)
DraftRepository.fetch(job_id)                         -> Optional[DraftRecord]

The backing store sits behind the small ``DraftStore`` protocol;
``SqlAlchemyDraftStore`` is the production implementation.  Each operation
has its own retry budget, separate from the generation call's.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.models.database_models import Draft, DraftStatus
from app.services.errors import PersistenceError
from app.services.section_normalizer import SectionedDocument
from app.utils.retry import exponential_delays, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class JobHandle:
    job_id: str
    owner_id: Optional[str]
    status: DraftStatus
    reattached: bool
    previous_status: Optional[DraftStatus] = None


@dataclasses.dataclass(frozen=True)
class DraftRecord:
    job_id: str
    owner_id: Optional[str]
    status: DraftStatus
    document: Optional[SectionedDocument]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DraftStore(Protocol):
    async def find_status(self, job_id: str) -> Optional[DraftStatus]:
        ...

    async def insert(self, job_id: str, owner_id: Optional[str], status: DraftStatus) -> bool:
        """Insert a row; False when a row for ``job_id`` already exists."""
        ...

    async def set_status(self, job_id: str, status: DraftStatus) -> int:
        ...

    async def write_document(self, job_id: str, owner_id: Optional[str], payload: str) -> int:
        """Store the document and mark completed; returns affected row count."""
        ...

    async def fetch(self, job_id: str) -> Optional[DraftRecord]:
        ...


class SqlAlchemyDraftStore:
    """``drafts`` table access through short-lived async sessions."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None) -> None:
        if session_factory is None:
            from app.database import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def find_status(self, job_id: str) -> Optional[DraftStatus]:
        async with self._session_factory() as session:
            result = await session.execute(select(Draft.status).where(Draft.job_id == job_id))
            return result.scalar_one_or_none()

    async def insert(self, job_id: str, owner_id: Optional[str], status: DraftStatus) -> bool:
        now = _utcnow()
        async with self._session_factory() as session:
            session.add(
                Draft(
                    job_id=job_id,
                    user_id=owner_id,
                    status=status,
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def set_status(self, job_id: str, status: DraftStatus) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Draft)
                .where(Draft.job_id == job_id)
                .values(status=status, updated_at=_utcnow())
            )
            await session.commit()
            return result.rowcount or 0

    async def write_document(self, job_id: str, owner_id: Optional[str], payload: str) -> int:
        stmt = update(Draft).where(Draft.job_id == job_id)
        if owner_id is not None:
            stmt = stmt.where(Draft.user_id == owner_id)
        else:
            stmt = stmt.where(Draft.user_id.is_(None))

        async with self._session_factory() as session:
            result = await session.execute(
                stmt.values(draft=payload, status=DraftStatus.COMPLETED, updated_at=_utcnow())
            )
            await session.commit()
            return result.rowcount or 0

    async def fetch(self, job_id: str) -> Optional[DraftRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(Draft).where(Draft.job_id == job_id))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return DraftRecord(
                job_id=row.job_id,
                owner_id=row.user_id,
                status=DraftStatus(row.status),
                document=_load_document(row.job_id, row.draft),
                created_at=row.created_at,
                updated_at=row.updated_at,
            )


def _load_document(job_id: str, payload: Optional[str]) -> Optional[SectionedDocument]:
    if not payload:
        return None
    try:
        return SectionedDocument.from_json(payload)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("fetch: stored draft for job %s is not a valid document: %s", job_id, exc)
        return None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class DraftRepository:
    """Lifecycle operations on a job's row, each with its own retry budget."""

    REATTACH_MAX_ATTEMPTS: int = settings.REATTACH_MAX_ATTEMPTS
    REATTACH_BASE_DELAY: float = settings.REATTACH_BASE_DELAY_SECONDS
    FINALIZE_MAX_ATTEMPTS: int = settings.FINALIZE_MAX_ATTEMPTS
    FINALIZE_BASE_DELAY: float = settings.FINALIZE_BASE_DELAY_SECONDS
    MARK_FAILED_MAX_ATTEMPTS: int = settings.MARK_FAILED_MAX_ATTEMPTS
    MARK_FAILED_BASE_DELAY: float = settings.MARK_FAILED_BASE_DELAY_SECONDS
    STORE_TIMEOUT: float = settings.STORE_TIMEOUT_SECONDS

    def __init__(
        self,
        store: Optional[DraftStore] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        store_timeout: Optional[float] = None,
    ) -> None:
        self.store: DraftStore = store or SqlAlchemyDraftStore()
        self._sleep = sleep
        self._store_timeout = self.STORE_TIMEOUT if store_timeout is None else store_timeout

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self._store_timeout)

    # ------------------------------------------------------------------
    # create / reattach
    # ------------------------------------------------------------------

    async def create_or_reattach(self, job_id: str, owner_id: Optional[str]) -> JobHandle:
        """
        Reuse the row for ``job_id`` if there is one (restart), otherwise
        insert it as PENDING.  Either way the row ends up PROCESSING.
        """

        async def _attempt(attempt: int) -> JobHandle:
            existing = await self._bounded(self.store.find_status(job_id))
            reattached = existing is not None
            if not reattached:
                inserted = await self._bounded(
                    self.store.insert(job_id, owner_id, DraftStatus.PENDING)
                )
                # A concurrent submission created the row first.
                reattached = not inserted
            await self._bounded(self.store.set_status(job_id, DraftStatus.PROCESSING))
            return JobHandle(
                job_id=job_id,
                owner_id=owner_id,
                status=DraftStatus.PROCESSING,
                reattached=reattached,
                previous_status=existing,
            )

        try:
            handle = await retry_async(
                _attempt,
                delays=exponential_delays(self.REATTACH_BASE_DELAY, self.REATTACH_MAX_ATTEMPTS),
                label=f"create_or_reattach[{job_id}]",
                sleep=self._sleep,
            )
        except Exception as exc:
            raise PersistenceError(f"Failed to create or reattach draft {job_id}: {exc}") from exc

        if handle.reattached:
            logger.info(
                "Draft %s reattached (previous status %s), now processing",
                job_id,
                handle.previous_status.value if handle.previous_status else "unknown",
            )
        else:
            logger.info("Draft %s created, now processing", job_id)
        return handle

    # ------------------------------------------------------------------
    # finalize
    # ------------------------------------------------------------------

    async def finalize(
        self, job_id: str, owner_id: Optional[str], document: SectionedDocument
    ) -> int:
        """
        Write the document and mark the job completed.  A zero-row update is
        logged as a warning and still counts as success.
        """
        try:
            payload = document.to_json()
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Draft for job {job_id} is not serializable: {exc}") from exc

        async def _attempt(attempt: int) -> int:
            return await self._bounded(self.store.write_document(job_id, owner_id, payload))

        try:
            rows = await retry_async(
                _attempt,
                delays=exponential_delays(self.FINALIZE_BASE_DELAY, self.FINALIZE_MAX_ATTEMPTS),
                label=f"finalize[{job_id}]",
                sleep=self._sleep,
            )
        except Exception as exc:
            raise PersistenceError(
                f"Failed to update draft after {self.FINALIZE_MAX_ATTEMPTS} attempts: {exc}"
            ) from exc

        if rows == 0:
            logger.warning(
                "finalize: no draft row matched job %s (owner=%s); it may have been deleted",
                job_id,
                owner_id or "anonymous",
            )
        else:
            logger.info("finalize: draft %s completed (%d chars)", job_id, len(payload))
        return rows

    # ------------------------------------------------------------------
    # mark failed
    # ------------------------------------------------------------------

    async def mark_failed(self, job_id: str) -> bool:
        """Best effort: retries, then logs and gives up without raising."""

        async def _attempt(attempt: int) -> int:
            return await self._bounded(self.store.set_status(job_id, DraftStatus.FAILED))

        try:
            await retry_async(
                _attempt,
                delays=exponential_delays(
                    self.MARK_FAILED_BASE_DELAY, self.MARK_FAILED_MAX_ATTEMPTS
                ),
                label=f"mark_failed[{job_id}]",
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.error("mark_failed: could not mark draft %s as failed: %s", job_id, exc)
            return False
        logger.info("Draft %s marked failed", job_id)
        return True

    # ------------------------------------------------------------------
    # read path
    # ------------------------------------------------------------------

    async def fetch(self, job_id: str) -> Optional[DraftRecord]:
        try:
            return await self._bounded(self.store.fetch(job_id))
        except Exception as exc:
            raise PersistenceError(f"Failed to load draft {job_id}: {exc}") from exc

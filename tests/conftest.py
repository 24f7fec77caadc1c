"""
Shared fixtures for LabDraft backend tests.

Store-backed tests run against a throwaway SQLite file through aiosqlite;
set TEST_DATABASE_URL to point them at another database (e.g. a PostgreSQL
test instance).  Tables are created per test and emptied afterwards.

The generation service is never called: transports are scripted fakes and
retry sleeps are recorded instead of awaited.
"""
from __future__ import annotations

import json
import os
import tempfile
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "labdraft_test.db"),
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["GEMINI_API_KEY"] = "test-api-key"

from app.database import Base, get_db  # noqa: E402
from app.dependencies.pipeline import get_orchestrator  # noqa: E402
from app.main import app  # noqa: E402
from app.models.database_models import Draft, GenerationAudit  # noqa: E402
from app.services.audit import GenerationAuditRecorder  # noqa: E402
from app.services.draft_repository import DraftRepository, SqlAlchemyDraftStore  # noqa: E402
from app.services.generation_client import (  # noqa: E402
    ExternalGenerationClient,
    RawCandidateResponse,
)
from app.services.orchestrator import GenerationOrchestrator  # noqa: E402
from app.services.prompts import PromptTemplateSource  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class RecordingSleep:
    """Stands in for asyncio.sleep; remembers every requested delay."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeTransport:
    """
    Scripted generation transport.  Each call pops the next scripted item:
    an exception instance is raised, anything else is returned.  The last
    item repeats once the script runs out.
    """

    def __init__(self, name: str, script: List[Any]) -> None:
        self.name = name
        self.script = list(script)
        self.prompts: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def send(self, prompt: str):
        self.prompts.append(prompt)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item


def candidate_response(text: str, finish_reason: str = "STOP") -> RawCandidateResponse:
    return RawCandidateResponse(
        payload={
            "candidates": [
                {
                    "content": {"parts": [{"text": text}], "role": "model"},
                    "finishReason": finish_reason,
                }
            ]
        }
    )


VALID_REPORT: Dict[str, str] = {
    "title": "Determination of the Acid Dissociation Constant of Acetic Acid",
    "introduction": "Weak acids only partially dissociate in water.",
    "objectives": "1. Measure the pH of acetic acid solutions.\n2. Calculate Ka.",
    "materials": "pH meter, burette, 0.1 M acetic acid, 0.1 M NaOH",
    "procedures": "The pH meter was calibrated and the acid was titrated.",
    "results": "[STUDENT INPUT REQUIRED - Please add your experimental results and observations here]",
    "discussion": "Compare the measured Ka with the literature value.",
    "recommendations": "Suggest improvements to the calibration step.",
    "conclusion": "State whether the Ka was determined within error.",
    "references": "Atkins, P. (2018). Physical Chemistry. Oxford University Press.",
}


def report_text(sections: Optional[Dict[str, str]] = None) -> str:
    return "```json\n" + json.dumps(sections or VALID_REPORT) + "\n```"


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """
    Session factory bound to the test database.  Tables are created before
    the test and every row is deleted afterwards.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.execute(delete(GenerationAudit))
        await conn.execute(delete(Draft))

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session for each test."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def primary_transport() -> FakeTransport:
    return FakeTransport("sdk", [candidate_response(report_text())])


@pytest.fixture
def fallback_transport() -> FakeTransport:
    return FakeTransport("direct_http", [candidate_response(report_text())])


@pytest.fixture
def repository(session_factory: async_sessionmaker, recording_sleep: RecordingSleep) -> DraftRepository:
    return DraftRepository(SqlAlchemyDraftStore(session_factory), sleep=recording_sleep)


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker,
    repository: DraftRepository,
    primary_transport: FakeTransport,
    fallback_transport: FakeTransport,
    recording_sleep: RecordingSleep,
    tmp_path,
) -> GenerationOrchestrator:
    client = ExternalGenerationClient(
        primary_transport, fallback_transport, timeout=5.0, sleep=recording_sleep
    )
    return GenerationOrchestrator(
        client=client,
        repository=repository,
        template_source=PromptTemplateSource(str(tmp_path / "missing_template.txt")),
        audit_recorder=GenerationAuditRecorder(session_factory),
    )


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, orchestrator: GenerationOrchestrator
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB session and the
    orchestrator overridden for the test.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await orchestrator.drain()
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {"X-User-Id": "test-user-1"}

AUTH_HEADERS_USER2 = {"X-User-Id": "test-user-2"}

"""End-to-end tests for GenerationOrchestrator.submit against the test store."""
import json

import pytest
from sqlalchemy import func, select

from app.models.database_models import Draft, DraftStatus, GenerationAudit
from app.services.audit import GenerationAuditRecorder
from app.services.errors import TransportError
from app.services.generation_input import NOT_PROVIDED_OBSERVATIONS
from app.services.orchestrator import GenerationOrchestrator
from app.services.section_normalizer import (
    PLACEHOLDER,
    VALIDATION_FAILED_TITLE,
    SectionedDocument,
)

from tests.conftest import VALID_REPORT, FakeTransport, candidate_response, report_text

SOURCE_TEXT = "Titrate 25 mL of acetic acid with 0.1 M NaOH to the endpoint."


@pytest.mark.asyncio
async def test_successful_submission_returns_only_job_id(orchestrator: GenerationOrchestrator):
    result = await orchestrator.submit("job-ok", SOURCE_TEXT, "pH rose to 8.7", owner_id="u1")

    assert result.ok
    assert result.to_dict() == {"success": True, "jobId": "job-ok"}

    record = await orchestrator.repository.fetch("job-ok")
    assert record.status == DraftStatus.COMPLETED
    assert record.owner_id == "u1"
    assert record.document.title == VALID_REPORT["title"]


@pytest.mark.asyncio
async def test_missing_observations_use_not_provided_marker(
    orchestrator: GenerationOrchestrator, primary_transport: FakeTransport
):
    await orchestrator.submit("job-a", SOURCE_TEXT)

    prompt = primary_transport.prompts[0]
    assert f"Student Results/Observations:\n{NOT_PROVIDED_OBSERVATIONS}" in prompt
    assert f"Manual Excerpt:\n{SOURCE_TEXT}" in prompt
    assert "VARIATION_KEY: " in prompt


@pytest.mark.asyncio
async def test_attachment_names_are_listed_in_prompt(
    orchestrator: GenerationOrchestrator, primary_transport: FakeTransport
):
    await orchestrator.submit(
        "job-img", SOURCE_TEXT, attachments=[{"name": "curve.png"}, "setup.jpg", {"size": 3}]
    )
    prompt = primary_transport.prompts[0]
    assert "Uploaded Images (2 files):\n1. curve.png\n2. setup.jpg" in prompt


@pytest.mark.asyncio
async def test_validation_error_creates_no_job(orchestrator: GenerationOrchestrator, db_session):
    result = await orchestrator.submit("job-bad", "   ")

    assert not result.ok
    assert result.error_kind == "validation_error"
    assert result.http_status == 400
    count = await db_session.execute(select(func.count()).select_from(Draft))
    assert count.scalar_one() == 0
    assert orchestrator.pending_corrections == 0


@pytest.mark.asyncio
async def test_oversized_source_text_is_rejected(orchestrator: GenerationOrchestrator):
    result = await orchestrator.submit("job-big", "x" * 50_001)
    assert result.error_kind == "validation_error"
    assert "50,000" in result.message


@pytest.mark.asyncio
async def test_resubmission_keeps_one_row_with_second_document(
    orchestrator: GenerationOrchestrator, primary_transport: FakeTransport, db_session
):
    primary_transport.script = [
        candidate_response(report_text({**VALID_REPORT, "title": "First Run Title"})),
        candidate_response(report_text({**VALID_REPORT, "title": "Second Run Title"})),
    ]

    assert (await orchestrator.submit("job-twice", SOURCE_TEXT)).ok
    assert (await orchestrator.submit("job-twice", SOURCE_TEXT)).ok

    count = await db_session.execute(
        select(func.count()).select_from(Draft).where(Draft.job_id == "job-twice")
    )
    assert count.scalar_one() == 1
    record = await orchestrator.repository.fetch("job-twice")
    assert record.status == DraftStatus.COMPLETED
    assert record.document.title == "Second Run Title"


@pytest.mark.asyncio
async def test_policy_block_short_circuits_and_marks_failed(
    orchestrator: GenerationOrchestrator,
    primary_transport: FakeTransport,
    fallback_transport: FakeTransport,
    recording_sleep,
):
    primary_transport.script = [candidate_response("refused", finish_reason="SAFETY")]

    result = await orchestrator.submit("job-blocked", SOURCE_TEXT)
    await orchestrator.drain()

    assert result.error_kind == "content_blocked"
    assert result.http_status == 422
    assert primary_transport.calls == 1
    assert fallback_transport.calls == 0
    assert recording_sleep.delays == []
    assert (await orchestrator.repository.fetch("job-blocked")).status == DraftStatus.FAILED


@pytest.mark.asyncio
async def test_transport_exhaustion_surfaces_service_unavailable(
    orchestrator: GenerationOrchestrator,
    primary_transport: FakeTransport,
    fallback_transport: FakeTransport,
):
    primary_transport.script = [TransportError("sdk down")]
    fallback_transport.script = [TransportError("wire down")]

    result = await orchestrator.submit("job-down", SOURCE_TEXT)
    await orchestrator.drain()

    assert result.to_dict() == {
        "success": False,
        "errorKind": "service_unavailable",
        "message": "wire down",
    }
    assert fallback_transport.calls == 2
    assert (await orchestrator.repository.fetch("job-down")).status == DraftStatus.FAILED


@pytest.mark.asyncio
async def test_malformed_envelope_is_classified(
    orchestrator: GenerationOrchestrator, primary_transport: FakeTransport
):
    from app.services.generation_client import RawCandidateResponse

    primary_transport.script = [RawCandidateResponse(payload={"candidates": []})]

    result = await orchestrator.submit("job-malformed", SOURCE_TEXT)
    await orchestrator.drain()

    assert result.error_kind == "malformed_response"
    assert result.http_status == 502


@pytest.mark.asyncio
async def test_prose_output_still_completes_with_degraded_document(
    orchestrator: GenerationOrchestrator, primary_transport: FakeTransport
):
    primary_transport.script = [candidate_response("Sorry, here is some prose instead.")]

    result = await orchestrator.submit("job-prose", SOURCE_TEXT)

    assert result.ok
    document = (await orchestrator.repository.fetch("job-prose")).document
    assert document.is_degraded
    assert document["introduction"] == PLACEHOLDER


@pytest.mark.asyncio
async def test_suspicious_content_completes_with_validation_failed_document(
    orchestrator: GenerationOrchestrator, primary_transport: FakeTransport
):
    primary_transport.script = [
        candidate_response(report_text({**VALID_REPORT, "results": "undefined"}))
    ]

    assert (await orchestrator.submit("job-suspicious", SOURCE_TEXT)).ok
    document = (await orchestrator.repository.fetch("job-suspicious")).document
    assert document.title == VALIDATION_FAILED_TITLE


@pytest.mark.asyncio
async def test_unexpected_error_is_internal_error(orchestrator: GenerationOrchestrator):
    class BrokenRecoverer:
        def recover_detailed(self, text):
            raise KeyError("boom")

    orchestrator.recoverer = BrokenRecoverer()

    result = await orchestrator.submit("job-internal", SOURCE_TEXT)
    await orchestrator.drain()

    assert result.error_kind == "internal_error"
    assert result.http_status == 500
    assert (await orchestrator.repository.fetch("job-internal")).status == DraftStatus.FAILED


@pytest.mark.asyncio
async def test_audit_copy_recorded(orchestrator: GenerationOrchestrator, db_session):
    await orchestrator.submit("job-audit", SOURCE_TEXT, "Observed colour change", ["a.png"])

    result = await db_session.execute(
        select(GenerationAudit).where(GenerationAudit.job_id == "job-audit")
    )
    audit = result.scalar_one()
    assert len(audit.prompt_excerpt) == 1000
    assert len(audit.prompt_hash) == 64
    assert audit.observations_text == "Observed colour change"
    assert audit.attachments_count == 1
    assert audit.document_json["title"] == VALID_REPORT["title"]
    assert json.dumps(audit.document_json)


class ExplodingAuditRecorder:
    def __init__(self, fail_on: str) -> None:
        self.fail_on = fail_on

    async def record_prompt(self, generation_input, prompt):
        if self.fail_on == "prompt":
            raise RuntimeError("audit exploded")
        return True

    async def record_document(self, job_id, document):
        if self.fail_on == "document":
            raise RuntimeError("audit exploded")
        return True


@pytest.mark.asyncio
@pytest.mark.parametrize("fail_on", ["prompt", "document"])
async def test_audit_failure_does_not_affect_outcome(
    orchestrator: GenerationOrchestrator, fail_on: str
):
    orchestrator.audit_recorder = ExplodingAuditRecorder(fail_on)

    result = await orchestrator.submit("job-audit-broken", SOURCE_TEXT)
    await orchestrator.drain()

    assert result.ok
    assert orchestrator.pending_corrections == 0
    record = await orchestrator.repository.fetch("job-audit-broken")
    assert record.status == DraftStatus.COMPLETED
    assert record.document.title == VALID_REPORT["title"]


@pytest.mark.asyncio
async def test_audit_recorder_swallows_unexpected_errors():
    class BrokenSession:
        async def __aenter__(self):
            raise RuntimeError("no session")

        async def __aexit__(self, *exc_info):
            return False

    recorder = GenerationAuditRecorder(lambda: BrokenSession(), timeout=1.0)
    document = SectionedDocument.from_mapping(VALID_REPORT)

    assert await recorder.record_document("job-x", document) is False

"""Tests for the analysis runner: emergency gate, storage hand-off and audit events."""

import json
import threading

import pytest
from pydantic import ValidationError

from clinical_scribe.llm.fallback import PipelineCancelled, TransientModelError
from clinical_scribe.pipeline.models import (
    AnalysisCompleted,
    AnalyzeRequest,
    EmergencyAcknowledgmentRequired,
    Severity,
)
from clinical_scribe.config.settings import Settings
from clinical_scribe.pipeline.orchestrator import PipelineError
from clinical_scribe.services.analysis_runner import AnalysisRunner
from clinical_scribe.storage.sessions import AuditEvent

SUICIDAL_TRANSCRIPT = (
    "Patient: I've been feeling suicidal for the past week and can't sleep. "
    "Doctor: Thank you for telling me. Are you safe right now?"
)
SUICIDAL_EMERGENCY_RESPONSE = json.dumps({
    "hasEmergency": True,
    "detectedConditions": ["suicidal ideation"],
    "severity": "critical",
    "recommendation": "Immediate mental health crisis evaluation",
})


@pytest.fixture
def suicidal_runner(memory_store, make_backend, settings, llm_settings):
    backend = make_backend({"emergency": SUICIDAL_EMERGENCY_RESPONSE})
    runner = AnalysisRunner(
        store=memory_store, backend=backend, settings=settings, llm_settings=llm_settings,
    )
    return runner, backend


class TestEmergencyGate:
    """Unacknowledged emergencies stop before any documentation stage."""

    @pytest.mark.parametrize("acknowledge", [False, None])
    def test_acknowledgment_required(self, suicidal_runner, memory_store, acknowledge):
        runner, backend = suicidal_runner

        outcome = runner.analyze({"transcript": SUICIDAL_TRANSCRIPT, "acknowledge_emergency": acknowledge})

        assert isinstance(outcome, EmergencyAcknowledgmentRequired)
        assert outcome.requires_acknowledgment is True
        assert outcome.severity is Severity.CRITICAL
        assert outcome.detected_conditions == ["suicidal ideation"]
        assert backend.stages_called == ["emergency"]
        assert memory_store.get_last() is None

    def test_gate_holds_when_model_is_down(self, memory_store, make_backend, settings, llm_settings):
        backend = make_backend(failures={
            model: TransientModelError("quota") for model in llm_settings.model_fallback_order
        })
        runner = AnalysisRunner(store=memory_store, backend=backend, settings=settings, llm_settings=llm_settings)

        outcome = runner.analyze({"transcript": SUICIDAL_TRANSCRIPT, "acknowledge_emergency": False})

        assert isinstance(outcome, EmergencyAcknowledgmentRequired)
        assert outcome.detected_conditions == ["suicidal"]
        assert outcome.severity is Severity.HIGH

    def test_emergency_check_respects_deadline(self, memory_store, make_backend, llm_settings):
        backend = make_backend({"emergency": SUICIDAL_EMERGENCY_RESPONSE})
        settings = Settings(database_url="sqlite://", stage_timeout_seconds=0.0)
        runner = AnalysisRunner(store=memory_store, backend=backend, settings=settings, llm_settings=llm_settings)

        outcome = runner.analyze({"transcript": SUICIDAL_TRANSCRIPT})

        assert isinstance(outcome, EmergencyAcknowledgmentRequired)
        assert outcome.detected_conditions == ["suicidal"]
        assert backend.calls == []

    def test_acknowledged_emergency_proceeds(self, suicidal_runner, memory_store):
        runner, backend = suicidal_runner

        outcome = runner.analyze({"transcript": SUICIDAL_TRANSCRIPT, "acknowledge_emergency": True})

        assert isinstance(outcome, AnalysisCompleted)
        assert outcome.result.has_emergency
        assert outcome.result.compliance_banner.startswith("⚠️ URGENT")
        assert backend.stages_called.count("emergency") == 1
        assert memory_store.get_by_id(outcome.session_id).has_emergency


class TestAnalyze:
    """Completed runs are stored once and audited."""

    def test_completed_run(self, runner, memory_store, uri_transcript):
        outcome = runner.analyze(AnalyzeRequest(transcript=uri_transcript))

        assert isinstance(outcome, AnalysisCompleted)
        assert outcome.result.session_id == outcome.session_id
        assert outcome.result.created_at is not None
        assert outcome.processing_time_ms >= 0

        stored = memory_store.get_by_id(outcome.session_id)
        assert stored == outcome.result
        assert len(memory_store.list_sessions()) == 1

    def test_request_audited(self, runner, memory_store, uri_transcript):
        runner.analyze({"transcript": uri_transcript})

        events = memory_store.audit_events(AuditEvent.ANALYSIS_REQUESTED)
        assert len(events) == 1
        assert events[0]["details"]["transcript_length"] == len(uri_transcript)
        assert events[0]["details"]["has_emergency"] is False
        assert events[0]["details"]["severity"] == "low"

    def test_metrics_saved(self, runner, memory_store, uri_transcript):
        runner.analyze({"transcript": uri_transcript})
        stats = memory_store.get_stats()
        assert stats["total_sessions"] == 1
        assert stats["average_metrics"]["avg_diagnosis_codes"] == 1.0

    def test_fresh_executor_per_run(self, memory_store, make_backend, settings, llm_settings, uri_transcript):
        backend = make_backend(failures={"model-a": TransientModelError("quota")})
        runner = AnalysisRunner(store=memory_store, backend=backend, settings=settings, llm_settings=llm_settings)

        runner.analyze({"transcript": uri_transcript})
        first_run_calls = len(backend.calls)
        runner.analyze({"transcript": uri_transcript})

        # The second run starts again at model-a
        assert backend.models_called[first_run_calls] == "model-a"

    @pytest.mark.parametrize("transcript", ["too short", "x" * 5001, "         "])
    def test_invalid_request_rejected_before_model_call(self, runner, backend, transcript):
        with pytest.raises(ValidationError):
            runner.analyze({"transcript": transcript})
        assert backend.calls == []

    def test_invalid_request_audited(self, runner, memory_store):
        with pytest.raises(ValidationError):
            runner.analyze({"transcript": "x" * 5001})

        events = memory_store.audit_events(AuditEvent.ANALYSIS_ERROR)
        assert len(events) == 1
        assert events[0]["details"]["error_type"] == "ValidationError"
        assert events[0]["details"]["transcript_length"] == 5001
        assert "transcript" in events[0]["details"]["error"]
        assert "xxxxxxxxxx" not in events[0]["details"]["error"]


class TestAnalyzeErrors:
    """Terminal failures are audited and re-raised."""

    def test_pipeline_error_audited(self, memory_store, make_backend, settings, llm_settings, uri_transcript):
        backend = make_backend({"note_generation": "no note today"})
        runner = AnalysisRunner(store=memory_store, backend=backend, settings=settings, llm_settings=llm_settings)

        with pytest.raises(PipelineError):
            runner.analyze({"transcript": uri_transcript})

        events = memory_store.audit_events(AuditEvent.ANALYSIS_ERROR)
        assert len(events) == 1
        assert events[0]["details"]["stage"] == "note_generation"
        assert memory_store.get_last() is None

    def test_response_text_kept_out_of_audit(self, memory_store, make_backend, settings, llm_settings, uri_transcript):
        backend = make_backend({"note_generation": "Patient John Q Public SSN 123-45-6789 says hi"})
        runner = AnalysisRunner(store=memory_store, backend=backend, settings=settings, llm_settings=llm_settings)

        with pytest.raises(PipelineError) as exc_info:
            runner.analyze({"transcript": uri_transcript})

        assert "123-45-6789" not in str(exc_info.value)
        details = memory_store.audit_events(AuditEvent.ANALYSIS_ERROR)[0]["details"]
        assert "123-45-6789" not in str(details)

    def test_cancelled_run_stops(self, runner, backend, uri_transcript):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(PipelineCancelled):
            runner.analyze({"transcript": uri_transcript}, cancel_event=cancel)

        assert backend.calls == []

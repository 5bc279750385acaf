"""Unit tests for the documentation stages and their parse-failure policy."""

import dataclasses
import json

import pytest
from structlog.testing import capture_logs

from clinical_scribe.llm.extraction import ExtractionOutcome, ParseFailure
from clinical_scribe.llm.fallback import ModelFallbackExecutor
from clinical_scribe.pipeline.models import (
    BillingCodes,
    DiagnosisCode,
    Problem,
    SoapNote,
    SpeakerIdentification,
)
from clinical_scribe.pipeline.stages import (
    BILLING_STAGE,
    DIAGNOSIS_STAGE,
    PROBLEM_STAGE,
    SOAP_NOTE_STAGE,
    SPEAKER_STAGE,
    STAGE_POLICY,
    STAGES,
    StageInputs,
    StageValidationError,
    run_stage,
)
from clinical_scribe.pipeline.stages.billing import DEFAULT_HINT, DEFAULT_LEVEL
from clinical_scribe.pipeline.trace import TraceRecorder

NOTE = SoapNote(
    subjective="Cough and fever",
    objective="Temp 100.2F",
    assessment="Viral upper respiratory infection",
    plan="Rest and fluids",
)
PROBLEMS = [Problem(description="Acute upper respiratory infection", rationale="Cough, fever")]


@pytest.fixture
def inputs(uri_transcript) -> StageInputs:
    return StageInputs(
        transcript=uri_transcript,
        outputs={
            SOAP_NOTE_STAGE.name: NOTE,
            PROBLEM_STAGE.name: PROBLEMS,
        },
    )


def run_with(make_backend, stage_def, inputs, response):
    executor = ModelFallbackExecutor(["model-a"], make_backend({stage_def.name: response}))
    trace = TraceRecorder()
    return run_stage(stage_def, inputs, executor, trace), trace


class TestStageTable:
    """Tests for stage order and failure policy."""

    def test_stage_order(self):
        assert [s.name for s in STAGES] == [
            "speaker_identification",
            "note_generation",
            "problem_extraction",
            "diagnosis_coding",
            "billing_coding",
        ]

    def test_only_note_generation_terminates(self):
        assert STAGE_POLICY == {
            "speaker_identification": "default",
            "note_generation": "terminate",
            "problem_extraction": "default",
            "diagnosis_coding": "default",
            "billing_coding": "default",
        }

    def test_technique_labels(self):
        assert [s.technique for s in STAGES] == [
            "Chain-of-Thought",
            "Few-Shot Prompting",
            "Zero-Shot Chain-of-Thought",
            "Heuristic Prompting",
            "Chain-of-Thought",
        ]


class TestRunStage:
    """Tests for the shared stage runner."""

    def test_records_start_and_complete_entries(self, make_backend, inputs):
        outcome, trace = run_with(make_backend, PROBLEM_STAGE, inputs, json.dumps([
            {"description": "URI", "rationale": "cough"},
        ]))

        steps = [e.step for e in trace.entries]
        assert steps == ["Problem Extraction", "Problem Extraction Complete"]
        start, complete = trace.entries
        assert start.technique == "Zero-Shot Chain-of-Thought"
        assert start.prompt is None
        assert complete.prompt is not None
        assert complete.response == outcome.raw_response
        assert complete.details == "Found 1 problems"

    def test_outcome_kind_reflects_repair(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, PROBLEM_STAGE, inputs, 'Problems: [{"description": "URI"},]')
        assert outcome.outcome is ExtractionOutcome.REPAIRED
        assert outcome.model == "model-a"

    def test_prompt_built_from_parsed_prior_output(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, DIAGNOSIS_STAGE, inputs, "[]")
        assert "Acute upper respiratory infection" in outcome.prompt

    def test_coerce_error_uses_default(self, make_backend, inputs):
        def broken_coerce(value, stage_inputs):
            raise TypeError("unexpected structure")

        stage_def = dataclasses.replace(PROBLEM_STAGE, coerce=broken_coerce)
        outcome, trace = run_with(make_backend, stage_def, inputs, "[]")

        assert outcome.value == []
        assert outcome.outcome is ExtractionOutcome.DEFAULT
        assert outcome.validation_issues
        assert trace.entries[-1].step == "Problem Extraction Complete"

    def test_coerce_error_propagates_without_default(self, make_backend, inputs):
        def broken_coerce(value, stage_inputs):
            raise TypeError("unexpected structure")

        stage_def = dataclasses.replace(PROBLEM_STAGE, coerce=broken_coerce, on_parse_failure=None)
        with pytest.raises(TypeError):
            run_with(make_backend, stage_def, inputs, "[]")

    def test_response_text_kept_out_of_warning_logs(self, make_backend, inputs):
        response = "Patient John Q Public SSN 123-45-6789 says hi"
        with capture_logs() as logs:
            run_with(make_backend, PROBLEM_STAGE, inputs, response)

        loud = [entry for entry in logs if entry["log_level"] != "debug"]
        assert any(entry["event"] == "stage_parse_failed_using_default" for entry in loud)
        assert all("123-45-6789" not in str(entry) for entry in loud)


class TestSpeakerStage:
    """Tests for speaker identification."""

    def test_parse_failure_uses_generic_labels(self, make_backend, inputs, uri_transcript):
        outcome, _ = run_with(make_backend, SPEAKER_STAGE, inputs, "no idea who is talking")

        assert outcome.outcome is ExtractionOutcome.DEFAULT
        value: SpeakerIdentification = outcome.value
        assert value.speakers.doctor == "Doctor"
        assert value.speakers.patient == "Patient"
        assert value.confidence == "low"
        assert value.annotated_transcript == uri_transcript

    def test_partial_response_filled(self, make_backend, inputs, uri_transcript):
        outcome, _ = run_with(make_backend, SPEAKER_STAGE, inputs, json.dumps({
            "speakers": {"doctor": "Dr. Lee"},
            "confidence": "HIGH",
        }))
        assert outcome.value.speakers.doctor == "Dr. Lee"
        assert outcome.value.speakers.patient == "Patient"
        assert outcome.value.confidence == "high"
        assert outcome.value.annotated_transcript == uri_transcript

    @pytest.mark.parametrize("others", [0.5, True, {"nurse": "Sam"}])
    def test_non_list_others_ignored(self, make_backend, inputs, others):
        outcome, _ = run_with(make_backend, SPEAKER_STAGE, inputs, json.dumps({
            "speakers": {"doctor": "Dr. Lee", "others": others},
            "confidence": "medium",
        }))
        assert outcome.outcome is ExtractionOutcome.OK
        assert outcome.value.speakers.doctor == "Dr. Lee"
        assert outcome.value.speakers.others == []
        assert outcome.validation_issues


class TestSoapNoteStage:
    """Tests for note generation, the stage without a default."""

    def test_parse_failure_propagates(self, make_backend, inputs):
        with pytest.raises(ParseFailure):
            run_with(make_backend, SOAP_NOTE_STAGE, inputs, "I cannot write this note.")

    def test_missing_section_is_validation_error(self, make_backend, inputs):
        with pytest.raises(StageValidationError) as exc_info:
            run_with(make_backend, SOAP_NOTE_STAGE, inputs, json.dumps({
                "subjective": "Cough", "objective": "Afebrile", "assessment": "URI",
            }))
        assert "plan" in str(exc_info.value)

    def test_capitalized_keys_and_list_sections(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, SOAP_NOTE_STAGE, inputs, json.dumps({
            "Subjective": "Cough",
            "Objective": "Afebrile",
            "Assessment": "URI",
            "Plan": ["Rest", "Fluids"],
        }))
        assert outcome.value.plan == "Rest; Fluids"


class TestProblemStage:
    """Tests for problem extraction."""

    def test_parse_failure_defaults_to_empty_list(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, PROBLEM_STAGE, inputs, "none found")
        assert outcome.value == []
        assert outcome.outcome is ExtractionOutcome.DEFAULT

    def test_strings_accepted_and_blanks_dropped(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, PROBLEM_STAGE, inputs, json.dumps([
            "Fever", {"description": ""}, {"description": "Cough", "rationale": "3 days"},
        ]))
        assert [p.description for p in outcome.value] == ["Fever", "Cough"]
        assert len(outcome.validation_issues) == 1


class TestDiagnosisStage:
    """Tests for diagnosis coding caps and code pattern."""

    def test_caps_at_three(self, make_backend, inputs):
        codes = ["J06.9", "R05.9", "R50.9", "R51.9", "M79.1"]
        outcome, _ = run_with(make_backend, DIAGNOSIS_STAGE, inputs, json.dumps([
            {"code": c, "description": c, "confidence": "medium"} for c in codes
        ]))
        assert [c.code for c in outcome.value] == ["J06.9", "R05.9", "R50.9"]
        assert any("Truncated" in issue for issue in outcome.validation_issues)

    @pytest.mark.parametrize("bad_code", ["J6.9", "106.9", "J06.12345", "J06.", "cough", ""])
    def test_invalid_codes_dropped(self, make_backend, inputs, bad_code):
        outcome, _ = run_with(make_backend, DIAGNOSIS_STAGE, inputs, json.dumps([
            {"code": bad_code, "description": "bad"},
            {"code": "J06.9", "description": "URI"},
        ]))
        assert [c.code for c in outcome.value] == ["J06.9"]

    def test_lowercase_code_normalized_and_duplicates_dropped(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, DIAGNOSIS_STAGE, inputs, json.dumps([
            {"code": " j06.9 "}, {"code": "J06.9"},
        ]))
        assert outcome.value == [DiagnosisCode(code="J06.9", description="", confidence="low")]

    def test_parse_failure_defaults_to_empty_list(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, DIAGNOSIS_STAGE, inputs, "J06.9 probably")
        assert outcome.value == []


class TestBillingStage:
    """Tests for billing coding defaults, caps and code pattern."""

    def test_parse_failure_uses_default_level(self, make_backend, inputs):
        outcome, trace = run_with(make_backend, BILLING_STAGE, inputs, "Bill a standard visit.")

        billing: BillingCodes = outcome.value
        assert billing.level == DEFAULT_LEVEL
        assert billing.level.confidence == "low"
        assert billing.additional_items == []
        assert billing.billing_hint == DEFAULT_HINT
        assert trace.entries[-1].details == "Visit level: 99213, additional items: 0"

    def test_invalid_level_code_replaced(self, make_backend, inputs):
        outcome, _ = run_with(make_backend, BILLING_STAGE, inputs, json.dumps({
            "consultationLevel": {"code": "Level 3", "description": "Office visit"},
            "billingHint": "Review",
        }))
        assert outcome.value.level == DEFAULT_LEVEL
        assert outcome.value.billing_hint == "Review"
        assert outcome.validation_issues

    def test_additional_items_capped_and_filtered(self, make_backend, inputs):
        items = [{"code": c, "description": c} for c in
                 ["87880", "ABCDE", "94640", "1234", "99000", "36415", "81002"]]
        outcome, _ = run_with(make_backend, BILLING_STAGE, inputs, json.dumps({
            "consultationLevel": {"code": "99214", "confidence": "high", "duration": "30-39 minutes"},
            "additionalItems": items,
        }))
        billing = outcome.value
        assert billing.level.code == "99214"
        assert billing.level.duration == "30-39 minutes"
        assert [i.code for i in billing.additional_items] == ["87880", "94640", "99000"]
        assert billing.billing_hint == "Standard billing applies"

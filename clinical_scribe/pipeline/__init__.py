"""Clinical documentation pipeline: five model-backed stages plus guardrails.

Stage flow (each stage consumes the parsed output of the ones before it):
1. Speaker Identification
2. SOAP Note Generation
3. Problem Extraction
4. Diagnosis Coding
5. Billing Coding
then the guardrail pass (emergency status, claim softening, compliance banner).

Usage:
    from clinical_scribe.pipeline.orchestrator import run_pipeline

    result = run_pipeline(transcript, executor)
    print(result.note.assessment)
"""

from clinical_scribe.pipeline.models import (
    AnalysisCompleted,
    AnalyzeRequest,
    BillingCodes,
    BillingItem,
    ClaimSoftening,
    ConsultationLevel,
    DiagnosisCode,
    EmergencyAcknowledgmentRequired,
    EmergencyAssessment,
    EmergencySource,
    GuardrailOutcome,
    PipelineResult,
    Problem,
    Severity,
    SoapNote,
    SpeakerIdentification,
    SpeakerMap,
    StageOutcome,
    TraceEntry,
)
from clinical_scribe.pipeline.trace import TraceRecorder, redact_prompt

__all__ = [
    "AnalysisCompleted",
    "AnalyzeRequest",
    "BillingCodes",
    "BillingItem",
    "ClaimSoftening",
    "ConsultationLevel",
    "DiagnosisCode",
    "EmergencyAcknowledgmentRequired",
    "EmergencyAssessment",
    "EmergencySource",
    "GuardrailOutcome",
    "PipelineResult",
    "Problem",
    "Severity",
    "SoapNote",
    "SpeakerIdentification",
    "SpeakerMap",
    "StageOutcome",
    "TraceEntry",
    "TraceRecorder",
    "redact_prompt",
]

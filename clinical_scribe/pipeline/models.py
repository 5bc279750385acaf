"""Data models for the documentation pipeline.

These models define the contracts between pipeline stages.

Stage Flow:
1. Speaker Identification → SpeakerIdentification
2. Note Generation        → SoapNote
3. Problem Extraction     → list[Problem]
4. Diagnosis Coding       → list[DiagnosisCode]   (max 3)
5. Billing Coding         → BillingCodes          (max 3 additional items)
6. Guardrails             → GuardrailOutcome
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinical_scribe.llm.extraction import ExtractionOutcome

Confidence = Literal["low", "medium", "high"]

MAX_DIAGNOSIS_CODES = 3
MAX_BILLING_ITEMS = 3

# Letter + 2 digits, optional decimal with 1-4 more (ICD-10-CM)
DIAGNOSIS_CODE_PATTERN = r"^[A-Z]\d{2}(\.\d{1,4})?$"
# Five digits (CPT)
BILLING_CODE_PATTERN = r"^\d{5}$"


# =============================================================================
# Enums
# =============================================================================

class Severity(str, Enum):
    """Emergency severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EmergencySource(str, Enum):
    """Which path produced an emergency assessment."""

    MODEL = "model"
    KEYWORD_FALLBACK = "keyword_fallback"


# =============================================================================
# Request boundary
# =============================================================================

class AnalyzeRequest(BaseModel):
    """Input accepted into the pipeline. The transcript is immutable once accepted."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    transcript: str = Field(min_length=10, max_length=5000)
    acknowledge_emergency: Optional[bool] = None


# =============================================================================
# Stage 1: Speaker Identification
# =============================================================================

class SpeakerMap(BaseModel):
    """Who is who in the consultation."""

    doctor: str = "Doctor"
    patient: str = "Patient"
    others: list[str] = Field(default_factory=list)


class SpeakerIdentification(BaseModel):
    """Output of speaker identification."""

    speakers: SpeakerMap = Field(default_factory=SpeakerMap)
    confidence: Confidence = "low"
    annotated_transcript: str = ""


# =============================================================================
# Stage 2: Note Generation
# =============================================================================

class SoapNote(BaseModel):
    """Four-field clinical note. Every field is mandatory."""

    subjective: str = Field(min_length=1)
    objective: str = Field(min_length=1)
    assessment: str = Field(min_length=1)
    plan: str = Field(min_length=1)

    @field_validator("subjective", "objective", "assessment", "plan", mode="before")
    @classmethod
    def _flatten(cls, value: Any) -> Any:
        # Models sometimes answer a section as a list of bullet points
        if isinstance(value, list):
            return "; ".join(str(v).strip() for v in value if str(v).strip())
        return value


# =============================================================================
# Stage 3: Problem Extraction
# =============================================================================

class Problem(BaseModel):
    """A clinical problem identified in the note."""

    description: str = Field(min_length=1)
    rationale: str = ""


# =============================================================================
# Stage 4: Diagnosis Coding
# =============================================================================

class DiagnosisCode(BaseModel):
    """A suggested ICD-10-CM diagnosis code."""

    code: str = Field(pattern=DIAGNOSIS_CODE_PATTERN)
    description: str = ""
    confidence: Confidence = "low"


# =============================================================================
# Stage 5: Billing Coding
# =============================================================================

class BillingItem(BaseModel):
    """A suggested billable service."""

    code: str = Field(pattern=BILLING_CODE_PATTERN)
    description: str = ""
    justification: str = ""
    confidence: Confidence = "low"


class ConsultationLevel(BillingItem):
    """The visit level item."""

    duration: str = "Unknown"


class BillingCodes(BaseModel):
    """Output of billing coding."""

    level: ConsultationLevel
    additional_items: list[BillingItem] = Field(
        default_factory=list, max_length=MAX_BILLING_ITEMS
    )
    billing_hint: str = ""


# =============================================================================
# Guardrails
# =============================================================================

class EmergencyAssessment(BaseModel):
    """Emergency classification of a transcript. Produced once per run."""

    has_emergency: bool = False
    detected_conditions: list[str] = Field(default_factory=list)
    severity: Severity = Severity.LOW
    recommendation: str = "Standard clinical review recommended"
    source: EmergencySource = EmergencySource.MODEL


class ClaimSoftening(BaseModel):
    """One softened definitive claim."""

    section: str
    phrase: str
    replacement: str
    count: int = 1


# =============================================================================
# Trace
# =============================================================================

class TraceEntry(BaseModel):
    """One audit-log line. Never mutated after insertion."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    step: str
    details: str = ""
    prompt: Optional[str] = None
    response: Optional[str] = None
    technique: Optional[str] = None


# =============================================================================
# Stage outcome and pipeline result
# =============================================================================

class StageOutcome(BaseModel):
    """What one stage produced."""

    stage: str
    prompt: str
    raw_response: str
    value: Any
    outcome: ExtractionOutcome
    model: Optional[str] = None
    validation_issues: list[str] = Field(default_factory=list)


class PipelineResult(BaseModel):
    """Assembled documentation for one transcript. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    note: SoapNote
    problems: list[Problem] = Field(default_factory=list)
    diagnosis_codes: list[DiagnosisCode] = Field(
        default_factory=list, max_length=MAX_DIAGNOSIS_CODES
    )
    billing: BillingCodes
    speaker_info: SpeakerIdentification = Field(default_factory=SpeakerIdentification)

    # Attached by the guardrail pass
    emergency: Optional[EmergencyAssessment] = None
    compliance_banner: str = ""
    guardrail_actions: list[str] = Field(default_factory=list)
    softened_claims: list[ClaimSoftening] = Field(default_factory=list)

    # Audit
    trace_log: list[TraceEntry] = Field(default_factory=list)
    stage_outcomes: dict[str, ExtractionOutcome] = Field(default_factory=dict)
    validation_issues: list[str] = Field(default_factory=list)
    model_used: Optional[str] = None

    # Assigned at hand-off to storage
    session_id: Optional[str] = None
    created_at: Optional[datetime] = None
    transcript: Optional[str] = None

    @property
    def has_emergency(self) -> bool:
        return bool(self.emergency and self.emergency.has_emergency)


class GuardrailOutcome(BaseModel):
    """Result of the guardrail pass over an assembled PipelineResult."""

    result: PipelineResult
    emergency: EmergencyAssessment
    compliance_banner: str
    softened_claims: list[ClaimSoftening] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)


# =============================================================================
# Runner outcomes
# =============================================================================

class EmergencyAcknowledgmentRequired(BaseModel):
    """Control outcome: an emergency was detected and not acknowledged."""

    requires_acknowledgment: Literal[True] = True
    detected_conditions: list[str] = Field(default_factory=list)
    severity: Severity
    recommendation: str
    message: str


class AnalysisCompleted(BaseModel):
    """A run that produced and stored documentation."""

    session_id: str
    result: PipelineResult
    processing_time_ms: int

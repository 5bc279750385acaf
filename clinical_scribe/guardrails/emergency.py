"""Emergency detection over the original transcript.

Primary path: one model call with the emergency prompt, parsed with the JSON
extractor. Fallback path: a fixed keyword list matched as substrings. The
fallback runs whenever the primary path fails for any reason, so a dead model
never hides an obvious emergency phrase.
"""

from typing import Any, Optional

import structlog

from clinical_scribe.config.prompts import EMERGENCY_DETECTION_PROMPT
from clinical_scribe.llm.extraction import extract_json
from clinical_scribe.llm.fallback import ModelFallbackExecutor, PipelineCancelled
from clinical_scribe.pipeline.models import EmergencyAssessment, EmergencySource, Severity

logger = structlog.get_logger(__name__)

URGENT_TERMS = (
    "chest pain",
    "suicide",
    "suicidal",
    "can't breathe",
    "stroke",
    "heart attack",
)

URGENT_RECOMMENDATION = "Urgent medical attention may be required"
STANDARD_RECOMMENDATION = "Standard clinical review recommended"


def keyword_assessment(transcript: str) -> EmergencyAssessment:
    """Deterministic fallback: case-insensitive substring match on URGENT_TERMS."""
    lowered = transcript.lower().replace("\u2019", "'")
    found = [term for term in URGENT_TERMS if term in lowered]
    return EmergencyAssessment(
        has_emergency=bool(found),
        detected_conditions=found,
        severity=Severity.HIGH if found else Severity.LOW,
        recommendation=URGENT_RECOMMENDATION if found else STANDARD_RECOMMENDATION,
        source=EmergencySource.KEYWORD_FALLBACK,
    )


def _parse_assessment(value: dict[str, Any]) -> EmergencyAssessment:
    has_emergency = value.get("hasEmergency", value.get("has_emergency", False))
    if isinstance(has_emergency, str):
        has_emergency = has_emergency.strip().lower() == "true"
    has_emergency = bool(has_emergency)

    conditions = value.get("detectedConditions") or value.get("detected_conditions") or []
    if isinstance(conditions, str):
        conditions = [conditions]

    try:
        severity = Severity(str(value.get("severity") or "").strip().lower())
    except ValueError:
        # Unknown label: never report an emergency as low severity
        severity = Severity.HIGH if has_emergency else Severity.LOW

    recommendation = value.get("recommendation")
    if not isinstance(recommendation, str) or not recommendation.strip():
        recommendation = URGENT_RECOMMENDATION if has_emergency else STANDARD_RECOMMENDATION

    return EmergencyAssessment(
        has_emergency=has_emergency,
        detected_conditions=[str(c) for c in conditions if c],
        severity=severity,
        recommendation=recommendation.strip(),
        source=EmergencySource.MODEL,
    )


def assess_emergency(
    transcript: str,
    executor: ModelFallbackExecutor,
    timeout: Optional[float] = None,
) -> EmergencyAssessment:
    """Classify a transcript for emergency indicators.

    Args:
        transcript: The original, unmodified transcript.
        executor: The run's model executor.
        timeout: Seconds allowed for the model call. A missed deadline
            falls back to keyword matching like any other failure.

    Returns:
        EmergencyAssessment from the model, or from the keyword fallback if
        the model call or its parsing failed.

    Raises:
        PipelineCancelled: The run was cancelled; no fallback is attempted.
    """
    prompt = EMERGENCY_DETECTION_PROMPT.format(transcript=transcript)
    try:
        response = executor.execute(prompt, timeout=timeout)
        assessment = _parse_assessment(extract_json(response.content, "object").value)
    except PipelineCancelled:
        raise
    except Exception as e:
        assessment = keyword_assessment(transcript)
        logger.warning(
            "emergency_detection_fallback",
            error_type=type(e).__name__,
            has_emergency=assessment.has_emergency,
        )
        logger.debug("emergency_detection_error", error=str(e))
        return assessment

    logger.info(
        "emergency_detection_complete",
        has_emergency=assessment.has_emergency,
        severity=assessment.severity.value,
        conditions=len(assessment.detected_conditions),
    )
    return assessment

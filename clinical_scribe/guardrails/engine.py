"""Guardrail pass over an assembled PipelineResult.

Order: emergency status first, then claim softening of each note section and
the billing hint, then the compliance banner. Exactly one trace entry
summarizes every action taken.
"""

from typing import Optional

import structlog

from clinical_scribe.config.prompts import TECHNIQUE_SAFETY
from clinical_scribe.guardrails.compliance import compliance_banner
from clinical_scribe.guardrails.emergency import assess_emergency
from clinical_scribe.guardrails.softening import soften_claims
from clinical_scribe.llm.fallback import ModelFallbackExecutor
from clinical_scribe.pipeline.models import (
    ClaimSoftening,
    EmergencyAssessment,
    GuardrailOutcome,
    PipelineResult,
)
from clinical_scribe.pipeline.trace import TraceRecorder

logger = structlog.get_logger(__name__)

GUARDRAIL_STEP = "Guardrails Applied"

# (result attribute on SoapNote, label used in the action log)
NOTE_SECTIONS = (
    ("subjective", "Subjective"),
    ("objective", "Objective"),
    ("assessment", "Assessment"),
    ("plan", "Plan"),
)


def _emergency_actions(assessment: EmergencyAssessment) -> list[str]:
    if not assessment.has_emergency:
        return ["No emergency indicators detected"]
    return [
        f"Emergency detected: {assessment.severity.value} severity",
        f"Conditions found: {', '.join(assessment.detected_conditions) or 'unspecified'}",
    ]


def _softening_actions(changes: list[ClaimSoftening]) -> list[str]:
    if not changes:
        return ["No medical claims needed softening"]
    total = sum(change.count for change in changes)
    actions = [f"Softened {total} medical claims:"]
    actions.extend(
        f"{c.section}: changed '{c.phrase}' to '{c.replacement}'"
        + (f" ({c.count}x)" if c.count > 1 else "")
        for c in changes
    )
    return actions


def apply_guardrails(
    result: PipelineResult,
    assessment: EmergencyAssessment,
    trace: TraceRecorder,
) -> GuardrailOutcome:
    """Soften claims, attach the emergency assessment and banner, record one trace entry.

    Args:
        result: Assembled documentation, not yet guarded.
        assessment: The run's emergency assessment (computed once per run).
        trace: The run's trace recorder.

    Returns:
        GuardrailOutcome wrapping a rewritten copy of ``result``.
    """
    changes: list[ClaimSoftening] = []

    note_updates = {}
    for attr, label in NOTE_SECTIONS:
        softened, section_changes = soften_claims(getattr(result.note, attr), section=label)
        note_updates[attr] = softened
        changes.extend(section_changes)

    hint, hint_changes = soften_claims(result.billing.billing_hint, section="Billing")
    changes.extend(hint_changes)

    banner = compliance_banner(assessment.has_emergency)
    actions = _emergency_actions(assessment) + _softening_actions(changes)
    actions.append("Added compliance banner and disclaimers")

    guarded = result.model_copy(update={
        "note": result.note.model_copy(update=note_updates),
        "billing": result.billing.model_copy(update={"billing_hint": hint}),
        "emergency": assessment,
        "compliance_banner": banner,
        "guardrail_actions": actions,
        "softened_claims": changes,
    })

    trace.record(
        step=GUARDRAIL_STEP,
        details="\n".join(actions),
        response=(
            f"Emergency: {'Yes' if assessment.has_emergency else 'No'}"
            f" | Severity: {assessment.severity.value}"
        ),
        technique=TECHNIQUE_SAFETY,
    )

    logger.info(
        "guardrails_applied",
        has_emergency=assessment.has_emergency,
        severity=assessment.severity.value,
        claims_softened=sum(c.count for c in changes),
    )

    return GuardrailOutcome(
        result=guarded,
        emergency=assessment,
        compliance_banner=banner,
        softened_claims=changes,
        actions=actions,
    )


def run_guardrails(
    result: PipelineResult,
    transcript: str,
    executor: ModelFallbackExecutor,
    trace: TraceRecorder,
    assessment: Optional[EmergencyAssessment] = None,
    timeout: Optional[float] = None,
) -> GuardrailOutcome:
    """Guardrail pass that runs emergency detection itself when no assessment is given."""
    if assessment is None:
        assessment = assess_emergency(transcript, executor, timeout=timeout)
    return apply_guardrails(result, assessment, trace)

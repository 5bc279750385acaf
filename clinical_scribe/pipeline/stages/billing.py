"""Stage 5: Billing Coding - SOAP note and problems to a visit level and CPT items.

An unparseable response yields a fixed low-confidence standard visit level,
no additional items and a generic hint. A visit level with an invalid code is
replaced by the same default level.
"""

from typing import Any

from pydantic import ValidationError

from clinical_scribe.config.prompts import BILLING_CODING_PROMPT, TECHNIQUE_CHAIN_OF_THOUGHT
from clinical_scribe.pipeline.models import (
    MAX_BILLING_ITEMS,
    BillingCodes,
    BillingItem,
    ConsultationLevel,
)
from clinical_scribe.pipeline.stages.base import (
    StageInputs,
    StageSpec,
    normalize_confidence,
    to_prompt_json,
)
from clinical_scribe.pipeline.stages.problems import STAGE_NAME as PROBLEM_STAGE
from clinical_scribe.pipeline.stages.soap_note import STAGE_NAME as NOTE_STAGE

STAGE_NAME = "billing_coding"

DEFAULT_LEVEL = ConsultationLevel(
    code="99213",
    description="Established patient office visit, low complexity",
    duration="20-29 minutes",
    justification="Default assignment; billing suggestions could not be determined",
    confidence="low",
)
DEFAULT_HINT = "Unable to fully parse billing suggestions - default visit level suggested. Please review manually."
STANDARD_HINT = "Standard billing applies"


def build_prompt(inputs: StageInputs) -> str:
    return BILLING_CODING_PROMPT.format(
        note_json=to_prompt_json(inputs.get(NOTE_STAGE)),
        problems_json=to_prompt_json(inputs.get(PROBLEM_STAGE)),
        max_items=MAX_BILLING_ITEMS,
    )


def default_billing(inputs: StageInputs) -> BillingCodes:
    return BillingCodes(level=DEFAULT_LEVEL, additional_items=[], billing_hint=DEFAULT_HINT)


def _item_fields(item: dict) -> dict[str, Any]:
    code = item.get("code") or item.get("cptCode") or item.get("level") or ""
    return {
        "code": str(code).strip(),
        "description": str(item.get("description") or "").strip(),
        "justification": str(item.get("justification") or "").strip(),
        "confidence": normalize_confidence(item.get("confidence")),
    }


def _coerce_level(raw: Any, issues: list[str]) -> ConsultationLevel:
    if not isinstance(raw, dict):
        issues.append("Visit level missing; default level used")
        return DEFAULT_LEVEL
    fields = _item_fields(raw)
    try:
        return ConsultationLevel(duration=str(raw.get("duration") or "Unknown"), **fields)
    except ValidationError:
        issues.append(f"Visit level code {fields['code']!r} invalid; default level used")
        return DEFAULT_LEVEL


def coerce(value: dict, inputs: StageInputs) -> tuple[BillingCodes, list[str]]:
    issues: list[str] = []
    level = _coerce_level(value.get("consultationLevel") or value.get("level"), issues)

    raw_items = value.get("additionalItems") or value.get("additional_items") or []
    if not isinstance(raw_items, list):
        issues.append("Additional billing items were not a list; ignored")
        raw_items = []

    items: list[BillingItem] = []
    seen = {level.code}
    for raw in raw_items:
        if not isinstance(raw, dict):
            issues.append(f"Dropped billing entry of type {type(raw).__name__}")
            continue
        fields = _item_fields(raw)
        try:
            item = BillingItem(**fields)
        except ValidationError:
            issues.append(f"Dropped billing code {fields['code']!r}: invalid format")
            continue
        if item.code in seen:
            continue
        seen.add(item.code)
        items.append(item)

    if len(items) > MAX_BILLING_ITEMS:
        issues.append(f"Truncated billing items from {len(items)} to {MAX_BILLING_ITEMS}")
        items = items[:MAX_BILLING_ITEMS]

    hint = value.get("billingHint") or value.get("billing_hint")
    if not isinstance(hint, str) or not hint.strip():
        hint = STANDARD_HINT

    return BillingCodes(level=level, additional_items=items, billing_hint=hint.strip()), issues


def summarize(billing: BillingCodes) -> str:
    return f"Visit level: {billing.level.code}, additional items: {len(billing.additional_items)}"


BILLING_STAGE = StageSpec(
    name=STAGE_NAME,
    title="Billing Coding",
    technique=TECHNIQUE_CHAIN_OF_THOUGHT,
    start_detail="Determining visit level and billable services...",
    shape="object",
    build_prompt=build_prompt,
    coerce=coerce,
    summarize=summarize,
    on_parse_failure=default_billing,
)

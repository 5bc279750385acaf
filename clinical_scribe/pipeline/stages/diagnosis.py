"""Stage 4: Diagnosis Coding - problem list to ICD-10-CM codes.

Codes that do not match the code pattern are dropped, duplicates are
dropped, and the list is truncated to MAX_DIAGNOSIS_CODES. An unparseable
response yields an empty list.
"""

from pydantic import ValidationError

from clinical_scribe.config.prompts import DIAGNOSIS_CODING_PROMPT, TECHNIQUE_HEURISTIC
from clinical_scribe.pipeline.models import MAX_DIAGNOSIS_CODES, DiagnosisCode
from clinical_scribe.pipeline.stages.base import (
    StageInputs,
    StageSpec,
    normalize_confidence,
    to_prompt_json,
)
from clinical_scribe.pipeline.stages.problems import STAGE_NAME as PROBLEM_STAGE

STAGE_NAME = "diagnosis_coding"


def build_prompt(inputs: StageInputs) -> str:
    return DIAGNOSIS_CODING_PROMPT.format(
        problems_json=to_prompt_json(inputs.get(PROBLEM_STAGE)),
        max_codes=MAX_DIAGNOSIS_CODES,
    )


def coerce(value: list, inputs: StageInputs) -> tuple[list[DiagnosisCode], list[str]]:
    codes: list[DiagnosisCode] = []
    issues: list[str] = []
    seen: set[str] = set()

    for item in value:
        if not isinstance(item, dict):
            issues.append(f"Dropped diagnosis entry of type {type(item).__name__}")
            continue

        raw_code = str(item.get("code") or "").strip().upper()
        try:
            code = DiagnosisCode(
                code=raw_code,
                description=str(item.get("description") or "").strip(),
                confidence=normalize_confidence(item.get("confidence")),
            )
        except ValidationError:
            issues.append(f"Dropped diagnosis code {raw_code!r}: invalid format")
            continue

        if code.code in seen:
            continue
        seen.add(code.code)
        codes.append(code)

    if len(codes) > MAX_DIAGNOSIS_CODES:
        issues.append(
            f"Truncated diagnosis codes from {len(codes)} to {MAX_DIAGNOSIS_CODES}"
        )
        codes = codes[:MAX_DIAGNOSIS_CODES]

    return codes, issues


def summarize(codes: list[DiagnosisCode]) -> str:
    return f"Generated {len(codes)} codes"


DIAGNOSIS_STAGE = StageSpec(
    name=STAGE_NAME,
    title="Diagnosis Coding",
    technique=TECHNIQUE_HEURISTIC,
    start_detail="Mapping problems to ICD-10-CM codes...",
    shape="array",
    build_prompt=build_prompt,
    coerce=coerce,
    summarize=summarize,
    on_parse_failure=lambda inputs: [],
)

"""Stage 3: Problem Extraction - SOAP note to a problem list.

An unparseable response yields an empty list.
"""

from pydantic import ValidationError

from clinical_scribe.config.prompts import PROBLEM_EXTRACTION_PROMPT, TECHNIQUE_ZERO_SHOT_COT
from clinical_scribe.pipeline.models import Problem
from clinical_scribe.pipeline.stages.base import StageInputs, StageSpec, to_prompt_json
from clinical_scribe.pipeline.stages.soap_note import STAGE_NAME as NOTE_STAGE

STAGE_NAME = "problem_extraction"


def build_prompt(inputs: StageInputs) -> str:
    return PROBLEM_EXTRACTION_PROMPT.format(note_json=to_prompt_json(inputs.get(NOTE_STAGE)))


def coerce(value: list, inputs: StageInputs) -> tuple[list[Problem], list[str]]:
    problems: list[Problem] = []
    issues: list[str] = []

    for item in value:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            issues.append(f"Dropped problem entry of type {type(item).__name__}")
            continue
        try:
            problems.append(Problem(
                description=str(item.get("description") or "").strip(),
                rationale=str(item.get("rationale") or "").strip(),
            ))
        except ValidationError:
            issues.append("Dropped problem entry without a description")

    return problems, issues


def summarize(problems: list[Problem]) -> str:
    return f"Found {len(problems)} problems"


PROBLEM_STAGE = StageSpec(
    name=STAGE_NAME,
    title="Problem Extraction",
    technique=TECHNIQUE_ZERO_SHOT_COT,
    start_detail="Identifying medical problems from SOAP note...",
    shape="array",
    build_prompt=build_prompt,
    coerce=coerce,
    summarize=summarize,
    on_parse_failure=lambda inputs: [],
)

"""Stage 2: Note Generation - transcript to a four-field SOAP note.

This stage has no safe default. An unparseable response, or a note missing
any of its four sections, terminates the run.
"""

from pydantic import ValidationError

from clinical_scribe.config.prompts import SOAP_NOTE_PROMPT, TECHNIQUE_FEW_SHOT
from clinical_scribe.pipeline.models import SoapNote
from clinical_scribe.pipeline.stages.base import StageInputs, StageSpec, StageValidationError

STAGE_NAME = "note_generation"
SECTIONS = ("subjective", "objective", "assessment", "plan")


def build_prompt(inputs: StageInputs) -> str:
    return SOAP_NOTE_PROMPT.format(transcript=inputs.transcript)


def coerce(value: dict, inputs: StageInputs) -> tuple[SoapNote, list[str]]:
    # Accept capitalized keys ("Subjective") as well
    lowered = {str(k).strip().lower(): v for k, v in value.items()}
    try:
        note = SoapNote.model_validate({section: lowered.get(section) for section in SECTIONS})
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise StageValidationError(
            f"Generated note is missing required sections: {', '.join(missing)}"
        ) from e
    return note, []


def summarize(note: SoapNote) -> str:
    return "Successfully generated SOAP note"


SOAP_NOTE_STAGE = StageSpec(
    name=STAGE_NAME,
    title="SOAP Note Generation",
    technique=TECHNIQUE_FEW_SHOT,
    start_detail="Converting transcript to structured SOAP format...",
    shape="object",
    build_prompt=build_prompt,
    coerce=coerce,
    summarize=summarize,
    on_parse_failure=None,
)

"""Documentation stages, one module per stage.

STAGES is the execution order. Each stage's prompt is built from the parsed
output of the stages before it, never from raw model text. The parse-failure
policy lives on each StageSpec; STAGE_POLICY is the readable summary of it.
"""

from clinical_scribe.pipeline.stages.base import (
    StageInputs,
    StageSpec,
    StageValidationError,
    run_stage,
)
from clinical_scribe.pipeline.stages.billing import BILLING_STAGE
from clinical_scribe.pipeline.stages.diagnosis import DIAGNOSIS_STAGE
from clinical_scribe.pipeline.stages.problems import PROBLEM_STAGE
from clinical_scribe.pipeline.stages.soap_note import SOAP_NOTE_STAGE
from clinical_scribe.pipeline.stages.speakers import SPEAKER_STAGE

STAGES: tuple[StageSpec, ...] = (
    SPEAKER_STAGE,
    SOAP_NOTE_STAGE,
    PROBLEM_STAGE,
    DIAGNOSIS_STAGE,
    BILLING_STAGE,
)

# stage name -> "default" | "terminate"
STAGE_POLICY: dict[str, str] = {
    stage_def.name: "default" if stage_def.has_default else "terminate" for stage_def in STAGES
}

__all__ = [
    "STAGES",
    "STAGE_POLICY",
    "StageInputs",
    "StageSpec",
    "StageValidationError",
    "run_stage",
    "SPEAKER_STAGE",
    "SOAP_NOTE_STAGE",
    "PROBLEM_STAGE",
    "DIAGNOSIS_STAGE",
    "BILLING_STAGE",
]

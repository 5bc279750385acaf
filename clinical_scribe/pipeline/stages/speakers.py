"""Stage 1: Speaker Identification - who is the doctor, who is the patient.

On an unparseable response the stage falls back to generic labels with low
confidence and leaves the transcript unannotated.
"""

from typing import Any

from clinical_scribe.config.prompts import SPEAKER_IDENTIFICATION_PROMPT, TECHNIQUE_CHAIN_OF_THOUGHT
from clinical_scribe.pipeline.models import SpeakerIdentification, SpeakerMap
from clinical_scribe.pipeline.stages.base import StageInputs, StageSpec, normalize_confidence

STAGE_NAME = "speaker_identification"


def build_prompt(inputs: StageInputs) -> str:
    return SPEAKER_IDENTIFICATION_PROMPT.format(transcript=inputs.transcript)


def default_speakers(inputs: StageInputs) -> SpeakerIdentification:
    """Generic labels, low confidence, original transcript unchanged."""
    return SpeakerIdentification(
        speakers=SpeakerMap(),
        confidence="low",
        annotated_transcript=inputs.transcript,
    )


def coerce(value: dict, inputs: StageInputs) -> tuple[SpeakerIdentification, list[str]]:
    """Build a SpeakerIdentification from the parsed response, filling gaps."""
    issues: list[str] = []
    raw_speakers: Any = value.get("speakers")
    if not isinstance(raw_speakers, dict):
        issues.append("Speaker map missing; generic labels used")
        raw_speakers = {}

    others = raw_speakers.get("others") or []
    if isinstance(others, str):
        others = [others]
    elif not isinstance(others, list):
        issues.append(f"Ignored non-list 'others' speaker entry ({type(others).__name__})")
        others = []

    speakers = SpeakerMap(
        doctor=str(raw_speakers.get("doctor") or "Doctor"),
        patient=str(raw_speakers.get("patient") or "Patient"),
        others=[str(o) for o in others if o],
    )

    annotated = value.get("annotatedTranscript") or value.get("annotated_transcript")
    if not isinstance(annotated, str) or not annotated.strip():
        annotated = inputs.transcript

    return (
        SpeakerIdentification(
            speakers=speakers,
            confidence=normalize_confidence(value.get("confidence")),
            annotated_transcript=annotated,
        ),
        issues,
    )


def summarize(result: SpeakerIdentification) -> str:
    return f"Confidence: {result.confidence}"


SPEAKER_STAGE = StageSpec(
    name=STAGE_NAME,
    title="Speaker Identification",
    technique=TECHNIQUE_CHAIN_OF_THOUGHT,
    start_detail="Analyzing transcript for speaker roles...",
    shape="object",
    build_prompt=build_prompt,
    coerce=coerce,
    summarize=summarize,
    on_parse_failure=default_speakers,
)

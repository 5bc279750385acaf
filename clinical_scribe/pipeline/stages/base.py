"""Shared stage machinery: stage specs, failure policy and the stage runner.

Every stage is a StageSpec. What happens when a response cannot be parsed is
data on the StageSpec: ``on_parse_failure`` is either a default factory or None,
and None means the failure terminates the pipeline.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel

from clinical_scribe.llm.extraction import ExtractionOutcome, JsonShape, ParseFailure, extract_json
from clinical_scribe.llm.fallback import ModelFallbackExecutor
from clinical_scribe.pipeline.models import Confidence, StageOutcome
from clinical_scribe.pipeline.trace import TraceRecorder

logger = structlog.get_logger(__name__)


class StageValidationError(Exception):
    """Parsed output violates an invariant and no entries could be salvaged."""

    pass


@dataclass
class StageInputs:
    """Transcript plus the parsed outputs of the stages run so far."""

    transcript: str
    outputs: dict[str, Any] = field(default_factory=dict)

    def get(self, stage_name: str) -> Any:
        return self.outputs[stage_name]


Coercer = Callable[[Any, StageInputs], tuple[Any, list[str]]]


@dataclass(frozen=True)
class StageSpec:
    """Declarative description of one pipeline stage."""

    name: str
    title: str
    technique: str
    start_detail: str
    shape: JsonShape
    build_prompt: Callable[[StageInputs], str]
    coerce: Coercer
    summarize: Callable[[Any], str]
    on_parse_failure: Optional[Callable[[StageInputs], Any]] = None

    @property
    def has_default(self) -> bool:
        return self.on_parse_failure is not None


def normalize_confidence(value: Any) -> Confidence:
    """Map a model-supplied confidence label onto low/medium/high."""
    label = str(value or "").strip().lower()
    if label in ("low", "medium", "high"):
        return label
    return "low"


def to_prompt_json(value: Any) -> str:
    """Serialize parsed stage output for the next stage's prompt."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, list):
        value = [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value]
    return json.dumps(value, indent=2, ensure_ascii=False)


def run_stage(
    stage_def: StageSpec,
    inputs: StageInputs,
    executor: ModelFallbackExecutor,
    trace: TraceRecorder,
    timeout: Optional[float] = None,
) -> StageOutcome:
    """Run one stage: record start, call the model, parse, coerce, record completion.

    Raises:
        ParseFailure: Unparseable response on a stage without a default.
        StageValidationError: Output failed validation on a stage without a default.
        Model errors from the executor propagate unchanged.
    """
    trace.record(step=stage_def.title, details=stage_def.start_detail, technique=stage_def.technique)
    logger.info("stage_start", stage=stage_def.name)

    prompt = stage_def.build_prompt(inputs)
    response = executor.execute(prompt, timeout=timeout)

    issues: list[str] = []
    try:
        extracted = extract_json(response.content, stage_def.shape)
        value, issues = stage_def.coerce(extracted.value, inputs)
        outcome = extracted.outcome
    except ParseFailure as e:
        if not stage_def.has_default:
            logger.error("stage_parse_failed", stage=stage_def.name, error=str(e))
            raise
        logger.warning("stage_parse_failed_using_default", stage=stage_def.name, error=str(e))
        value = stage_def.on_parse_failure(inputs)
        outcome = ExtractionOutcome.DEFAULT
        issues = [f"{stage_def.title}: response could not be parsed, default used"]
    except (StageValidationError, TypeError, ValueError) as e:
        if not stage_def.has_default:
            raise
        # Error text may quote the response, so only the type is logged
        logger.warning("stage_coerce_failed_using_default", stage=stage_def.name, error_type=type(e).__name__)
        value = stage_def.on_parse_failure(inputs)
        outcome = ExtractionOutcome.DEFAULT
        issues = [f"{stage_def.title}: response did not have the expected structure, default used"]

    if issues:
        logger.warning("stage_validation_issues", stage=stage_def.name, count=len(issues))
        logger.debug("stage_validation_issue_detail", stage=stage_def.name, issues=issues)

    trace.record(
        step=f"{stage_def.title} Complete",
        details=stage_def.summarize(value),
        prompt=prompt,
        response=response.content,
    )
    logger.info("stage_complete", stage=stage_def.name, outcome=outcome.value, model=response.model)

    return StageOutcome(
        stage=stage_def.name,
        prompt=prompt,
        raw_response=response.content,
        value=value,
        outcome=outcome,
        model=response.model,
        validation_issues=issues,
    )

"""Pipeline Orchestrator - runs the five documentation stages and the guardrail pass.

Stages run strictly in order and each consumes the parsed output of the
stages before it. Parse failures are resolved by each stage's policy; any
other failure ends the run with a PipelineError that carries the trace
accumulated so far.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from clinical_scribe.config.settings import Settings, get_settings
from clinical_scribe.guardrails.engine import run_guardrails
from clinical_scribe.llm.fallback import ModelFallbackExecutor
from clinical_scribe.pipeline.models import (
    EmergencyAssessment,
    PipelineResult,
    StageOutcome,
    TraceEntry,
)
from clinical_scribe.pipeline.stages import STAGES, StageInputs, StageSpec, run_stage
from clinical_scribe.pipeline.stages.billing import STAGE_NAME as BILLING
from clinical_scribe.pipeline.stages.diagnosis import STAGE_NAME as DIAGNOSIS
from clinical_scribe.pipeline.stages.problems import STAGE_NAME as PROBLEMS
from clinical_scribe.pipeline.stages.soap_note import STAGE_NAME as NOTE
from clinical_scribe.pipeline.stages.speakers import STAGE_NAME as SPEAKERS
from clinical_scribe.pipeline.trace import TraceRecorder

logger = structlog.get_logger(__name__)

GUARDRAIL_STAGE = "guardrails"


class PipelineError(Exception):
    """Terminal failure of a run.

    Attributes:
        stage: Name of the stage that failed.
        trace: Frozen trace log up to and including the failure.
    """

    def __init__(self, message: str, stage: str, trace: tuple[TraceEntry, ...] = ()):
        self.stage = stage
        self.trace = trace
        super().__init__(message)


@dataclass
class PipelineState:
    """Mutable bookkeeping for one run. Never shared between runs."""

    transcript: str
    outcomes: dict[str, StageOutcome] = field(default_factory=dict)
    stage_durations: dict[str, float] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def inputs(self) -> StageInputs:
        return StageInputs(
            transcript=self.transcript,
            outputs={name: outcome.value for name, outcome in self.outcomes.items()},
        )

    def value(self, stage_name: str) -> Any:
        return self.outcomes[stage_name].value


def run_pipeline(
    transcript: str,
    executor: ModelFallbackExecutor,
    trace: Optional[TraceRecorder] = None,
    assessment: Optional[EmergencyAssessment] = None,
    stage_timeout: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> PipelineResult:
    """Run all stages and the guardrail pass on one transcript.

    Args:
        transcript: Accepted transcript text.
        executor: Model executor scoped to this run.
        trace: Trace recorder for this run. A new one is created if omitted.
        assessment: Emergency assessment already computed for this run.
            When omitted, the guardrail pass runs emergency detection itself.
        stage_timeout: Seconds allowed per stage. Defaults to settings.
        settings: Optional settings override.

    Returns:
        Guarded PipelineResult with the frozen trace attached.

    Raises:
        PipelineError: If a stage without a safe default fails, all models
            are exhausted, a deadline passes, or the run is cancelled.
    """
    settings = settings or get_settings()
    trace = trace if trace is not None else TraceRecorder(redact_prompts=settings.redact_trace_prompts)
    if stage_timeout is None:
        stage_timeout = settings.stage_timeout_seconds

    state = PipelineState(transcript=transcript)
    run_start = time.perf_counter()

    logger.info(
        "pipeline_start",
        transcript_length=len(transcript),
        models=list(executor.candidates),
        emergency_precomputed=assessment is not None,
    )

    for stage_def in STAGES:
        _run_stage(state, stage_def, executor, trace, stage_timeout)

    result = _assemble_result(state, executor)
    result = _run_guardrails(state, result, executor, trace, assessment, stage_timeout)

    final = result.model_copy(update={"trace_log": list(trace.freeze())})

    logger.info(
        "pipeline_complete",
        duration_seconds=round(time.perf_counter() - run_start, 2),
        stage_durations=state.stage_durations,
        llm_calls=executor.calls_made,
        model_used=final.model_used,
        diagnosis_codes=len(final.diagnosis_codes),
        billing_items=len(final.billing.additional_items),
        validation_issues=len(final.validation_issues),
    )
    return final


def _fail(
    state: PipelineState,
    stage: str,
    title: str,
    trace: TraceRecorder,
    error: Exception,
) -> PipelineError:
    state.errors.append({"stage": stage, "error": str(error), "type": type(error).__name__})
    logger.error("stage_failed", stage=stage, error=str(error), error_type=type(error).__name__)
    if not trace.frozen:
        trace.record(step=f"{title} Failed", details=f"{type(error).__name__}: {error}")
    return PipelineError(f"{title} failed: {error}", stage=stage, trace=trace.freeze())


def _run_stage(
    state: PipelineState,
    stage_def: StageSpec,
    executor: ModelFallbackExecutor,
    trace: TraceRecorder,
    stage_timeout: Optional[float],
) -> None:
    stage_start = time.perf_counter()
    try:
        outcome = run_stage(stage_def, state.inputs, executor, trace, timeout=stage_timeout)
    except Exception as e:
        raise _fail(state, stage_def.name, stage_def.title, trace, e) from e
    finally:
        state.stage_durations[stage_def.name] = round(time.perf_counter() - stage_start, 3)
    state.outcomes[stage_def.name] = outcome


def _assemble_result(state: PipelineState, executor: ModelFallbackExecutor) -> PipelineResult:
    issues = [issue for outcome in state.outcomes.values() for issue in outcome.validation_issues]
    return PipelineResult(
        note=state.value(NOTE),
        problems=state.value(PROBLEMS),
        diagnosis_codes=state.value(DIAGNOSIS),
        billing=state.value(BILLING),
        speaker_info=state.value(SPEAKERS),
        stage_outcomes={name: outcome.outcome for name, outcome in state.outcomes.items()},
        validation_issues=issues,
        model_used=executor.current_model,
        transcript=state.transcript,
    )


def _run_guardrails(
    state: PipelineState,
    result: PipelineResult,
    executor: ModelFallbackExecutor,
    trace: TraceRecorder,
    assessment: Optional[EmergencyAssessment],
    stage_timeout: Optional[float],
) -> PipelineResult:
    stage_start = time.perf_counter()
    try:
        outcome = run_guardrails(
            result, state.transcript, executor, trace, assessment=assessment, timeout=stage_timeout,
        )
    except Exception as e:
        raise _fail(state, GUARDRAIL_STAGE, "Guardrails", trace, e) from e
    finally:
        state.stage_durations[GUARDRAIL_STAGE] = round(time.perf_counter() - stage_start, 3)
    return outcome.result

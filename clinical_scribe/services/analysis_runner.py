"""
Analysis Runner Service

Takes one analysis request from validation to a stored session.

Flow:
1. Validate the request (AnalyzeRequest)
2. Run emergency detection once for the run
3. Gate: an unacknowledged emergency returns EmergencyAcknowledgmentRequired
   and no documentation stage is called
4. Emit ANALYSIS_REQUESTED
5. Run the five stages and the guardrail pass with a fresh executor and trace
6. Assign a session id and timestamp, save once, save metrics
7. On a terminal error, or an invalid request, emit ANALYSIS_ERROR and re-raise

Design Decisions:
- One executor and one trace per call; nothing mutable is shared between runs
- The runner is transport-free; the CLI (or any other caller) renders results
"""

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

import structlog
from pydantic import ValidationError

from clinical_scribe.config.settings import Settings, get_settings
from clinical_scribe.guardrails.emergency import assess_emergency
from clinical_scribe.llm.client import LLMSettings, OllamaModelBackend, get_llm_settings
from clinical_scribe.llm.fallback import ModelBackend, ModelFallbackExecutor
from clinical_scribe.pipeline.models import (
    AnalysisCompleted,
    AnalyzeRequest,
    EmergencyAcknowledgmentRequired,
    EmergencyAssessment,
)
from clinical_scribe.pipeline.orchestrator import run_pipeline
from clinical_scribe.pipeline.trace import TraceRecorder
from clinical_scribe.storage.sessions import AuditEvent, AuditSink, SessionStore

logger = structlog.get_logger(__name__)

ACKNOWLEDGMENT_MESSAGE = (
    "Emergency indicators detected. Please acknowledge before proceeding "
    "with documentation generation."
)

AnalysisOutcome = Union[AnalysisCompleted, EmergencyAcknowledgmentRequired]


def generate_id() -> str:
    """Generate a unique session ID."""
    return str(uuid.uuid4())[:12]


def describe_error(error: Exception) -> str:
    """Error text for the audit log. Validation errors list field and reason only."""
    if isinstance(error, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
        )
    return str(error)


class AnalysisRunner:
    """Run analyses against a model backend and a session store.

    Args:
        store: Persistence collaborator; ``save`` is called once per completed run.
        audit: Audit sink. Defaults to ``store``.
        backend: Model backend callable. Defaults to an Ollama backend.
        candidates: Model fallback order. Defaults to LLM settings.
        settings: Optional application settings override.
        llm_settings: Optional LLM settings override.
    """

    def __init__(
        self,
        store: SessionStore,
        audit: Optional[AuditSink] = None,
        backend: Optional[ModelBackend] = None,
        candidates: Optional[Sequence[str]] = None,
        settings: Optional[Settings] = None,
        llm_settings: Optional[LLMSettings] = None,
    ):
        self.store = store
        self.audit = audit if audit is not None else store
        self.settings = settings or get_settings()
        self.llm_settings = llm_settings or get_llm_settings()
        self.backend = backend or OllamaModelBackend(self.llm_settings)
        self.candidates = tuple(candidates or self.llm_settings.model_fallback_order)

    def new_executor(self, cancel_event: Optional[threading.Event] = None) -> ModelFallbackExecutor:
        """Executor for one run; its cursor starts at the first candidate."""
        return ModelFallbackExecutor(
            candidates=self.candidates,
            backend=self.backend,
            policy=self.llm_settings.non_transient_policy,
            cancel_event=cancel_event,
        )

    def analyze(
        self,
        request: Union[AnalyzeRequest, dict[str, Any]],
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisOutcome:
        """Analyze one transcript.

        Args:
            request: AnalyzeRequest or a dict with ``transcript`` and
                optional ``acknowledge_emergency``.
            cancel_event: Set it to abandon the run between model calls.

        Returns:
            AnalysisCompleted, or EmergencyAcknowledgmentRequired when an
            emergency was detected and not explicitly acknowledged.

        Raises:
            pydantic.ValidationError: Invalid request; no model call is made.
            PipelineError: Terminal failure during documentation generation.
        """
        if not isinstance(request, AnalyzeRequest):
            try:
                request = AnalyzeRequest.model_validate(request)
            except ValidationError as e:
                raw = request.get("transcript") if isinstance(request, dict) else None
                self._audit_error(e, len(raw) if isinstance(raw, str) else None, None)
                raise

        transcript = request.transcript
        start = time.perf_counter()
        executor = self.new_executor(cancel_event)
        trace = TraceRecorder(redact_prompts=self.settings.redact_trace_prompts)
        assessment: Optional[EmergencyAssessment] = None

        try:
            assessment = assess_emergency(
                transcript, executor, timeout=self.settings.stage_timeout_seconds,
            )

            if assessment.has_emergency and request.acknowledge_emergency is not True:
                logger.warning(
                    "emergency_acknowledgment_required",
                    severity=assessment.severity.value,
                    conditions=assessment.detected_conditions,
                )
                return EmergencyAcknowledgmentRequired(
                    detected_conditions=assessment.detected_conditions,
                    severity=assessment.severity,
                    recommendation=assessment.recommendation,
                    message=ACKNOWLEDGMENT_MESSAGE,
                )

            self.audit.log_audit(
                AuditEvent.ANALYSIS_REQUESTED,
                {
                    "transcript_length": len(transcript),
                    "has_emergency": assessment.has_emergency,
                    "severity": assessment.severity.value,
                    "acknowledged": bool(request.acknowledge_emergency),
                },
            )

            result = run_pipeline(
                transcript,
                executor,
                trace=trace,
                assessment=assessment,
                settings=self.settings,
            )

            session_id = generate_id()
            result = result.model_copy(update={
                "session_id": session_id,
                "created_at": datetime.now(timezone.utc),
            })
            processing_time_ms = int((time.perf_counter() - start) * 1000)

            self.store.save(session_id, transcript, result, result.has_emergency)
            self.store.save_metrics(session_id, processing_time_ms, len(transcript), result)

        except Exception as e:
            self._audit_error(e, len(transcript), assessment)
            raise

        logger.info(
            "analysis_complete",
            session_id=session_id,
            processing_time_ms=processing_time_ms,
            llm_calls=executor.calls_made,
        )
        return AnalysisCompleted(
            session_id=session_id,
            result=result,
            processing_time_ms=processing_time_ms,
        )

    def _audit_error(
        self,
        error: Exception,
        transcript_length: Optional[int],
        assessment: Optional[EmergencyAssessment],
    ) -> None:
        logger.error("analysis_failed", error_type=type(error).__name__, stage=getattr(error, "stage", None))
        self.audit.log_audit(
            AuditEvent.ANALYSIS_ERROR,
            {
                "error": describe_error(error),
                "error_type": type(error).__name__,
                "stage": getattr(error, "stage", None),
                "transcript_length": transcript_length,
                "has_emergency": assessment.has_emergency if assessment else None,
                "severity": assessment.severity.value if assessment else None,
            },
        )

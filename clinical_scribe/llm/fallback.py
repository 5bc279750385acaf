"""Ordered model fallback for a single pipeline run.

One executor is created per run. Its cursor starts at the first candidate,
only ever moves forward, and is never shared with another run.
"""

import threading
import time
from collections.abc import Callable, Sequence
from typing import Optional

import structlog

from clinical_scribe.llm.client import LLMResponse, NonTransientPolicy

logger = structlog.get_logger(__name__)

ModelBackend = Callable[[str, str], str]

# Substrings in an error message that mean "this model is out of capacity"
TRANSIENT_MARKERS = (
    "429",
    "quota",
    "rate limit",
    "rate-limit",
    "ratelimit",
    "too many requests",
    "resource exhausted",
    "resource_exhausted",
)


class TransientModelError(Exception):
    """Capacity or rate-limit failure; the next candidate should be tried."""

    pass


class ModelInvocationError(Exception):
    """Non-transient model failure surfaced under the ``abort`` policy."""

    def __init__(self, model: str, cause: BaseException):
        self.model = model
        self.cause = cause
        super().__init__(f"Model {model} failed: {cause}")


class AllModelsExhausted(Exception):
    """Every remaining candidate failed."""

    def __init__(self, attempted: list[str], last_error: Optional[BaseException]):
        self.attempted = attempted
        self.last_error = last_error
        super().__init__(
            f"All models exhausted ({', '.join(attempted) or 'none'}); last error: {last_error}"
        )


class StageTimeoutError(Exception):
    """The stage deadline passed before a candidate answered."""

    pass


class PipelineCancelled(Exception):
    """The caller abandoned the run."""

    pass


def is_transient_error(error: BaseException) -> bool:
    """Classify a backend failure as transient (capacity/rate-limit) or not.

    Checks, in order: an explicit ``TransientModelError``, an HTTP status code
    of 429 on the exception, then the known markers in the message.
    """
    if isinstance(error, TransientModelError):
        return True

    status_code = getattr(error, "status_code", None)
    if status_code == 429:
        return True

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


class ModelFallbackExecutor:
    """Execute prompts against an ordered list of candidate models.

    Args:
        candidates: Fallback order, most preferred first. Copied to a tuple.
        backend: Callable ``(model_name, prompt) -> text``.
        policy: What to do on a non-transient failure.
        cancel_event: Optional signal checked before every attempt.
    """

    def __init__(
        self,
        candidates: Sequence[str],
        backend: ModelBackend,
        policy: NonTransientPolicy = NonTransientPolicy.ABORT,
        cancel_event: Optional[threading.Event] = None,
    ):
        if not candidates:
            raise ValueError("At least one model candidate is required")
        self.candidates = tuple(candidates)
        self.backend = backend
        self.policy = policy
        self.cancel_event = cancel_event
        self._cursor = 0
        self.calls_made = 0

    @property
    def cursor(self) -> int:
        """Index of the model currently preferred for this run."""
        return self._cursor

    @property
    def current_model(self) -> str:
        return self.candidates[self._cursor]

    def execute(self, prompt: str, timeout: Optional[float] = None) -> LLMResponse:
        """Run ``prompt`` starting at the cursor, advancing on transient failures.

        Args:
            prompt: Fully rendered prompt text.
            timeout: Seconds allowed for this call across all attempts.

        Returns:
            LLMResponse with the text and the model that produced it.

        Raises:
            ModelInvocationError: Non-transient failure with the ``abort`` policy.
            AllModelsExhausted: No remaining candidate succeeded.
            StageTimeoutError: Deadline passed before a candidate answered.
            PipelineCancelled: The cancel event was set.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        attempted: list[str] = []
        last_error: Optional[BaseException] = None

        for index in range(self._cursor, len(self.candidates)):
            self._check_interrupts(deadline)
            model_name = self.candidates[index]
            attempted.append(model_name)
            self.calls_made += 1

            try:
                content = self.backend(model_name, prompt)
            except Exception as e:
                last_error = e
                if is_transient_error(e):
                    logger.warning("model_transient_failure", model=model_name, error=str(e))
                elif self.policy is NonTransientPolicy.ADVANCE:
                    logger.warning("model_failure_advancing", model=model_name, error=str(e))
                else:
                    logger.error("model_failure_aborting", model=model_name, error=str(e))
                    raise ModelInvocationError(model_name, e) from e
                continue

            if index != self._cursor:
                logger.info(
                    "model_fallback_advance",
                    from_model=self.candidates[self._cursor],
                    to_model=model_name,
                )
                self._cursor = index

            return LLMResponse(content=content, model=model_name)

        # Cursor only moves on success, so it stays where this call started
        logger.error("all_models_exhausted", attempted=attempted, error=str(last_error))
        raise AllModelsExhausted(attempted, last_error) from last_error

    def _check_interrupts(self, deadline: Optional[float]) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelled("Run cancelled by caller")
        if deadline is not None and time.monotonic() >= deadline:
            raise StageTimeoutError("Stage deadline exceeded before a model answered")


def check_connection(executor: ModelFallbackExecutor) -> bool:
    """Test the model connection with a trivial prompt."""
    try:
        response = executor.execute('Say "OK" if you can read this.')
    except Exception as e:
        logger.warning("llm_connection_check_failed", error=str(e))
        return False
    return "OK" in response.content.upper()

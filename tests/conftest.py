"""Pytest configuration and fixtures."""

import json

import pytest

from clinical_scribe.config.settings import Settings
from clinical_scribe.llm.client import LLMSettings
from clinical_scribe.llm.fallback import ModelFallbackExecutor
from clinical_scribe.pipeline.trace import TraceRecorder
from clinical_scribe.services.analysis_runner import AnalysisRunner
from clinical_scribe.storage.database import create_db_engine
from clinical_scribe.storage.sessions import SqlSessionStore

CANDIDATES = ["model-a", "model-b", "model-c"]

URI_TRANSCRIPT = (
    "Patient: I've had a cough and fever for 3 days. "
    "Doctor: Lungs clear, temp 100.2F, likely viral URI, rest and fluids advised."
)

# Prompt substring -> stage key. Emergency is checked first because its
# prompt embeds the raw transcript.
PROMPT_MARKERS = (
    ("emergency", "for emergency indicators"),
    ("speaker_identification", "identify the speakers"),
    ("note_generation", "into a SOAP note"),
    ("problem_extraction", "Extract all medical problems"),
    ("diagnosis_coding", "ICD-10-CM codes to these diagnoses"),
    ("billing_coding", "suggest appropriate CPT codes"),
)

NO_EMERGENCY_RESPONSE = json.dumps({
    "hasEmergency": False,
    "detectedConditions": [],
    "severity": "low",
    "recommendation": "Standard clinical review recommended",
})

URI_RESPONSES = {
    "emergency": NO_EMERGENCY_RESPONSE,
    "speaker_identification": json.dumps({
        "speakers": {"doctor": "Doctor", "patient": "Patient", "others": []},
        "confidence": "high",
        "annotatedTranscript": "[Patient] I've had a cough and fever for 3 days. [Doctor] Lungs clear...",
    }),
    "note_generation": (
        "Here is the SOAP note:\n```json\n"
        + json.dumps({
            "subjective": "Cough and fever for 3 days",
            "objective": "Lungs clear to auscultation. Temperature 100.2F",
            "assessment": "Viral upper respiratory infection",
            "plan": "Rest and fluids. Symptoms will definitely resolve within a week.",
        }, indent=2)
        + "\n```\nLet me know if you need changes."
    ),
    "problem_extraction": json.dumps([
        {"description": "Acute upper respiratory infection", "rationale": "Cough, fever, clear lungs"},
    ]),
    "diagnosis_coding": json.dumps([
        {"problem": "Acute upper respiratory infection", "code": "J06.9",
         "description": "Acute upper respiratory infection, unspecified", "confidence": "high"},
    ]),
    "billing_coding": json.dumps({
        "consultationLevel": {
            "code": "99213",
            "description": "Established patient office visit, low complexity",
            "duration": "20-29 minutes",
            "justification": "One acute uncomplicated illness",
            "confidence": "medium",
        },
        "additionalItems": [],
        "billingHint": "Document temperature and duration of symptoms",
    }),
}


def route_prompt(prompt: str) -> str:
    for stage, marker in PROMPT_MARKERS:
        if marker in prompt:
            return stage
    raise AssertionError(f"Unrecognized prompt: {prompt[:80]!r}")


class ScriptedBackend:
    """Fake model backend: answers each prompt with a canned response for its stage.

    ``responses`` values may be strings or exceptions (raised when that stage
    is called). ``failures`` maps a model name to an exception raised for
    every call to that model.
    """

    def __init__(self, responses=None, failures=None):
        self.responses = {**URI_RESPONSES, **(responses or {})}
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str]] = []

    def __call__(self, model_name: str, prompt: str) -> str:
        self.calls.append((model_name, prompt))
        if model_name in self.failures:
            raise self.failures[model_name]
        response = self.responses[route_prompt(prompt)]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def stages_called(self) -> list[str]:
        return [route_prompt(prompt) for _, prompt in self.calls]

    @property
    def models_called(self) -> list[str]:
        return [model for model, _ in self.calls]


@pytest.fixture
def uri_transcript() -> str:
    """The upper respiratory infection consultation used end to end."""
    return URI_TRANSCRIPT


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        stage_timeout_seconds=30.0,
        redact_trace_prompts=True,
    )


@pytest.fixture
def llm_settings() -> LLMSettings:
    return LLMSettings(model_fallback_order=CANDIDATES)


@pytest.fixture
def executor(backend) -> ModelFallbackExecutor:
    return ModelFallbackExecutor(CANDIDATES, backend)


@pytest.fixture
def trace() -> TraceRecorder:
    return TraceRecorder()


@pytest.fixture
def memory_store() -> SqlSessionStore:
    """Session store on a private in-memory SQLite database."""
    return SqlSessionStore(create_db_engine("sqlite://"))


@pytest.fixture
def runner(memory_store, backend, settings, llm_settings) -> AnalysisRunner:
    return AnalysisRunner(
        store=memory_store,
        backend=backend,
        candidates=CANDIDATES,
        settings=settings,
        llm_settings=llm_settings,
    )


@pytest.fixture
def make_backend():
    """Factory for ScriptedBackend with per-test responses or failures."""
    return ScriptedBackend

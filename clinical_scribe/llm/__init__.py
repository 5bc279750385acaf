"""LLM client, fallback execution and JSON recovery."""

from .client import (
    LLMResponse,
    LLMSettings,
    NonTransientPolicy,
    OllamaModelBackend,
    create_llm_client,
    get_llm_settings,
)
from .extraction import (
    ExtractedJson,
    ExtractionOutcome,
    ParseFailure,
    extract_json,
)
from .fallback import (
    AllModelsExhausted,
    ModelBackend,
    ModelFallbackExecutor,
    ModelInvocationError,
    PipelineCancelled,
    StageTimeoutError,
    TransientModelError,
    check_connection,
    is_transient_error,
)

__all__ = [
    "LLMResponse",
    "LLMSettings",
    "NonTransientPolicy",
    "OllamaModelBackend",
    "create_llm_client",
    "get_llm_settings",
    "ExtractedJson",
    "ExtractionOutcome",
    "ParseFailure",
    "extract_json",
    "AllModelsExhausted",
    "ModelBackend",
    "ModelFallbackExecutor",
    "ModelInvocationError",
    "PipelineCancelled",
    "StageTimeoutError",
    "TransientModelError",
    "check_connection",
    "is_transient_error",
]

"""Ollama LLM client configuration."""

from enum import Enum
from functools import lru_cache

import structlog
from langchain_core.output_parsers import StrOutputParser
from langchain_ollama import OllamaLLM
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


class NonTransientPolicy(str, Enum):
    """What the fallback chain does when a model fails for a non-capacity reason."""

    ABORT = "abort"      # Surface the error immediately
    ADVANCE = "advance"  # Treat it like a capacity failure and try the next model


class LLMSettings(BaseSettings):
    """LLM configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    # Tried in order; the first one that answers is kept for the rest of the run
    model_fallback_order: list[str] = [
        "gemma3:latest",
        "llama3.1:8b",
        "qwen2.5:7b",
    ]
    temperature: float = 0.0
    request_timeout: int = 120
    num_ctx: int = 8192
    num_predict: int = 2048  # Max tokens to generate
    non_transient_policy: NonTransientPolicy = NonTransientPolicy.ABORT


class LLMResponse(BaseModel):
    """Wrapper for LLM response with metadata."""

    content: str
    model: str


@lru_cache
def get_llm_settings() -> LLMSettings:
    """Get cached LLM settings."""
    return LLMSettings()


def create_llm_client(model_name: str, settings: LLMSettings | None = None) -> OllamaLLM:
    """Create configured Ollama LLM client for one fallback candidate.

    Args:
        model_name: Name of the Ollama model to talk to.
        settings: Optional custom settings. Uses defaults if not provided.

    Returns:
        Configured OllamaLLM instance.
    """
    settings = settings or get_llm_settings()

    return OllamaLLM(
        model=model_name,
        base_url=settings.ollama_base_url,
        temperature=settings.temperature,
        num_ctx=settings.num_ctx,
        num_predict=settings.num_predict,
        client_kwargs={"timeout": settings.request_timeout},
    )


class OllamaModelBackend:
    """Model backend contract: ``backend(model_name, prompt) -> text``.

    Holds one client per model name so the underlying HTTP connections are
    pooled across runs. It keeps no notion of a "current" model; fallback
    position belongs to the per-run executor.
    """

    def __init__(self, settings: LLMSettings | None = None):
        self.settings = settings or get_llm_settings()
        self._chains: dict = {}

    def _chain_for(self, model_name: str):
        if model_name not in self._chains:
            llm = create_llm_client(model_name, self.settings)
            self._chains[model_name] = llm | StrOutputParser()
        return self._chains[model_name]

    def __call__(self, model_name: str, prompt: str) -> str:
        chain = self._chain_for(model_name)
        logger.debug("llm_invoke", model=model_name, prompt_length=len(prompt))
        response = chain.invoke(prompt)
        return response.strip() if response else ""


"""Safety and compliance checks applied after documentation is generated."""

from .compliance import BASE_DISCLAIMER, compliance_banner
from .emergency import URGENT_TERMS, assess_emergency, keyword_assessment
from .engine import GUARDRAIL_STEP, apply_guardrails, run_guardrails
from .softening import DEFINITIVE_CLAIMS, soften_claims

__all__ = [
    "BASE_DISCLAIMER",
    "compliance_banner",
    "URGENT_TERMS",
    "assess_emergency",
    "keyword_assessment",
    "GUARDRAIL_STEP",
    "apply_guardrails",
    "run_guardrails",
    "DEFINITIVE_CLAIMS",
    "soften_claims",
]

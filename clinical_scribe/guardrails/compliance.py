"""Compliance banner text. Depends only on the emergency flag."""

BASE_DISCLAIMER = "Draft only; clinician review required; not a medical device; may be inaccurate."
URGENT_PREFIX = "⚠️ URGENT: Emergency indicators detected."
TRIAGE_QUALIFIER = "This is NOT a triage tool - follow emergency protocols."


def compliance_banner(has_emergency: bool) -> str:
    if not has_emergency:
        return BASE_DISCLAIMER
    return f"{URGENT_PREFIX} {BASE_DISCLAIMER} {TRIAGE_QUALIFIER}"

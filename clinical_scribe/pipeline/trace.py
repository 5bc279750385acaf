"""Append-only audit trace for one pipeline run."""

import re
from datetime import datetime, timezone
from typing import Optional

import structlog

from clinical_scribe.pipeline.models import TraceEntry

logger = structlog.get_logger(__name__)

# Identifier patterns masked in prompts before they are stored
REDACTION_PATTERNS = {
    "SSN": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "PHONE": re.compile(r"\(\d{3}\)\s*\d{3}-\d{4}|\b\d{3}[-.]\d{3}[-.]\d{4}\b"),
    "EMAIL": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "MRN": re.compile(r"\b(?:mrn|medical\s+record\s+number|patient\s+id)\s*:?\s*[A-Z0-9]{6,12}\b", re.IGNORECASE),
    "DATE": re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{4}\b|\b\d{4}-\d{2}-\d{2}\b"),
}


def redact_prompt(prompt: str) -> str:
    """Mask direct identifiers in a prompt as ``[REDACTED:<KIND>]``."""
    for kind, pattern in REDACTION_PATTERNS.items():
        prompt = pattern.sub(f"[REDACTED:{kind}]", prompt)
    return prompt


class TraceRecorder:
    """Ordered, timestamped log of every step in a run.

    Entries are only ever appended. Append order defines log order; timestamps
    are clamped so they never go backwards even if the wall clock does.
    """

    def __init__(self, redact_prompts: bool = True):
        self.redact_prompts = redact_prompts
        self._entries: list[TraceEntry] = []
        self._frozen = False

    def append(self, entry: TraceEntry) -> TraceEntry:
        if self._frozen:
            raise RuntimeError("Trace is frozen; no more entries can be appended")
        if self._entries and entry.timestamp < self._entries[-1].timestamp:
            entry = entry.model_copy(update={"timestamp": self._entries[-1].timestamp})
        self._entries.append(entry)
        return entry

    def record(
        self,
        step: str,
        details: str = "",
        prompt: Optional[str] = None,
        response: Optional[str] = None,
        technique: Optional[str] = None,
    ) -> TraceEntry:
        """Build a TraceEntry stamped now and append it."""
        if prompt is not None and self.redact_prompts:
            prompt = redact_prompt(prompt)
        entry = TraceEntry(
            timestamp=datetime.now(timezone.utc),
            step=step,
            details=details,
            prompt=prompt,
            response=response,
            technique=technique,
        )
        logger.debug("trace_entry", step=step, technique=technique)
        return self.append(entry)

    def freeze(self) -> tuple[TraceEntry, ...]:
        """Stop accepting entries and return the final log."""
        self._frozen = True
        return self.entries

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def entries(self) -> tuple[TraceEntry, ...]:
        """Read-only view of the log, in append order."""
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


"""Table-driven softening of definitive medical claims.

All phrases are matched in a single pass (longest first, whole words, case
insensitive), so a replacement is never re-scanned within the same call. No
replacement contains a source phrase, which makes the rewrite idempotent.
"""

import re

from clinical_scribe.pipeline.models import ClaimSoftening

DEFINITIVE_CLAIMS: dict[str, str] = {
    "will cure": "may help improve",
    "will heal": "may help heal",
    "will fix": "may help address",
    "will eliminate": "may help reduce",
    "will prevent": "may help prevent",
    "guarantees": "may provide",
    "definitely": "likely",
    "certainly": "probably",
    "always works": "often helps",
    "never fails": "typically effective",
}

_CLAIM_RE = re.compile(
    r"\b(?:"
    + "|".join(
        r"\s+".join(re.escape(word) for word in phrase.split())
        for phrase in sorted(DEFINITIVE_CLAIMS, key=len, reverse=True)
    )
    + r")\b",
    re.IGNORECASE,
)


def _canonical(matched: str) -> str:
    return " ".join(matched.lower().split())


def soften_claims(text: str, section: str = "") -> tuple[str, list[ClaimSoftening]]:
    """Replace definitive claims in ``text`` with cautious language.

    Args:
        text: Free text to rewrite.
        section: Label recorded on each ClaimSoftening (e.g. "Plan").

    Returns:
        Tuple of (rewritten text, one ClaimSoftening per distinct phrase).
    """
    counts: dict[str, int] = {}

    def _replace(match: re.Match) -> str:
        phrase = _canonical(match.group(0))
        counts[phrase] = counts.get(phrase, 0) + 1
        replacement = DEFINITIVE_CLAIMS[phrase]
        if match.group(0)[0].isupper():
            replacement = replacement[0].upper() + replacement[1:]
        return replacement

    softened = _CLAIM_RE.sub(_replace, text)
    changes = [
        ClaimSoftening(
            section=section,
            phrase=phrase,
            replacement=DEFINITIVE_CLAIMS[phrase],
            count=count,
        )
        for phrase, count in counts.items()
    ]
    return softened, changes

"""
Interpretation of raw LLM replies.

Pulls the self-reported confidence and the ``[n]`` citation markers out
of the reply, maps citations to document ids, and strips the
``Sources: ... | Confidence: ...`` footer before the text reaches the
customer.
"""

import logging
import re
from typing import List, Sequence

from context.models import RetrievalResult

logger = logging.getLogger(__name__)

CONFIDENCE_PATTERN = re.compile(r"Confidence:\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
CITATION_PATTERN = re.compile(r"\[(\d+)\]")
FOOTER_LINE_PATTERN = re.compile(r"^\W*(sources?|confidence)\s*:", re.IGNORECASE)

UNCERTAINTY_PHRASES = (
    "i'm not sure",
    "i don't know",
    "i cannot find",
    "not enough information",
    "unclear",
    "i'm unable to",
)
UNCERTAIN_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.85


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_confidence(text: str) -> float:
    """
    Confidence in [0, 1] from the reply footer.

    Percent-style values (> 1) are divided by 100. Without a footer,
    falls back to a keyword heuristic: 0.3 if the reply sounds
    uncertain, otherwise 0.85.
    """
    match = CONFIDENCE_PATTERN.search(text or "")
    if match:
        value = float(match.group(1))
        if value > 1:
            value = value / 100
        return _clamp(value)

    lowered = (text or "").lower()
    if any(phrase in lowered for phrase in UNCERTAINTY_PHRASES):
        return UNCERTAIN_CONFIDENCE
    return DEFAULT_CONFIDENCE


def parse_citations(text: str) -> List[str]:
    """Unique ``[n]`` markers in order of first appearance."""
    seen = []
    for match in CITATION_PATTERN.finditer(text or ""):
        marker = match.group(0)
        if marker not in seen:
            seen.append(marker)
    return seen


def resolve_citations(citations: Sequence[str], retrieval_results: Sequence[RetrievalResult]) -> List[str]:
    """Map 1-based citation markers to document ids; out-of-range markers are dropped."""
    doc_ids = []
    for marker in citations:
        digits = CITATION_PATTERN.fullmatch(marker) or re.fullmatch(r"(\d+)", str(marker))
        if not digits:
            continue
        index = int(digits.group(1))
        if 1 <= index <= len(retrieval_results):
            doc_id = retrieval_results[index - 1].doc_id
            if doc_id not in doc_ids:
                doc_ids.append(doc_id)
    return doc_ids


def strip_footer(text: str) -> str:
    """Drop trailing ``Sources:`` / ``Confidence:`` lines; inline markers stay."""
    lines = (text or "").rstrip().splitlines()
    while lines and (not lines[-1].strip() or FOOTER_LINE_PATTERN.match(lines[-1].strip())):
        lines.pop()
    return "\n".join(lines).rstrip()

"""Classify a (new, stored) quote pair and, for ambiguous pairs, ask an LLM."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from resolution_service.llm.client import LLMClient
from resolution_service.quote_dedup.similarity import (
    bigram_containment,
    ellipsis_fragment_match,
    has_ellipsis,
    word_containment,
)

logger = logging.getLogger(__name__)

AUTO_MERGE_CONTAINMENT = 0.90
AUTO_MERGE_ELLIPSIS = 0.80
VERIFY_CONTAINMENT = 0.75
VERIFY_BIGRAMS = 0.70
LLM_DUPLICATE_CONFIDENCE = 0.7


class DedupAction(str, enum.Enum):
    auto_merge = "auto_merge"
    llm_verify = "llm_verify"
    no_match = "no_match"


@dataclass(frozen=True)
class PairAnalysis:
    action: DedupAction
    score: float
    containment: float
    ellipsis: float | None
    bigrams: float


def analyze_quote_pair(new_text: str, candidate_text: str) -> PairAnalysis:
    if len(new_text) <= len(candidate_text):
        shorter, longer = new_text, candidate_text
    else:
        shorter, longer = candidate_text, new_text

    containment = word_containment(shorter, longer)
    ellipsis = ellipsis_fragment_match(shorter, longer)
    bigrams = bigram_containment(shorter, longer)

    if containment > AUTO_MERGE_CONTAINMENT:
        action, score = DedupAction.auto_merge, containment
    elif ellipsis is not None and ellipsis > AUTO_MERGE_ELLIPSIS:
        action, score = DedupAction.auto_merge, ellipsis
    elif containment > VERIFY_CONTAINMENT or bigrams > VERIFY_BIGRAMS:
        action, score = DedupAction.llm_verify, containment
    else:
        action, score = DedupAction.no_match, containment
    return PairAnalysis(action=action, score=score, containment=containment, ellipsis=ellipsis, bigrams=bigrams)


class LLMRelationship(str, enum.Enum):
    IDENTICAL = "IDENTICAL"
    SUBSET = "SUBSET"
    PARAPHRASE = "PARAPHRASE"
    SAME_TOPIC = "SAME_TOPIC"
    UNRELATED = "UNRELATED"


@dataclass(frozen=True)
class LLMVerdict:
    relationship: LLMRelationship
    confidence: float
    canonical: str | None = None
    explanation: str | None = None

    @property
    def is_duplicate(self) -> bool:
        return (
            self.relationship in (LLMRelationship.IDENTICAL, LLMRelationship.SUBSET)
            and self.confidence > LLM_DUPLICATE_CONFIDENCE
        )


UNRELATED_FALLBACK = LLMVerdict(relationship=LLMRelationship.UNRELATED, confidence=0.5)

VERDICT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "relationship": {"type": "string", "enum": [r.value for r in LLMRelationship]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "canonical": {"type": "string", "enum": ["A", "B"]},
        "explanation": {"type": "string"},
    },
    "required": ["relationship", "confidence", "canonical", "explanation"],
}

VERIFY_PROMPT = """You are a quote deduplication system. Analyze these two quotes from the same speaker.

Quote A: "{quote_a}"
Quote B: "{quote_b}"
Speaker: {speaker}

Classify the relationship as EXACTLY ONE of:
- IDENTICAL: Same quote, minor formatting differences only
- SUBSET: One is a fragment/excerpt of the other (with omitted portions)
- PARAPHRASE: Same statement expressed differently
- SAME_TOPIC: About the same subject but different statements
- UNRELATED: Different topics

Respond with ONLY valid JSON:
{{
  "relationship": "IDENTICAL|SUBSET|PARAPHRASE|SAME_TOPIC|UNRELATED",
  "confidence": 0.0 to 1.0,
  "canonical": "A or B (which is more complete)",
  "explanation": "brief reason"
}}
"""


def parse_verdict(payload: dict[str, Any] | None) -> LLMVerdict:
    if not payload:
        return UNRELATED_FALLBACK
    try:
        relationship = LLMRelationship(str(payload.get("relationship", "")).strip().upper())
        confidence = float(payload.get("confidence"))
    except (TypeError, ValueError):
        return UNRELATED_FALLBACK
    canonical = payload.get("canonical")
    return LLMVerdict(
        relationship=relationship,
        confidence=min(max(confidence, 0.0), 1.0),
        canonical=canonical if canonical in ("A", "B") else None,
        explanation=payload.get("explanation"),
    )


class DuplicateVerifier:
    """LLM check for pairs the containment metrics cannot decide. Never raises."""

    def __init__(self, llm: LLMClient | None) -> None:
        self.llm = llm

    async def verify(self, quote_a: str, quote_b: str, speaker: str) -> LLMVerdict:
        if self.llm is None:
            return UNRELATED_FALLBACK

        prompt = VERIFY_PROMPT.format(quote_a=quote_a, quote_b=quote_b, speaker=speaker)
        try:
            response = await self.llm.complete_json(prompt=prompt, schema=VERDICT_SCHEMA)
        except Exception as exc:
            logger.error("llm verify failed", extra={"error": str(exc)})
            return UNRELATED_FALLBACK
        return parse_verdict(response.json)


class CanonicalCandidate(Protocol):
    text: str
    first_seen_at: datetime


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.max.replace(tzinfo=timezone.utc)
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def select_canonical_quote(quotes: list[CanonicalCandidate]) -> CanonicalCandidate:
    """
    Pick the best representative: longer (by more than 20 chars), then
    ellipsis-free, then earliest seen.
    """
    best = quotes[0]
    for quote in quotes[1:]:
        if _prefer(quote, best):
            best = quote
    return best


def _prefer(a: CanonicalCandidate, b: CanonicalCandidate) -> bool:
    length_diff = len(a.text) - len(b.text)
    if abs(length_diff) > 20:
        return length_diff > 0
    a_ellipsis, b_ellipsis = has_ellipsis(a.text), has_ellipsis(b.text)
    if a_ellipsis != b_ellipsis:
        return not a_ellipsis
    return _as_utc(a.first_seen_at) < _as_utc(b.first_seen_at)

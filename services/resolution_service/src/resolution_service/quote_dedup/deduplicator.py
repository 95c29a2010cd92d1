from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from quotelog_core.db.enums import QuoteRelationshipType
from quotelog_core.db.models import utcnow
from resolution_service.quote_dedup.candidates import DuplicateCandidate, DuplicateCandidateFinder
from resolution_service.quote_dedup.merge import ArticleRef, CanonicalMergeExecutor, QuoteData, QuoteResult
from resolution_service.quote_dedup.policy import (
    DedupAction,
    DuplicateVerifier,
    analyze_quote_pair,
    select_canonical_quote,
)
from resolution_service.quote_dedup.similarity import normalize_for_comparison
from resolution_service.repositories import QuoteRepository
from resolution_service.vector.index import QuoteVectorIndex

logger = logging.getLogger(__name__)

CanonicalPolicy = Literal["keep_existing", "prefer_complete"]


@dataclass(frozen=True)
class DuplicateDecision:
    candidate: DuplicateCandidate
    relationship: QuoteRelationshipType
    confidence: float


@dataclass(frozen=True)
class _Incoming:
    text: str
    first_seen_at: datetime


class QuoteDeduplicator:
    """
    find candidates -> classify each pair -> merge into the first confirmed
    duplicate, or insert a new canonical row.
    """

    def __init__(
        self,
        *,
        quotes: QuoteRepository,
        finder: DuplicateCandidateFinder,
        verifier: DuplicateVerifier,
        executor: CanonicalMergeExecutor,
        index: QuoteVectorIndex | None = None,
        canonical_policy: CanonicalPolicy = "keep_existing",
    ) -> None:
        self.quotes = quotes
        self.finder = finder
        self.verifier = verifier
        self.executor = executor
        self.index = index
        self.canonical_policy = canonical_policy

    async def find_duplicate(self, text: str, person_id: int) -> DuplicateDecision | None:
        person = self.quotes.get_person(person_id)
        speaker = person.canonical_name if person else "Unknown"

        for candidate in await self.finder.find(text, person_id):
            analysis = analyze_quote_pair(text, candidate.text)
            if analysis.action is DedupAction.auto_merge:
                if normalize_for_comparison(text) == normalize_for_comparison(candidate.text):
                    relationship = QuoteRelationshipType.identical
                else:
                    relationship = QuoteRelationshipType.subset
                return DuplicateDecision(candidate, relationship, analysis.score)

            if analysis.action is DedupAction.llm_verify:
                verdict = await self.verifier.verify(text, candidate.text, speaker)
                logger.debug(
                    "llm verdict",
                    extra={
                        "quote_id": candidate.quote_id,
                        "relationship": verdict.relationship.value,
                        "confidence": verdict.confidence,
                    },
                )
                if verdict.is_duplicate:
                    relationship = QuoteRelationshipType(verdict.relationship.value.lower())
                    return DuplicateDecision(candidate, relationship, verdict.confidence)
        return None

    async def insert_and_deduplicate(
        self, quote_data: QuoteData, person_id: int, article: ArticleRef | None = None
    ) -> QuoteResult:
        decision = await self.find_duplicate(quote_data.text, person_id)

        if decision is None:
            result = self.executor.insert_new(quote_data=quote_data, person_id=person_id, article=article)
            await self._index(result, quote_data.context)
            return result

        if self.canonical_policy == "prefer_complete" and self._incoming_wins(quote_data.text, decision.candidate):
            result = self.executor.replace_canonical(
                canonical_id=decision.candidate.quote_id,
                quote_data=quote_data,
                article=article,
                relationship=decision.relationship,
                confidence=decision.confidence,
            )
            await self._index(result, quote_data.context)
            return result

        return self.executor.merge_duplicate(
            canonical_id=decision.candidate.quote_id,
            quote_data=quote_data,
            article=article,
            relationship=decision.relationship,
            confidence=decision.confidence,
        )

    @staticmethod
    def _incoming_wins(text: str, candidate: DuplicateCandidate) -> bool:
        incoming = _Incoming(text=text, first_seen_at=utcnow())
        return select_canonical_quote([candidate, incoming]) is incoming

    async def _index(self, result: QuoteResult, context: str | None) -> None:
        if self.index is None:
            return
        try:
            await self.index.upsert_quote(
                result.id, result.text, result.person_id, context=context, person_name=result.person_name
            )
        except Exception as exc:
            logger.warning("quote indexing failed", extra={"quote_id": result.id, "error": str(exc)})

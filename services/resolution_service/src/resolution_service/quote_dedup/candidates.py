"""Retrieve stored quotes of the same person that might duplicate new text."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from resolution_service.errors import ServiceUnavailableError
from resolution_service.quote_dedup.similarity import word_containment
from resolution_service.repositories import QuoteRepository
from resolution_service.vector.index import QuoteVectorIndex

logger = logging.getLogger(__name__)

VECTOR_MIN_SCORE = 0.78
FALLBACK_SCAN_LIMIT = 50
FALLBACK_MIN_CONTAINMENT = 0.5
MAX_CANDIDATES = 10


@dataclass(frozen=True)
class DuplicateCandidate:
    quote_id: int
    text: str
    score: float
    first_seen_at: datetime | None = None
    source: str = "vector"


class DuplicateCandidateFinder:
    """
    Vector search scoped to the person, with a bounded relational scan as fallback.

    `find` never raises: an empty list means "treat as new".
    """

    def __init__(self, quotes: QuoteRepository, index: QuoteVectorIndex | None = None) -> None:
        self.quotes = quotes
        self.index = index

    async def find(self, text: str, person_id: int) -> list[DuplicateCandidate]:
        if self.index is not None:
            try:
                return await self._find_by_vector(text, person_id)
            except ServiceUnavailableError as exc:
                logger.warning("vector search failed, scanning recent quotes", extra={"error": str(exc)})

        try:
            return self._find_by_scan(text, person_id)
        except Exception as exc:
            logger.error("candidate scan failed", extra={"person_id": person_id, "error": str(exc)})
            return []

    async def _find_by_vector(self, text: str, person_id: int) -> list[DuplicateCandidate]:
        hits = await self.index.query(text, person_id, limit=MAX_CANDIDATES)
        hits = [h for h in hits if h.score > VECTOR_MIN_SCORE][:MAX_CANDIDATES]
        if not hits:
            return []

        # The index may lag the store: re-read rows and skip anything no longer canonical.
        rows = {q.id: q for q in self.quotes.get_quotes(h.quote_id for h in hits)}
        out: list[DuplicateCandidate] = []
        for hit in hits:
            quote = rows.get(hit.quote_id)
            if quote is None or quote.canonical_quote_id is not None or quote.person_id != person_id:
                continue
            out.append(
                DuplicateCandidate(
                    quote_id=quote.id,
                    text=quote.text,
                    score=hit.score,
                    first_seen_at=quote.first_seen_at,
                    source="vector",
                )
            )
        return out

    def _find_by_scan(self, text: str, person_id: int) -> list[DuplicateCandidate]:
        out: list[DuplicateCandidate] = []
        for quote in self.quotes.recent_canonical_quotes(person_id, FALLBACK_SCAN_LIMIT):
            if len(text) <= len(quote.text):
                score = word_containment(text, quote.text)
            else:
                score = word_containment(quote.text, text)
            if score > FALLBACK_MIN_CONTAINMENT:
                out.append(
                    DuplicateCandidate(
                        quote_id=quote.id,
                        text=quote.text,
                        score=score,
                        first_seen_at=quote.first_seen_at,
                        source="scan",
                    )
                )
        out.sort(key=lambda c: c.score, reverse=True)
        return out[:MAX_CANDIDATES]

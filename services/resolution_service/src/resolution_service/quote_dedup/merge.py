"""
Write side of quote dedup.

Each public method of `CanonicalMergeExecutor` is one atomic unit: the quote
row, URL union, article link, audit row and person counters commit together
or not at all. Integrity errors roll back and propagate to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

from sqlalchemy.orm import Session

from quotelog_core.db.enums import QuoteRelationshipType, QuoteType
from quotelog_core.db.models import Quote
from quotelog_core.db.session import unit_of_work
from resolution_service.repositories import QuoteRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArticleRef:
    """The upstream article a quote was extracted from."""

    id: int | None = None
    url: str | None = None


@dataclass(frozen=True)
class QuoteData:
    text: str
    quote_type: QuoteType = QuoteType.direct
    context: str | None = None
    source_url: str | None = None
    topics: Sequence[str] = field(default_factory=tuple)
    keywords: Sequence[str] = field(default_factory=tuple)

    def urls(self, article: ArticleRef | None) -> list[str]:
        candidates = [self.source_url, article.url if article else None]
        return list(dict.fromkeys(u for u in candidates if u))


@dataclass(frozen=True)
class QuoteResult:
    id: int
    text: str
    person_id: int
    person_name: str | None
    source_urls: list[str]
    created_at: datetime
    is_duplicate: bool


def _result(quote: Quote, person_name: str | None, *, is_duplicate: bool) -> QuoteResult:
    return QuoteResult(
        id=quote.id,
        text=quote.text,
        person_id=quote.person_id,
        person_name=person_name,
        source_urls=list(quote.source_urls or []),
        created_at=quote.created_at,
        is_duplicate=is_duplicate,
    )


class CanonicalMergeExecutor:
    def __init__(self, session: Session, quotes: QuoteRepository) -> None:
        self.session = session
        self.quotes = quotes

    def _person_name(self, person_id: int) -> str | None:
        person = self.quotes.get_person(person_id)
        return person.canonical_name if person else None

    def merge_duplicate(
        self,
        *,
        canonical_id: int,
        quote_data: QuoteData,
        article: ArticleRef | None,
        relationship: QuoteRelationshipType,
        confidence: float,
    ) -> QuoteResult:
        """Fold a duplicate into its canonical row. The canonical text is never touched."""
        with unit_of_work(self.session):
            canonical = self.quotes.get_quote(canonical_id)
            if canonical is None:
                raise LookupError(f"quote {canonical_id} not found")
            urls = quote_data.urls(article)
            self.quotes.add_source_urls(canonical, urls)
            if article is not None and article.id is not None:
                self.quotes.link_article(canonical.id, article.id)
            self.quotes.record_relationship(
                quote_id_a=canonical.id,
                quote_id_b=None,
                relationship=relationship,
                confidence=confidence,
                canonical_quote_id=canonical.id,
                source_url=urls[0] if urls else None,
            )
            result = _result(canonical, self._person_name(canonical.person_id), is_duplicate=True)

        logger.info(
            "quote merged",
            extra={"canonical_quote_id": canonical_id, "relationship": relationship.value, "confidence": confidence},
        )
        return result

    def insert_new(self, *, quote_data: QuoteData, person_id: int, article: ArticleRef | None) -> QuoteResult:
        with unit_of_work(self.session):
            quote = self.quotes.insert_quote(
                person_id=person_id,
                text=quote_data.text,
                quote_type=QuoteType(quote_data.quote_type),
                context=quote_data.context,
                source_urls=quote_data.urls(article),
            )
            if article is not None and article.id is not None:
                self.quotes.link_article(quote.id, article.id)
            self.quotes.attach_tags(quote.id, quote_data.topics, quote_data.keywords)
            self.quotes.touch_person(person_id, quote_delta=1)
            result = _result(quote, self._person_name(person_id), is_duplicate=False)

        logger.info("quote inserted", extra={"quote_id": result.id, "person_id": person_id})
        return result

    def replace_canonical(
        self,
        *,
        canonical_id: int,
        quote_data: QuoteData,
        article: ArticleRef | None,
        relationship: QuoteRelationshipType,
        confidence: float,
    ) -> QuoteResult:
        """
        Promote more complete incoming text to canonical.

        The incoming text becomes a new canonical row carrying the merged URL
        set; the old canonical row and every variant that pointed at it are
        repointed to the new row, so the graph stays one level deep. The
        person's canonical count is unchanged.
        """
        with unit_of_work(self.session):
            old = self.quotes.get_quote(canonical_id)
            if old is None:
                raise LookupError(f"quote {canonical_id} not found")
            incoming_urls = quote_data.urls(article)
            quote = self.quotes.insert_quote(
                person_id=old.person_id,
                text=quote_data.text,
                quote_type=QuoteType(quote_data.quote_type),
                context=quote_data.context or old.context,
                source_urls=[*(old.source_urls or []), *incoming_urls],
            )
            # The statement was first seen when the old row was.
            quote.first_seen_at = old.first_seen_at
            self.quotes.repoint_variants(old.id, quote.id)
            if article is not None and article.id is not None:
                self.quotes.link_article(quote.id, article.id)
            self.quotes.attach_tags(quote.id, quote_data.topics, quote_data.keywords)
            self.quotes.record_relationship(
                quote_id_a=quote.id,
                quote_id_b=old.id,
                relationship=relationship,
                confidence=confidence,
                canonical_quote_id=quote.id,
                source_url=incoming_urls[0] if incoming_urls else None,
            )
            self.quotes.touch_person(old.person_id, quote_delta=0)
            result = _result(quote, self._person_name(old.person_id), is_duplicate=True)

        logger.info("canonical quote replaced", extra={"old_quote_id": canonical_id, "quote_id": result.id})
        return result

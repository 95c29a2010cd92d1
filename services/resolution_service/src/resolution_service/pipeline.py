"""
Ingestion-facing facade: extracted quote candidate in, resolution results out.

    resolve_person -> insert_and_deduplicate -> (pending) link quote to its review item
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from sqlalchemy.orm import Session

from quotelog_core.db.enums import QuoteType
from resolution_service.llm.client import LLMClient
from resolution_service.llm.openai_compat import OpenAICompatibleClient
from resolution_service.person_resolution.resolver import PendingReview, PersonResolver, Resolution
from resolution_service.person_resolution.review_queue import DisambiguationQueue
from resolution_service.quote_dedup.candidates import DuplicateCandidateFinder
from resolution_service.quote_dedup.deduplicator import QuoteDeduplicator
from resolution_service.quote_dedup.merge import ArticleRef, CanonicalMergeExecutor, QuoteData, QuoteResult
from resolution_service.quote_dedup.policy import DuplicateVerifier
from resolution_service.repositories import SqlPersonRepository, SqlQuoteRepository
from resolution_service.settings import Settings
from resolution_service.vector.index import QuoteVectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuoteCandidate:
    """One quote as handed over by the extraction step."""

    text: str
    speaker_name: str
    speaker_title: str | None = None
    quote_type: QuoteType = QuoteType.direct
    context: str | None = None
    source_url: str | None = None
    topics: Sequence[str] = field(default_factory=tuple)
    keywords: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QuoteCandidate":
        """Accepts both the extractor's camelCase keys and snake_case."""

        def pick(*keys: str) -> Any:
            for key in keys:
                if raw.get(key) is not None:
                    return raw[key]
            return None

        text = pick("text")
        speaker = pick("personHintName", "speakerName", "speaker_name", "speaker")
        if not text or not speaker:
            raise ValueError("quote candidate needs non-empty text and speaker name")
        return cls(
            text=str(text),
            speaker_name=str(speaker),
            speaker_title=pick("personHintTitle", "speakerTitle", "speaker_title"),
            quote_type=QuoteType(pick("quoteType", "quote_type") or QuoteType.direct.value),
            context=pick("context"),
            source_url=pick("sourceUrl", "source_url"),
            topics=tuple(pick("topics") or ()),
            keywords=tuple(pick("keywords") or ()),
        )

    def quote_data(self) -> QuoteData:
        return QuoteData(
            text=self.text,
            quote_type=self.quote_type,
            context=self.context,
            source_url=self.source_url,
            topics=self.topics,
            keywords=self.keywords,
        )


@dataclass(frozen=True)
class IngestOutcome:
    resolution: Resolution
    quote: QuoteResult


class IdentityPipeline:
    def __init__(
        self,
        session: Session,
        *,
        resolver: PersonResolver,
        deduplicator: QuoteDeduplicator,
        queue: DisambiguationQueue,
        llm: OpenAICompatibleClient | None = None,
        index: QuoteVectorIndex | None = None,
    ) -> None:
        self.session = session
        self.resolver = resolver
        self.deduplicator = deduplicator
        self.queue = queue
        self._llm = llm
        self._index = index

    @classmethod
    def build(
        cls,
        session: Session,
        settings: Settings,
        *,
        llm: LLMClient | None = None,
        index: QuoteVectorIndex | None = None,
    ) -> "IdentityPipeline":
        quotes = SqlQuoteRepository(session)
        persons = SqlPersonRepository(session)
        deduplicator = QuoteDeduplicator(
            quotes=quotes,
            finder=DuplicateCandidateFinder(quotes, index),
            verifier=DuplicateVerifier(llm),
            executor=CanonicalMergeExecutor(session, quotes),
            index=index,
            canonical_policy=settings.canonical_policy,
        )
        return cls(
            session,
            resolver=PersonResolver.from_settings(session, persons, settings, llm=llm),
            deduplicator=deduplicator,
            queue=DisambiguationQueue(session, persons),
            llm=llm if isinstance(llm, OpenAICompatibleClient) else None,
            index=index,
        )

    @classmethod
    def from_settings(cls, session_factory: Callable[[], Session], settings: Settings) -> "IdentityPipeline":
        """Wire LLM and vector clients when their settings are present; run without them otherwise."""
        llm = OpenAICompatibleClient.from_settings(settings) if settings.llm_configured else None
        index = QuoteVectorIndex.from_settings(settings) if settings.vector_configured else None
        logger.info(
            "identity pipeline configured",
            extra={"llm": llm is not None, "vector": index is not None, "canonical_policy": settings.canonical_policy},
        )
        return cls.build(session_factory(), settings, llm=llm, index=index)

    async def aclose(self) -> None:
        if self._llm is not None:
            await self._llm.aclose()
        if self._index is not None:
            await self._index.close()
        self.session.close()

    async def __aenter__(self) -> "IdentityPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def resolve_person(
        self,
        speaker_name: str,
        speaker_title: str | None = None,
        context: str | None = None,
        article: ArticleRef | None = None,
    ) -> Resolution:
        return await self.resolver.resolve(speaker_name, speaker_title, context, article)

    async def insert_and_deduplicate(
        self, quote_data: QuoteData, person_id: int, article: ArticleRef | None = None
    ) -> QuoteResult:
        return await self.deduplicator.insert_and_deduplicate(quote_data, person_id, article)

    async def ingest_candidate(self, candidate: QuoteCandidate, article: ArticleRef | None = None) -> IngestOutcome:
        resolution = await self.resolve_person(
            candidate.speaker_name, candidate.speaker_title, candidate.context, article
        )
        quote = await self.insert_and_deduplicate(candidate.quote_data(), resolution.person_id, article)
        # A duplicate folded into an existing canonical row stays with that row's owner.
        if isinstance(resolution, PendingReview) and not quote.is_duplicate:
            self.queue.attach_quote(resolution.queue_item_id, quote.id)
        return IngestOutcome(resolution=resolution, quote=quote)

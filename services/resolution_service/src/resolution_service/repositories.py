"""
Persistence boundary for the identity-resolution layer.

Decision logic (similarity policy, resolver, review queue) talks to the two
protocols below; the SQLAlchemy implementations bind them to one `Session`.
Repositories never commit: transaction scope belongs to the executors.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable, Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from quotelog_core.db.enums import (
    AliasSource,
    AliasType,
    KeywordType,
    MergedBy,
    NamePartType,
    QuoteRelationshipType,
    QuoteType,
    ReviewStatus,
)
from quotelog_core.db.models import (
    DisambiguationQueueItem,
    Keyword,
    Person,
    PersonAlias,
    PersonMerge,
    PersonPhonetic,
    Quote,
    QuoteArticle,
    QuoteKeyword,
    QuoteRelationship,
    QuoteTopic,
    Topic,
    utcnow,
)


class QuoteRepository(Protocol):
    def get_quote(self, quote_id: int) -> Quote | None: ...

    def get_quotes(self, quote_ids: Iterable[int]) -> list[Quote]: ...

    def recent_canonical_quotes(self, person_id: int, limit: int) -> list[Quote]: ...

    def get_person(self, person_id: int) -> Person | None: ...

    def insert_quote(
        self,
        *,
        person_id: int,
        text: str,
        quote_type: QuoteType,
        context: str | None,
        source_urls: list[str],
        canonical_quote_id: int | None = None,
    ) -> Quote: ...

    def add_source_urls(self, quote: Quote, urls: Iterable[str]) -> list[str]: ...

    def link_article(self, quote_id: int, article_id: int) -> None: ...

    def attach_tags(self, quote_id: int, topics: Iterable[str], keywords: Iterable[str]) -> None: ...

    def record_relationship(
        self,
        *,
        quote_id_a: int,
        quote_id_b: int | None,
        relationship: QuoteRelationshipType,
        confidence: float,
        canonical_quote_id: int,
        source_url: str | None,
    ) -> QuoteRelationship: ...

    def repoint_variants(self, old_canonical_id: int, new_canonical_id: int) -> int: ...

    def touch_person(self, person_id: int, *, quote_delta: int) -> None: ...


class PersonRepository(Protocol):
    def get_person(self, person_id: int) -> Person | None: ...

    def aliases_by_normalized(self, alias_normalized: str) -> list[PersonAlias]: ...

    def person_ids_by_phonetic(self, codes: Iterable[str], part_type: NamePartType) -> list[int]: ...

    def aliases_for_persons(self, person_ids: Iterable[int]) -> dict[int, list[PersonAlias]]: ...

    def aliases_by_last_name_prefix(self, prefix: str, limit: int) -> list[PersonAlias]: ...

    def create_person(
        self,
        *,
        canonical_name: str,
        disambiguation: str | None,
        alias_normalized: str,
        phonetics: Iterable[tuple[str, str, NamePartType]],
        alias_source: AliasSource = AliasSource.extraction,
    ) -> Person: ...

    def add_alias(
        self,
        *,
        person_id: int,
        alias: str,
        alias_normalized: str,
        alias_type: AliasType,
        confidence: float,
        source: AliasSource,
    ) -> bool: ...

    def add_phonetics(self, person_id: int, phonetics: Iterable[tuple[str, str, NamePartType]]) -> None: ...

    def record_person_merge(
        self,
        *,
        surviving_person_id: int,
        merged_person_id: int,
        merged_by: MergedBy,
        confidence: float | None,
        reason: str | None,
    ) -> PersonMerge: ...

    def enqueue_review(self, **fields: Any) -> DisambiguationQueueItem: ...

    def get_review_item(self, item_id: int) -> DisambiguationQueueItem | None: ...

    def pending_review_items(self, *, limit: int, offset: int) -> list[DisambiguationQueueItem]: ...

    def count_review_items(self, *, status: ReviewStatus | None = None, resolved_since: datetime | None = None) -> int: ...

    def recent_quote_texts(self, person_id: int, limit: int) -> list[str]: ...

    def quote_owner(self, quote_id: int) -> int | None: ...

    def repoint_quote(self, quote_id: int, person_id: int) -> None: ...

    def recompute_quote_count(self, person_id: int) -> int: ...

    def touch_seen(self, person_id: int) -> None: ...

    def absorb_person(self, merged_person_id: int, *, into_person_id: int) -> int: ...

    def delete_person_if_orphaned(self, person_id: int) -> bool: ...


_SLUG_STRIP = re.compile(r"[^a-z0-9]+")

_ORG_PATTERN = re.compile(
    r"\b(congress|senate|house|committee|department|agency|fbi|cia|nato|united nations|un|eu|who|imf|"
    r"nfl|nba|mlb|nhl|court|council|commission|administration|bureau|foundation|institute|association|"
    r"corporation|inc|llc|party|group)\b",
    re.IGNORECASE,
)
_LOCATION_PATTERN = re.compile(
    r"\b(city|state|country|county|province|region|island|river|mountain|ocean|sea|lake|street|avenue|"
    r"district|territory|gaza|ukraine|taiwan|israel|russia|china|iran|iraq|syria|afghanistan|north korea)\b",
    re.IGNORECASE,
)
_EVENT_PATTERN = re.compile(
    r"\b(war|crisis|scandal|election|summit|trial|hearing|investigation|attack|shooting|hurricane|"
    r"earthquake|pandemic|protest|riot|coup|files|gate|accord|deal|agreement|act)\b",
    re.IGNORECASE,
)
_LEGISLATION_PATTERN = re.compile(
    r"\b(act|bill|amendment|law|order|resolution|proposition|regulation|directive|treaty|protocol)\b",
    re.IGNORECASE,
)
_PERSON_PATTERN = re.compile(r"^[A-Z][a-z]+ [A-Z][a-z]+( [A-Z][a-z]+)?$")


def topic_slug(name: str) -> str:
    return _SLUG_STRIP.sub("-", name.lower()).strip("-")


def _clean_names(raw: Iterable[Any]) -> list[str]:
    return list(dict.fromkeys(r.strip() for r in raw if isinstance(r, str) and r.strip()))


def infer_keyword_type(keyword: str) -> KeywordType:
    if _ORG_PATTERN.search(keyword):
        return KeywordType.organization
    if _LOCATION_PATTERN.search(keyword):
        return KeywordType.location
    if _LEGISLATION_PATTERN.search(keyword) and keyword[:1].isupper():
        return KeywordType.legislation
    if _EVENT_PATTERN.search(keyword):
        return KeywordType.event
    if _PERSON_PATTERN.match(keyword):
        return KeywordType.person
    return KeywordType.concept


class SqlQuoteRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_quote(self, quote_id: int) -> Quote | None:
        return self.session.get(Quote, quote_id)

    def get_quotes(self, quote_ids: Iterable[int]) -> list[Quote]:
        ids = list(quote_ids)
        if not ids:
            return []
        return list(self.session.scalars(select(Quote).where(Quote.id.in_(ids))))

    def recent_canonical_quotes(self, person_id: int, limit: int) -> list[Quote]:
        stmt = (
            select(Quote)
            .where(Quote.person_id == person_id, Quote.canonical_quote_id.is_(None))
            .order_by(Quote.created_at.desc(), Quote.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def get_person(self, person_id: int) -> Person | None:
        return self.session.get(Person, person_id)

    def insert_quote(
        self,
        *,
        person_id: int,
        text: str,
        quote_type: QuoteType,
        context: str | None,
        source_urls: list[str],
        canonical_quote_id: int | None = None,
    ) -> Quote:
        quote = Quote(
            person_id=person_id,
            text=text,
            quote_type=quote_type,
            context=context,
            source_urls=list(dict.fromkeys(source_urls)),
            canonical_quote_id=canonical_quote_id,
        )
        self.session.add(quote)
        self.session.flush()
        return quote

    def add_source_urls(self, quote: Quote, urls: Iterable[str]) -> list[str]:
        merged = list(dict.fromkeys([*(quote.source_urls or []), *(u for u in urls if u)]))
        # Reassign so the JSON column is flagged dirty.
        quote.source_urls = merged
        self.session.flush()
        return merged

    def link_article(self, quote_id: int, article_id: int) -> None:
        if self.session.get(QuoteArticle, (quote_id, article_id)) is None:
            self.session.add(QuoteArticle(quote_id=quote_id, article_id=article_id))
            self.session.flush()

    def attach_tags(self, quote_id: int, topics: Iterable[str], keywords: Iterable[str]) -> None:
        for name in _clean_names(topics):
            topic = self.session.scalar(select(Topic).where(Topic.name == name))
            if topic is None:
                topic = Topic(name=name, slug=topic_slug(name))
                self.session.add(topic)
                self.session.flush()
            if self.session.get(QuoteTopic, (quote_id, topic.id)) is None:
                self.session.add(QuoteTopic(quote_id=quote_id, topic_id=topic.id))

        for name in _clean_names(keywords):
            keyword = self.session.scalar(select(Keyword).where(Keyword.name == name))
            if keyword is None:
                keyword = Keyword(name=name, name_normalized=name.lower(), keyword_type=infer_keyword_type(name))
                self.session.add(keyword)
                self.session.flush()
            if self.session.get(QuoteKeyword, (quote_id, keyword.id)) is None:
                self.session.add(QuoteKeyword(quote_id=quote_id, keyword_id=keyword.id))
        self.session.flush()

    def record_relationship(
        self,
        *,
        quote_id_a: int,
        quote_id_b: int | None,
        relationship: QuoteRelationshipType,
        confidence: float,
        canonical_quote_id: int,
        source_url: str | None,
    ) -> QuoteRelationship:
        row = QuoteRelationship(
            quote_id_a=quote_id_a,
            quote_id_b=quote_id_b,
            relationship_type=relationship,
            confidence=confidence,
            canonical_quote_id=canonical_quote_id,
            source_url=source_url,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def repoint_variants(self, old_canonical_id: int, new_canonical_id: int) -> int:
        result = self.session.execute(
            update(Quote)
            .where(or_(Quote.canonical_quote_id == old_canonical_id, Quote.id == old_canonical_id))
            .where(Quote.id != new_canonical_id)
            .values(canonical_quote_id=new_canonical_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def touch_person(self, person_id: int, *, quote_delta: int) -> None:
        person = self.session.get(Person, person_id)
        if person is None:
            raise LookupError(f"person {person_id} not found")
        person.quote_count = (person.quote_count or 0) + quote_delta
        person.last_seen_at = utcnow()
        self.session.flush()


class SqlPersonRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_person(self, person_id: int) -> Person | None:
        return self.session.get(Person, person_id)

    def aliases_by_normalized(self, alias_normalized: str) -> list[PersonAlias]:
        stmt = (
            select(PersonAlias)
            .where(PersonAlias.alias_normalized == alias_normalized)
            .order_by(PersonAlias.confidence.desc(), PersonAlias.id)
        )
        return list(self.session.scalars(stmt))

    def person_ids_by_phonetic(self, codes: Iterable[str], part_type: NamePartType) -> list[int]:
        codes = list(codes)
        if not codes:
            return []
        stmt = (
            select(PersonPhonetic.person_id)
            .where(PersonPhonetic.phonetic_code.in_(codes), PersonPhonetic.part_type == part_type)
            .distinct()
            .order_by(PersonPhonetic.person_id)
        )
        return list(self.session.scalars(stmt))

    def aliases_for_persons(self, person_ids: Iterable[int]) -> dict[int, list[PersonAlias]]:
        ids = list(person_ids)
        out: dict[int, list[PersonAlias]] = defaultdict(list)
        if not ids:
            return out
        stmt = select(PersonAlias).where(PersonAlias.person_id.in_(ids)).order_by(PersonAlias.id)
        for alias in self.session.scalars(stmt):
            out[alias.person_id].append(alias)
        return out

    def aliases_by_last_name_prefix(self, prefix: str, limit: int) -> list[PersonAlias]:
        if not prefix:
            return []
        # Any token of the alias starting with the prefix; callers re-check the last token.
        stmt = (
            select(PersonAlias)
            .where(
                or_(
                    PersonAlias.alias_normalized.like(f"{prefix}%"),
                    PersonAlias.alias_normalized.like(f"% {prefix}%"),
                )
            )
            .order_by(PersonAlias.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def create_person(
        self,
        *,
        canonical_name: str,
        disambiguation: str | None,
        alias_normalized: str,
        phonetics: Iterable[tuple[str, str, NamePartType]],
        alias_source: AliasSource = AliasSource.extraction,
    ) -> Person:
        person = Person(canonical_name=canonical_name, disambiguation=disambiguation, person_metadata={})
        self.session.add(person)
        self.session.flush()
        self.session.add(
            PersonAlias(
                person_id=person.id,
                alias=canonical_name,
                alias_normalized=alias_normalized,
                alias_type=AliasType.full_name,
                confidence=1.0,
                source=alias_source,
            )
        )
        self.add_phonetics(person.id, phonetics)
        return person

    def add_alias(
        self,
        *,
        person_id: int,
        alias: str,
        alias_normalized: str,
        alias_type: AliasType,
        confidence: float,
        source: AliasSource,
    ) -> bool:
        """Insert unless (person_id, alias_normalized) already exists. Returns whether a row was added."""
        exists = self.session.scalar(
            select(PersonAlias.id).where(
                PersonAlias.person_id == person_id, PersonAlias.alias_normalized == alias_normalized
            )
        )
        if exists is not None:
            return False
        self.session.add(
            PersonAlias(
                person_id=person_id,
                alias=alias,
                alias_normalized=alias_normalized,
                alias_type=alias_type,
                confidence=confidence,
                source=source,
            )
        )
        self.session.flush()
        return True

    def add_phonetics(self, person_id: int, phonetics: Iterable[tuple[str, str, NamePartType]]) -> None:
        existing = set(
            self.session.execute(
                select(PersonPhonetic.phonetic_code, PersonPhonetic.part_type).where(
                    PersonPhonetic.person_id == person_id
                )
            ).all()
        )
        for name_part, code, part_type in phonetics:
            if (code, part_type) in existing:
                continue
            existing.add((code, part_type))
            self.session.add(
                PersonPhonetic(person_id=person_id, name_part=name_part, phonetic_code=code, part_type=part_type)
            )
        self.session.flush()

    def record_person_merge(
        self,
        *,
        surviving_person_id: int,
        merged_person_id: int,
        merged_by: MergedBy,
        confidence: float | None,
        reason: str | None,
    ) -> PersonMerge:
        row = PersonMerge(
            surviving_person_id=surviving_person_id,
            merged_person_id=merged_person_id,
            merged_by=merged_by,
            confidence=confidence,
            reason=reason,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def enqueue_review(self, **fields: Any) -> DisambiguationQueueItem:
        item = DisambiguationQueueItem(status=ReviewStatus.pending, **fields)
        self.session.add(item)
        self.session.flush()
        return item

    def get_review_item(self, item_id: int) -> DisambiguationQueueItem | None:
        return self.session.get(DisambiguationQueueItem, item_id)

    def pending_review_items(self, *, limit: int, offset: int) -> list[DisambiguationQueueItem]:
        stmt = (
            select(DisambiguationQueueItem)
            .where(DisambiguationQueueItem.status == ReviewStatus.pending)
            .order_by(DisambiguationQueueItem.created_at.asc(), DisambiguationQueueItem.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt))

    def count_review_items(self, *, status: ReviewStatus | None = None, resolved_since: datetime | None = None) -> int:
        stmt = select(func.count(DisambiguationQueueItem.id))
        if status is not None:
            stmt = stmt.where(DisambiguationQueueItem.status == status)
        if resolved_since is not None:
            stmt = stmt.where(
                DisambiguationQueueItem.status != ReviewStatus.pending,
                DisambiguationQueueItem.resolved_at >= resolved_since,
            )
        return self.session.scalar(stmt) or 0

    def recent_quote_texts(self, person_id: int, limit: int) -> list[str]:
        stmt = (
            select(Quote.text)
            .where(Quote.person_id == person_id, Quote.canonical_quote_id.is_(None))
            .order_by(Quote.created_at.desc(), Quote.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def quote_owner(self, quote_id: int) -> int | None:
        return self.session.scalar(select(Quote.person_id).where(Quote.id == quote_id))

    def repoint_quote(self, quote_id: int, person_id: int) -> None:
        quote = self.session.get(Quote, quote_id)
        if quote is None:
            raise LookupError(f"quote {quote_id} not found")
        quote.person_id = person_id
        # Variants follow their canonical row's owner.
        self.session.execute(
            update(Quote)
            .where(Quote.canonical_quote_id == quote_id)
            .values(person_id=person_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()

    def touch_seen(self, person_id: int) -> None:
        person = self.session.get(Person, person_id)
        if person is not None:
            person.last_seen_at = utcnow()
            self.session.flush()

    def recompute_quote_count(self, person_id: int) -> int:
        person = self.session.get(Person, person_id)
        if person is None:
            return 0
        count = self.session.scalar(
            select(func.count(Quote.id)).where(Quote.person_id == person_id, Quote.canonical_quote_id.is_(None))
        ) or 0
        person.quote_count = count
        person.last_seen_at = utcnow()
        self.session.flush()
        return count

    def absorb_person(self, merged_person_id: int, *, into_person_id: int) -> int:
        """
        Move everything `merged_person_id` owns onto `into_person_id`: quotes,
        aliases, phonetic codes, review candidacies and merge survivorships.
        Aliases the survivor already knows are dropped, and a merged
        full_name alias becomes a variant. Returns the number of quotes moved.
        The emptied person is left for `delete_person_if_orphaned`.
        """
        moved = self.session.execute(
            update(Quote)
            .where(Quote.person_id == merged_person_id)
            .values(person_id=into_person_id)
            .execution_options(synchronize_session="fetch")
        ).rowcount

        merged_aliases = list(self.session.scalars(select(PersonAlias).where(PersonAlias.person_id == merged_person_id)))
        for alias in merged_aliases:
            self.add_alias(
                person_id=into_person_id,
                alias=alias.alias,
                alias_normalized=alias.alias_normalized,
                alias_type=AliasType.variant if alias.alias_type is AliasType.full_name else alias.alias_type,
                confidence=alias.confidence,
                source=alias.source,
            )
        phonetics = self.session.scalars(select(PersonPhonetic).where(PersonPhonetic.person_id == merged_person_id))
        self.add_phonetics(into_person_id, [(p.name_part, p.phonetic_code, p.part_type) for p in phonetics])

        self.session.execute(
            update(DisambiguationQueueItem)
            .where(DisambiguationQueueItem.candidate_person_id == merged_person_id)
            .values(candidate_person_id=into_person_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.execute(
            update(PersonMerge)
            .where(PersonMerge.surviving_person_id == merged_person_id)
            .values(surviving_person_id=into_person_id)
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        return moved or 0

    def delete_person_if_orphaned(self, person_id: int) -> bool:
        """
        Drop a person that owns no quotes and is not referenced as a review
        candidate or merge survivor. Aliases and phonetics cascade.
        """
        referenced = (
            select(Quote.id).where(Quote.person_id == person_id),
            select(DisambiguationQueueItem.id).where(DisambiguationQueueItem.candidate_person_id == person_id),
            select(PersonMerge.id).where(PersonMerge.surviving_person_id == person_id),
        )
        for stmt in referenced:
            if self.session.scalar(stmt.limit(1)) is not None:
                return False
        person = self.session.get(Person, person_id)
        if person is None:
            return False
        self.session.execute(
            update(DisambiguationQueueItem)
            .where(DisambiguationQueueItem.provisional_person_id == person_id)
            .values(provisional_person_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.session.delete(person)
        self.session.flush()
        return True

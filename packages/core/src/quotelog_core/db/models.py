from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quotelog_core.db.base import Base
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


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Article(Base):
    """Minimal mirror of the upstream article record; owned by the fetcher."""

    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Person(Base):
    __tablename__ = "persons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    canonical_name: Mapped[str] = mapped_column(String(512), nullable=False)
    # Free-text qualifier such as "Texas senator"; usually the extracted speaker title.
    disambiguation: Mapped[str | None] = mapped_column(Text, nullable=True)
    quote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    # `metadata` is reserved on declarative classes.
    person_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    aliases: Mapped[list[PersonAlias]] = relationship(
        back_populates="person", cascade="all, delete-orphan", passive_deletes=True
    )
    phonetics: Mapped[list[PersonPhonetic]] = relationship(
        back_populates="person", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (Index("ix_persons_canonical_name", "canonical_name"),)


class PersonAlias(Base):
    __tablename__ = "person_aliases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False)
    alias: Mapped[str] = mapped_column(String(512), nullable=False)
    alias_normalized: Mapped[str] = mapped_column(String(512), nullable=False)
    alias_type: Mapped[AliasType] = mapped_column(
        Enum(AliasType, native_enum=False), nullable=False, default=AliasType.variant
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    source: Mapped[AliasSource] = mapped_column(
        Enum(AliasSource, native_enum=False), nullable=False, default=AliasSource.extraction
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    person: Mapped[Person] = relationship(back_populates="aliases")

    __table_args__ = (
        UniqueConstraint("person_id", "alias_normalized", name="uq_person_aliases_person_normalized"),
        Index("ix_person_aliases_normalized", "alias_normalized"),
    )


class PersonPhonetic(Base):
    __tablename__ = "person_phonetics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False)
    name_part: Mapped[str] = mapped_column(String(256), nullable=False)
    phonetic_code: Mapped[str] = mapped_column(String(64), nullable=False)
    part_type: Mapped[NamePartType] = mapped_column(
        Enum(NamePartType, native_enum=False), nullable=False, default=NamePartType.last
    )

    person: Mapped[Person] = relationship(back_populates="phonetics")

    __table_args__ = (Index("ix_person_phonetics_code_part", "phonetic_code", "part_type"),)


class Quote(Base):
    __tablename__ = "quotes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(Integer, ForeignKey("persons.id"), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    quote_type: Mapped[QuoteType] = mapped_column(
        Enum(QuoteType, native_enum=False), nullable=False, default=QuoteType.direct
    )
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Non-null marks a variant row superseded by the canonical row it points to (never another variant).
    canonical_quote_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quotes.id"), nullable=True)
    source_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    person: Mapped[Person] = relationship()

    __table_args__ = (
        Index("ix_quotes_person", "person_id"),
        Index("ix_quotes_canonical", "canonical_quote_id"),
        Index("ix_quotes_created", "created_at"),
    )


class QuoteArticle(Base):
    __tablename__ = "quote_articles"

    quote_id: Mapped[int] = mapped_column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), primary_key=True)
    article_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True
    )


class Topic(Base):
    __tablename__ = "topics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(256), nullable=False)


class QuoteTopic(Base):
    __tablename__ = "quote_topics"

    quote_id: Mapped[int] = mapped_column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), primary_key=True)
    topic_id: Mapped[int] = mapped_column(Integer, ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True)


class Keyword(Base):
    __tablename__ = "keywords"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    name_normalized: Mapped[str] = mapped_column(String(256), nullable=False)
    keyword_type: Mapped[KeywordType] = mapped_column(
        Enum(KeywordType, native_enum=False), nullable=False, default=KeywordType.concept
    )


class QuoteKeyword(Base):
    __tablename__ = "quote_keywords"

    quote_id: Mapped[int] = mapped_column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), primary_key=True)
    keyword_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("keywords.id", ondelete="CASCADE"), primary_key=True
    )


class QuoteRelationship(Base):
    """Append-only audit of dedup decisions; independent of the live canonical pointer."""

    __tablename__ = "quote_relationships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quote_id_a: Mapped[int] = mapped_column(Integer, ForeignKey("quotes.id"), nullable=False)
    # NULL when the incoming text contributed only its source URL.
    quote_id_b: Mapped[int | None] = mapped_column(Integer, ForeignKey("quotes.id"), nullable=True)
    relationship_type: Mapped[QuoteRelationshipType] = mapped_column(
        "relationship", Enum(QuoteRelationshipType, native_enum=False), nullable=False
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    canonical_quote_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quotes.id"), nullable=True)
    source_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class DisambiguationQueueItem(Base):
    __tablename__ = "disambiguation_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    new_name: Mapped[str] = mapped_column(String(512), nullable=False)
    new_name_normalized: Mapped[str] = mapped_column(String(512), nullable=False)
    new_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    candidate_person_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("persons.id"), nullable=True)
    candidate_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Person the quote is attached to while the item is pending.
    provisional_person_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="SET NULL"), nullable=True
    )
    similarity_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    match_signals: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[ReviewStatus] = mapped_column(
        Enum(ReviewStatus, native_enum=False), nullable=False, default=ReviewStatus.pending
    )
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    quote_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quotes.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    candidate: Mapped[Person | None] = relationship(foreign_keys=[candidate_person_id])

    __table_args__ = (Index("ix_disambiguation_queue_status_created", "status", "created_at"),)


class PersonMerge(Base):
    """Append-only audit of identity consolidations."""

    __tablename__ = "person_merges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    surviving_person_id: Mapped[int] = mapped_column(Integer, ForeignKey("persons.id"), nullable=False)
    # No foreign key: the merged person row may be deleted after consolidation.
    merged_person_id: Mapped[int] = mapped_column(Integer, nullable=False)
    merged_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    merged_by: Mapped[MergedBy] = mapped_column(Enum(MergedBy, native_enum=False), nullable=False)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

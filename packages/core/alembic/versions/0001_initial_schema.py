"""Initial identity-resolution schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "articles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.Text(), nullable=False, unique=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "persons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("canonical_name", sa.String(length=512), nullable=False),
        sa.Column("disambiguation", sa.Text(), nullable=True),
        sa.Column("quote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
    )
    op.create_index("ix_persons_canonical_name", "persons", ["canonical_name"])

    op.create_table(
        "person_aliases",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("alias", sa.String(length=512), nullable=False),
        sa.Column("alias_normalized", sa.String(length=512), nullable=False),
        sa.Column("alias_type", sa.String(length=32), nullable=False, server_default="variant"),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="extraction"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("person_id", "alias_normalized", name="uq_person_aliases_person_normalized"),
    )
    op.create_index("ix_person_aliases_normalized", "person_aliases", ["alias_normalized"])

    op.create_table(
        "person_phonetics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name_part", sa.String(length=256), nullable=False),
        sa.Column("phonetic_code", sa.String(length=64), nullable=False),
        sa.Column("part_type", sa.String(length=16), nullable=False, server_default="last"),
    )
    op.create_index("ix_person_phonetics_code_part", "person_phonetics", ["phonetic_code", "part_type"])

    op.create_table(
        "quotes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("quote_type", sa.String(length=16), nullable=False, server_default="direct"),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("canonical_quote_id", sa.Integer(), sa.ForeignKey("quotes.id"), nullable=True),
        sa.Column("source_urls", sa.JSON(), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_quotes_person", "quotes", ["person_id"])
    op.create_index("ix_quotes_canonical", "quotes", ["canonical_quote_id"])
    op.create_index("ix_quotes_created", "quotes", ["created_at"])

    op.create_table(
        "quote_articles",
        sa.Column("quote_id", sa.Integer(), sa.ForeignKey("quotes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("article_id", sa.Integer(), sa.ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "topics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False, unique=True),
        sa.Column("slug", sa.String(length=256), nullable=False),
    )
    op.create_table(
        "quote_topics",
        sa.Column("quote_id", sa.Integer(), sa.ForeignKey("quotes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("topic_id", sa.Integer(), sa.ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "keywords",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False, unique=True),
        sa.Column("name_normalized", sa.String(length=256), nullable=False),
        sa.Column("keyword_type", sa.String(length=32), nullable=False, server_default="concept"),
    )
    op.create_table(
        "quote_keywords",
        sa.Column("quote_id", sa.Integer(), sa.ForeignKey("quotes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("keyword_id", sa.Integer(), sa.ForeignKey("keywords.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "quote_relationships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("quote_id_a", sa.Integer(), sa.ForeignKey("quotes.id"), nullable=False),
        sa.Column("quote_id_b", sa.Integer(), sa.ForeignKey("quotes.id"), nullable=True),
        sa.Column("relationship", sa.String(length=32), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("canonical_quote_id", sa.Integer(), sa.ForeignKey("quotes.id"), nullable=True),
        sa.Column("source_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "disambiguation_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("new_name", sa.String(length=512), nullable=False),
        sa.Column("new_name_normalized", sa.String(length=512), nullable=False),
        sa.Column("new_context", sa.Text(), nullable=True),
        sa.Column("candidate_person_id", sa.Integer(), sa.ForeignKey("persons.id"), nullable=True),
        sa.Column("candidate_name", sa.String(length=512), nullable=True),
        sa.Column(
            "provisional_person_id",
            sa.Integer(),
            sa.ForeignKey("persons.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("similarity_score", sa.Float(), nullable=True),
        sa.Column("match_signals", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("resolved_by", sa.String(length=64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quote_id", sa.Integer(), sa.ForeignKey("quotes.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_disambiguation_queue_status_created", "disambiguation_queue", ["status", "created_at"])

    op.create_table(
        "person_merges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("surviving_person_id", sa.Integer(), sa.ForeignKey("persons.id"), nullable=False),
        sa.Column("merged_person_id", sa.Integer(), nullable=False),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("merged_by", sa.String(length=16), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("person_merges")
    op.drop_index("ix_disambiguation_queue_status_created", "disambiguation_queue")
    op.drop_table("disambiguation_queue")
    op.drop_table("quote_relationships")
    op.drop_table("quote_keywords")
    op.drop_table("keywords")
    op.drop_table("quote_topics")
    op.drop_table("topics")
    op.drop_table("quote_articles")
    op.drop_index("ix_quotes_created", "quotes")
    op.drop_index("ix_quotes_canonical", "quotes")
    op.drop_index("ix_quotes_person", "quotes")
    op.drop_table("quotes")
    op.drop_index("ix_person_phonetics_code_part", "person_phonetics")
    op.drop_table("person_phonetics")
    op.drop_index("ix_person_aliases_normalized", "person_aliases")
    op.drop_table("person_aliases")
    op.drop_index("ix_persons_canonical_name", "persons")
    op.drop_table("persons")
    op.drop_table("articles")

from __future__ import annotations

import enum


class QuoteType(str, enum.Enum):
    direct = "direct"
    indirect = "indirect"


class AliasType(str, enum.Enum):
    variant = "variant"
    abbreviation = "abbreviation"
    nickname = "nickname"
    title_form = "title_form"
    full_name = "full_name"


class AliasSource(str, enum.Enum):
    extraction = "extraction"
    llm = "llm"
    fuzzy_match = "fuzzy_match"
    user = "user"
    knowledge_graph = "knowledge_graph"


class NamePartType(str, enum.Enum):
    first = "first"
    middle = "middle"
    last = "last"


class QuoteRelationshipType(str, enum.Enum):
    identical = "identical"
    subset = "subset"
    paraphrase = "paraphrase"
    same_topic = "same_topic"


class ReviewStatus(str, enum.Enum):
    pending = "pending"
    merged = "merged"
    rejected = "rejected"
    new_person = "new_person"


class MergedBy(str, enum.Enum):
    auto = "auto"
    user = "user"
    llm = "llm"


class KeywordType(str, enum.Enum):
    person = "person"
    organization = "organization"
    location = "location"
    event = "event"
    legislation = "legislation"
    concept = "concept"

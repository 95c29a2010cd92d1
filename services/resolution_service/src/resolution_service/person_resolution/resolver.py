"""
Speaker name -> person id.

Candidate discovery runs in a fixed order (exact normalized alias, phonetic
surname lookup, fuzzy surname-prefix scan); every non-exact candidate must
pass the first-name compatibility gate. The best candidate's confidence
then falls into one of three bands:

    >= auto_merge_threshold           Resolved       attach, learn the alias
    [review_threshold, auto)          PendingReview  queue for a human, attach provisionally
    below review / no candidates      NewPerson      create the person

Ambiguity is never an error: it is the PendingReview result.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Union

import jellyfish
from sqlalchemy.orm import Session

from quotelog_core.db.enums import AliasSource, AliasType, MergedBy, NamePartType
from quotelog_core.db.models import Person, PersonAlias
from quotelog_core.db.session import unit_of_work
from resolution_service.llm.client import LLMClient
from resolution_service.llm.validate import ContractError, validate_json
from resolution_service.person_resolution.names import NameParts, normalize_name, split_name_parts, title_words
from resolution_service.person_resolution.nicknames import FirstNameRelation, first_name_relation
from resolution_service.person_resolution.phonetics import phonetic_codes, phonetic_rows
from resolution_service.person_resolution.review_queue import record_person_merge
from resolution_service.quote_dedup.merge import ArticleRef
from resolution_service.repositories import PersonRepository
from resolution_service.settings import Settings

logger = logging.getLogger(__name__)

FUZZY_SCAN_LIMIT = 200
TITLE_BONUS = 0.10
LLM_SAME_BONUS = 0.2
LLM_DIFFERENT_PENALTY = 0.3
PHONETIC_PENALTY = 0.1
AMBIGUITY_MARGIN = 0.05

_RELATION_CONFIDENCE: dict[str, float] = {
    "identical": 0.92,
    "nickname": 0.92,
    "initial": 0.8,
    "missing": 0.72,
}

_RELATION_ALIAS_TYPE: dict[str, AliasType] = {
    "nickname": AliasType.nickname,
    "initial": AliasType.abbreviation,
}


@dataclass(frozen=True)
class Resolved:
    person_id: int
    confidence: float


@dataclass(frozen=True)
class PendingReview:
    """Attached provisionally to `person_id`; `candidate_id` is the suspected match."""

    person_id: int
    candidate_id: int | None
    queue_item_id: int
    confidence: float


@dataclass(frozen=True)
class NewPerson:
    person_id: int


Resolution = Union[Resolved, PendingReview, NewPerson]


@dataclass
class MatchSignals:
    exact_alias: bool = False
    alias_confidence: float | None = None
    first_name: FirstNameRelation | None = None
    surname: Literal["exact", "phonetic", "fuzzy"] | None = None
    name_score: float = 0.0
    matched_alias: str | None = None
    title_overlap: bool = False
    llm_verdict: Literal["same", "different"] | None = None
    llm_reasoning: str | None = None
    ambiguous: bool = False

    def to_json(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, False)}


@dataclass
class ScoredCandidate:
    person_id: int
    canonical_name: str
    disambiguation: str | None
    signals: MatchSignals
    confidence: float
    aliases: list[str] = field(default_factory=list)


def base_confidence(signals: MatchSignals, *, fuzzy_score: float | None = None) -> float:
    """Name-only confidence before context adjustments."""
    if signals.exact_alias:
        return signals.alias_confidence if signals.alias_confidence is not None else 1.0
    if signals.surname == "fuzzy":
        return fuzzy_score if fuzzy_score is not None else signals.name_score
    confidence = _RELATION_CONFIDENCE.get(signals.first_name or "", 0.0)
    if signals.surname == "phonetic":
        confidence -= PHONETIC_PENALTY
    return round(confidence, 4)


def adjusted_confidence(base: float, signals: MatchSignals) -> float:
    confidence = base
    if signals.title_overlap:
        confidence = min(confidence + TITLE_BONUS, 1.0)
    if signals.llm_verdict == "same":
        confidence = min(confidence + LLM_SAME_BONUS, 1.0)
    elif signals.llm_verdict == "different":
        confidence = max(confidence - LLM_DIFFERENT_PENALTY, 0.0)
    return round(confidence, 4)


DISAMBIGUATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "best_match": {"type": ["integer", "null"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "reasoning": {"type": "string"},
        "is_new_person": {"type": "boolean"},
    },
    "required": ["best_match", "confidence", "reasoning", "is_new_person"],
}

DISAMBIGUATION_PROMPT = """You are a name disambiguation system for news articles.

A new name has been extracted from a news article. Determine if it refers to an existing person in our database.

New name: "{name}"
New context: "{context}"
Article source: {source}

Existing candidates:
{candidates}

For each candidate, assess if the new name refers to that person.
Consider: name similarity, nicknames, abbreviations, shared context, and any disambiguating details.

Return JSON:
{{
  "best_match": null or candidate_number (1-indexed),
  "confidence": 0.0 to 1.0,
  "reasoning": "brief explanation",
  "is_new_person": true or false
}}

If no candidate is a good match, set best_match to null and is_new_person to true.
If ambiguous between candidates, set confidence below 0.7 and explain why.
"""


@dataclass(frozen=True)
class DisambiguationVerdict:
    best_match: int | None
    confidence: float
    reasoning: str | None
    is_new_person: bool


class PersonResolver:
    def __init__(
        self,
        session: Session,
        persons: PersonRepository,
        *,
        llm: LLMClient | None = None,
        auto_merge_threshold: float = 0.9,
        review_threshold: float = 0.7,
        fuzzy_cutoff: float = 0.85,
        provisional_attach: Literal["candidate", "new_person"] = "candidate",
        llm_disambiguation_enabled: bool = True,
    ) -> None:
        self.session = session
        self.persons = persons
        self.llm = llm
        self.auto_merge_threshold = auto_merge_threshold
        self.review_threshold = review_threshold
        self.fuzzy_cutoff = fuzzy_cutoff
        self.provisional_attach = provisional_attach
        self.llm_disambiguation_enabled = llm_disambiguation_enabled

    @classmethod
    def from_settings(
        cls, session: Session, persons: PersonRepository, settings: Settings, *, llm: LLMClient | None = None
    ) -> "PersonResolver":
        return cls(
            session,
            persons,
            llm=llm,
            auto_merge_threshold=settings.auto_merge_threshold,
            review_threshold=settings.review_threshold,
            fuzzy_cutoff=settings.fuzzy_cutoff,
            provisional_attach=settings.provisional_attach,
            llm_disambiguation_enabled=settings.llm_disambiguation_enabled,
        )

    async def resolve(
        self,
        speaker_name: str,
        speaker_title: str | None = None,
        context: str | None = None,
        article: ArticleRef | None = None,
    ) -> Resolution:
        speaker_name = " ".join(speaker_name.split())
        normalized = normalize_name(speaker_name) or speaker_name.lower()
        parts = split_name_parts(normalized)

        candidates = self.find_candidates(normalized, parts, speaker_title)
        ranked = sorted(candidates.values(), key=lambda c: (-c.confidence, c.person_id))

        # A single trusted alias hit is decisive; looser surname matches cannot outvote it.
        exact = [c for c in ranked if c.signals.exact_alias]
        if len(exact) == 1 and exact[0].confidence >= self.auto_merge_threshold:
            ranked = exact

        picked: ScoredCandidate | None = None
        contenders = [c for c in ranked if c.confidence >= self.review_threshold]
        if len(contenders) > 1:
            picked = await self._disambiguate(speaker_name, context or speaker_title, contenders, article)
            ranked = sorted(ranked, key=lambda c: (-c.confidence, c.person_id))
            if picked is None:
                ceiling = round(self.auto_merge_threshold - AMBIGUITY_MARGIN, 4)
                for candidate in ranked:
                    if candidate.confidence >= self.review_threshold:
                        candidate.signals.ambiguous = True
                        candidate.confidence = min(candidate.confidence, ceiling)

        best = picked or (ranked[0] if ranked else None)
        if best is None or best.confidence < self.review_threshold:
            person = self._create_person(speaker_name, speaker_title, normalized, parts)
            logger.info("new person created", extra={"person_id": person.id, "speaker_name": speaker_name})
            return NewPerson(person_id=person.id)

        if best.confidence >= self.auto_merge_threshold:
            self._attach(best, speaker_name, normalized, llm_decided=picked is not None)
            logger.info(
                "person resolved",
                extra={"person_id": best.person_id, "speaker_name": speaker_name, "confidence": best.confidence},
            )
            return Resolved(person_id=best.person_id, confidence=best.confidence)

        return self._queue(best, speaker_name, speaker_title, context, normalized, parts)

    def find_candidates(
        self, normalized: str, parts: NameParts, speaker_title: str | None = None
    ) -> dict[int, ScoredCandidate]:
        """Every plausible person for `normalized`, keyed by person id, with name-only scores plus title bonus."""
        found: dict[int, tuple[MatchSignals, float]] = {}

        def offer(person_id: int, signals: MatchSignals, score: float) -> None:
            current = found.get(person_id)
            if current is None or score > current[1]:
                found[person_id] = (signals, score)

        for alias in self.persons.aliases_by_normalized(normalized):
            signals = MatchSignals(
                exact_alias=True,
                alias_confidence=alias.confidence,
                first_name="identical",
                surname="exact",
                name_score=1.0,
                matched_alias=alias.alias,
            )
            offer(alias.person_id, signals, base_confidence(signals))

        query_codes = set(phonetic_codes(parts.last))
        phonetic_ids = self.persons.person_ids_by_phonetic(query_codes, NamePartType.last)
        phonetic_aliases = [a for group in self.persons.aliases_for_persons(phonetic_ids).values() for a in group]
        prefix_aliases = self.persons.aliases_by_last_name_prefix(parts.last[:2], FUZZY_SCAN_LIMIT)

        for alias in [*phonetic_aliases, *prefix_aliases]:
            scored = self._score_alias(normalized, parts, query_codes, alias)
            if scored is not None:
                offer(alias.person_id, *scored)

        out: dict[int, ScoredCandidate] = {}
        wanted_titles = title_words(speaker_title)
        for person_id, (signals, score) in found.items():
            person = self.persons.get_person(person_id)
            if person is None:
                continue
            if wanted_titles and wanted_titles & title_words(person.disambiguation):
                signals.title_overlap = True
            out[person_id] = ScoredCandidate(
                person_id=person_id,
                canonical_name=person.canonical_name,
                disambiguation=person.disambiguation,
                signals=signals,
                confidence=adjusted_confidence(score, signals),
            )
        return out

    def _score_alias(
        self, normalized: str, parts: NameParts, query_codes: set[str], alias: PersonAlias
    ) -> tuple[MatchSignals, float] | None:
        alias_parts = split_name_parts(alias.alias_normalized)
        relation = first_name_relation(parts.first, alias_parts.first)
        if relation is None:
            return None

        name_score = jellyfish.jaro_winkler_similarity(normalized, alias.alias_normalized)
        signals = MatchSignals(first_name=relation, name_score=round(name_score, 4), matched_alias=alias.alias)
        if alias_parts.last == parts.last:
            signals.surname = "exact"
        elif query_codes & set(phonetic_codes(alias_parts.last)):
            signals.surname = "phonetic"
        elif name_score >= self.fuzzy_cutoff:
            signals.surname = "fuzzy"
        else:
            return None
        return signals, base_confidence(signals, fuzzy_score=name_score)

    async def _disambiguate(
        self,
        speaker_name: str,
        context: str | None,
        contenders: list[ScoredCandidate],
        article: ArticleRef | None,
    ) -> ScoredCandidate | None:
        """
        Ask the LLM to pick among several contenders; returns the picked one.

        A verdict below `review_threshold` is no decision and leaves every
        score untouched. A pick with confidence in `[review, auto)` is queued
        against the picked candidate; only a pick at or above `auto` resolves.
        """
        if not (self.llm_disambiguation_enabled and self.llm is not None):
            return None

        aliases = self.persons.aliases_for_persons(c.person_id for c in contenders)
        for candidate in contenders:
            candidate.aliases = [a.alias for a in aliases.get(candidate.person_id, [])][:10]

        verdict = await self.llm_disambiguate(speaker_name, context, contenders, article)
        if verdict is None:
            return None
        if verdict.confidence < self.review_threshold:
            logger.info(
                "llm disambiguation inconclusive",
                extra={"speaker_name": speaker_name, "confidence": verdict.confidence},
            )
            return None

        picked: ScoredCandidate | None = None
        if verdict.best_match is not None and not verdict.is_new_person and 1 <= verdict.best_match <= len(contenders):
            picked = contenders[verdict.best_match - 1]

        for candidate in contenders:
            candidate.signals.llm_verdict = "same" if candidate is picked else "different"
            candidate.signals.llm_reasoning = verdict.reasoning
            candidate.confidence = adjusted_confidence(
                base_confidence(candidate.signals, fuzzy_score=candidate.signals.name_score),
                candidate.signals,
            )

        if picked is not None:
            if verdict.confidence >= self.auto_merge_threshold:
                picked.confidence = max(picked.confidence, round(verdict.confidence, 4))
            else:
                picked.confidence = round(verdict.confidence, 4)
        return picked

    async def llm_disambiguate(
        self,
        speaker_name: str,
        context: str | None,
        contenders: list[ScoredCandidate],
        article: ArticleRef | None,
    ) -> DisambiguationVerdict | None:
        lines = []
        for i, c in enumerate(contenders, start=1):
            person = self.persons.get_person(c.person_id)
            metadata = (person.person_metadata if person else None) or {}
            lines.append(
                f'{i}. "{c.canonical_name}" ({c.disambiguation or "no description"})\n'
                f"   Known aliases: {', '.join(c.aliases) or 'none'}\n"
                f"   Recent topics: {', '.join(metadata.get('topics', [])[:3]) or 'unknown'}\n"
                f"   Organizations: {', '.join(metadata.get('organizations', [])) or 'unknown'}"
            )
        prompt = DISAMBIGUATION_PROMPT.format(
            name=speaker_name,
            context=context or "No context available",
            source=(article.url if article and article.url else "Unknown"),
            candidates="\n".join(lines),
        )
        try:
            response = await self.llm.complete_json(prompt=prompt, schema=DISAMBIGUATION_SCHEMA)
        except Exception as exc:
            logger.error("llm disambiguation failed", extra={"speaker_name": speaker_name, "error": str(exc)})
            return None

        payload = response.json
        try:
            validate_json(payload, DISAMBIGUATION_SCHEMA)
        except ContractError as exc:
            logger.warning(
                "llm disambiguation returned malformed payload",
                extra={"speaker_name": speaker_name, "error": exc.message},
            )
            return None
        return DisambiguationVerdict(
            best_match=int(payload["best_match"]) if payload["best_match"] is not None else None,
            confidence=float(payload["confidence"]),
            reasoning=payload["reasoning"],
            is_new_person=payload["is_new_person"],
        )

    def _attach(self, best: ScoredCandidate, speaker_name: str, normalized: str, *, llm_decided: bool) -> None:
        if best.signals.exact_alias:
            with unit_of_work(self.session):
                self.persons.touch_seen(best.person_id)
            return

        if llm_decided:
            source, merged_by = AliasSource.llm, MergedBy.llm
        elif best.signals.surname in ("phonetic", "fuzzy"):
            source, merged_by = AliasSource.fuzzy_match, MergedBy.auto
        else:
            source, merged_by = AliasSource.extraction, MergedBy.auto

        with unit_of_work(self.session):
            added = self.persons.add_alias(
                person_id=best.person_id,
                alias=speaker_name,
                alias_normalized=normalized,
                alias_type=_RELATION_ALIAS_TYPE.get(best.signals.first_name or "", AliasType.variant),
                confidence=best.confidence,
                source=source,
            )
            record_person_merge(
                self.persons,
                surviving_person_id=best.person_id,
                merged_person_id=best.person_id,
                merged_by=merged_by,
                confidence=best.confidence,
                reason=f'"{speaker_name}" matched via {best.signals.matched_alias or best.canonical_name}',
            )
            self.persons.touch_seen(best.person_id)
        if added:
            logger.debug("alias added", extra={"person_id": best.person_id, "alias": speaker_name})

    def _queue(
        self,
        best: ScoredCandidate,
        speaker_name: str,
        speaker_title: str | None,
        context: str | None,
        normalized: str,
        parts: NameParts,
    ) -> PendingReview:
        with unit_of_work(self.session):
            provisional: Person | None = None
            if self.provisional_attach == "new_person":
                provisional = self._new_person_rows(speaker_name, speaker_title, normalized, parts)
            item = self.persons.enqueue_review(
                new_name=speaker_name,
                new_name_normalized=normalized,
                new_context=context or speaker_title,
                candidate_person_id=best.person_id,
                candidate_name=best.canonical_name,
                provisional_person_id=provisional.id if provisional else None,
                similarity_score=best.confidence,
                match_signals=best.signals.to_json(),
            )
            attached_to = provisional.id if provisional else best.person_id
            result = PendingReview(
                person_id=attached_to,
                candidate_id=best.person_id,
                queue_item_id=item.id,
                confidence=best.confidence,
            )

        logger.info(
            "identity queued for review",
            extra={
                "queue_item_id": result.queue_item_id,
                "candidate_id": best.person_id,
                "speaker_name": speaker_name,
                "confidence": best.confidence,
            },
        )
        return result

    def _new_person_rows(self, speaker_name: str, speaker_title: str | None, normalized: str, parts: NameParts) -> Person:
        return self.persons.create_person(
            canonical_name=speaker_name,
            disambiguation=speaker_title,
            alias_normalized=normalized,
            phonetics=phonetic_rows(parts),
        )

    def _create_person(self, speaker_name: str, speaker_title: str | None, normalized: str, parts: NameParts) -> Person:
        with unit_of_work(self.session):
            return self._new_person_rows(speaker_name, speaker_title, normalized, parts)

"""End-to-end tests for speaker name resolution against an in-memory store."""

from sqlalchemy import func, select

from quotelog_core.db.enums import AliasSource, AliasType, MergedBy, ReviewStatus
from quotelog_core.db.models import DisambiguationQueueItem, Person, PersonAlias, PersonMerge
from resolution_service.errors import ServiceUnavailableError
from resolution_service.person_resolution.resolver import (
    MatchSignals,
    NewPerson,
    PendingReview,
    PersonResolver,
    Resolved,
    adjusted_confidence,
    base_confidence,
)

from conftest import FakeLLM


def _resolver(session, persons, **kwargs) -> PersonResolver:
    return PersonResolver(session, persons, **kwargs)


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


class TestConfidence:
    def test_relation_bands(self):
        assert base_confidence(MatchSignals(first_name="nickname", surname="exact")) == 0.92
        assert base_confidence(MatchSignals(first_name="initial", surname="exact")) == 0.8
        assert base_confidence(MatchSignals(first_name="missing", surname="exact")) == 0.72

    def test_phonetic_surname_penalty(self):
        assert base_confidence(MatchSignals(first_name="identical", surname="phonetic")) == 0.82

    def test_fuzzy_uses_name_score(self):
        assert base_confidence(MatchSignals(first_name="identical", surname="fuzzy"), fuzzy_score=0.87) == 0.87

    def test_exact_alias_uses_alias_confidence(self):
        assert base_confidence(MatchSignals(exact_alias=True, alias_confidence=0.75)) == 0.75

    def test_adjustments(self):
        assert adjusted_confidence(0.8, MatchSignals(title_overlap=True)) == 0.9
        assert adjusted_confidence(0.92, MatchSignals(llm_verdict="same")) == 1.0
        assert adjusted_confidence(0.2, MatchSignals(llm_verdict="different")) == 0.0


class TestResolve:
    async def test_shared_surname_with_different_first_name_is_new_person(self, session, persons, seed_person):
        jesse = seed_person("Jesse Jackson")
        assert jesse == 1

        result = await _resolver(session, persons).resolve("Jaren Jackson Jr.", "basketball player")

        assert isinstance(result, NewPerson)
        assert result.person_id != 1
        new_person = session.get(Person, result.person_id)
        assert new_person.canonical_name == "Jaren Jackson Jr."
        assert new_person.disambiguation == "basketball player"
        aliases = session.scalars(select(PersonAlias).where(PersonAlias.person_id == result.person_id)).all()
        assert [(a.alias_normalized, a.alias_type) for a in aliases] == [("jaren jackson", AliasType.full_name)]
        assert new_person.phonetics

    async def test_nickname_resolves_to_existing_person(self, session, persons, seed_person):
        seed_person("William Clinton", person_id=7)

        result = await _resolver(session, persons).resolve("Bill Clinton")

        assert isinstance(result, Resolved)
        assert result.person_id == 7
        assert result.confidence >= 0.9
        alias = session.scalar(select(PersonAlias).where(PersonAlias.alias_normalized == "bill clinton"))
        assert alias.person_id == 7
        assert alias.alias_type is AliasType.nickname
        merge = session.scalar(select(PersonMerge))
        assert merge.surviving_person_id == 7
        assert merge.merged_by is MergedBy.auto

    async def test_known_alias_is_not_relearned(self, session, persons, seed_person):
        seed_person("William Clinton", person_id=7)
        resolver = _resolver(session, persons)

        first = await resolver.resolve("Bill Clinton")
        second = await resolver.resolve("Bill Clinton")
        third = await resolver.resolve("William Clinton")

        assert first.person_id == second.person_id == third.person_id == 7
        assert _count(session, PersonMerge) == 1
        assert _count(session, PersonAlias) == 2

    async def test_honorific_variant_matches_exact_alias(self, session, persons, seed_person):
        seed_person("Ted Cruz")
        result = await _resolver(session, persons).resolve("Sen. Ted Cruz")
        assert isinstance(result, Resolved)
        assert result.confidence == 1.0

    async def test_initial_is_queued_and_attached_to_candidate(self, session, persons, seed_person):
        seed_person("William Clinton", person_id=7)

        result = await _resolver(session, persons).resolve("W. Clinton", context="said on Tuesday")

        assert isinstance(result, PendingReview)
        assert result.person_id == 7
        assert result.candidate_id == 7
        item = session.get(DisambiguationQueueItem, result.queue_item_id)
        assert item.status is ReviewStatus.pending
        assert item.candidate_person_id == 7
        assert item.candidate_name == "William Clinton"
        assert item.new_name_normalized == "w. clinton"
        assert item.new_context == "said on Tuesday"
        assert item.similarity_score == 0.8
        assert item.match_signals["first_name"] == "initial"
        assert item.provisional_person_id is None

    async def test_pending_can_attach_to_provisional_person(self, session, persons, seed_person):
        seed_person("William Clinton", person_id=7)

        result = await _resolver(session, persons, provisional_attach="new_person").resolve("Clinton")

        assert isinstance(result, PendingReview)
        assert result.candidate_id == 7
        assert result.person_id != 7
        item = session.get(DisambiguationQueueItem, result.queue_item_id)
        assert item.provisional_person_id == result.person_id
        assert item.match_signals["first_name"] == "missing"

    async def test_title_overlap_lifts_initial_match(self, session, persons, seed_person):
        seed_person("Ted Cruz", disambiguation="Texas senator")

        result = await _resolver(session, persons).resolve("T. Cruz", "Senator from Texas")

        assert isinstance(result, Resolved)
        alias = session.scalar(select(PersonAlias).where(PersonAlias.alias_normalized == "t. cruz"))
        assert alias.alias_type is AliasType.abbreviation

    async def test_no_candidates_creates_person(self, session, persons):
        result = await _resolver(session, persons).resolve("Angela Merkel")
        assert isinstance(result, NewPerson)
        assert _count(session, Person) == 1


class TestAmbiguity:
    async def test_several_contenders_without_llm_go_to_review(self, session, persons, seed_person):
        robert = seed_person("Robert Smith")
        seed_person("Bob Smith")

        result = await _resolver(session, persons).resolve("Bobby Smith")

        assert isinstance(result, PendingReview)
        assert result.candidate_id == robert
        assert result.confidence == 0.85
        item = session.get(DisambiguationQueueItem, result.queue_item_id)
        assert item.match_signals["ambiguous"] is True

    async def test_llm_pick_resolves(self, session, persons, seed_person):
        seed_person("Robert Smith")
        bob = seed_person("Bob Smith")
        llm = FakeLLM([{"best_match": 2, "confidence": 0.9, "reasoning": "same club", "is_new_person": False}])

        result = await _resolver(session, persons, llm=llm).resolve("Bobby Smith", context="club chairman")

        assert isinstance(result, Resolved)
        assert result.person_id == bob
        assert "Bob Smith" in llm.prompts[0]
        assert "club chairman" in llm.prompts[0]
        merge = session.scalar(select(PersonMerge))
        assert merge.merged_by is MergedBy.llm
        alias = session.scalar(select(PersonAlias).where(PersonAlias.alias_normalized == "bobby smith"))
        assert alias.source is AliasSource.llm

    async def test_unsure_llm_pick_is_no_decision(self, session, persons, seed_person):
        robert = seed_person("Robert Smith")
        seed_person("Bob Smith")
        llm = FakeLLM([{"best_match": 2, "confidence": 0.2, "reasoning": "ambiguous, unsure", "is_new_person": False}])

        result = await _resolver(session, persons, llm=llm).resolve("Bobby Smith")

        assert isinstance(result, PendingReview)
        assert result.candidate_id == robert
        assert result.confidence == 0.85
        item = session.get(DisambiguationQueueItem, result.queue_item_id)
        assert item.match_signals["ambiguous"] is True
        assert "llm_verdict" not in item.match_signals
        assert _count(session, PersonMerge) == 0

    async def test_moderate_llm_pick_is_queued_against_pick(self, session, persons, seed_person):
        seed_person("Robert Smith")
        bob = seed_person("Bob Smith")
        llm = FakeLLM([{"best_match": 2, "confidence": 0.8, "reasoning": "probably the chairman", "is_new_person": False}])

        result = await _resolver(session, persons, llm=llm).resolve("Bobby Smith")

        assert isinstance(result, PendingReview)
        assert result.candidate_id == bob
        assert result.confidence == 0.8
        item = session.get(DisambiguationQueueItem, result.queue_item_id)
        assert item.match_signals["llm_verdict"] == "same"
        alias = session.scalar(select(PersonAlias).where(PersonAlias.alias_normalized == "bobby smith"))
        assert alias is None

    async def test_llm_new_person_verdict_creates_person(self, session, persons, seed_person):
        seed_person("Robert Smith")
        seed_person("Bob Smith")
        llm = FakeLLM([{"best_match": None, "confidence": 0.8, "reasoning": "different", "is_new_person": True}])

        result = await _resolver(session, persons, llm=llm).resolve("Bobby Smith")

        assert isinstance(result, NewPerson)

    async def test_llm_failure_keeps_review_path(self, session, persons, seed_person):
        seed_person("Robert Smith")
        seed_person("Bob Smith")
        llm = FakeLLM(error=ServiceUnavailableError("llm", "timed out"))

        result = await _resolver(session, persons, llm=llm).resolve("Bobby Smith")

        assert isinstance(result, PendingReview)

    async def test_llm_disabled_is_not_called(self, session, persons, seed_person):
        seed_person("Robert Smith")
        seed_person("Bob Smith")
        llm = FakeLLM([{"best_match": 1, "confidence": 0.9, "reasoning": "", "is_new_person": False}])

        result = await _resolver(session, persons, llm=llm, llm_disambiguation_enabled=False).resolve("Bobby Smith")

        assert isinstance(result, PendingReview)
        assert llm.prompts == []

    async def test_llm_payload_outside_schema_is_ignored(self, session, persons, seed_person):
        seed_person("Robert Smith")
        seed_person("Bob Smith")
        llm = FakeLLM([{"best_match": "two", "confidence": 0.9}])

        result = await _resolver(session, persons, llm=llm).resolve("Bobby Smith")

        assert isinstance(result, PendingReview)
        assert len(llm.prompts) == 1

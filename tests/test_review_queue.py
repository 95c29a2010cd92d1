"""Tests for the disambiguation review queue and its merge audit trail."""

import pytest
from sqlalchemy import func, select

from quotelog_core.db.enums import AliasSource, AliasType, MergedBy, ReviewStatus
from quotelog_core.db.models import DisambiguationQueueItem, Person, PersonAlias, PersonMerge, Quote
from resolution_service.errors import ReviewConflictError, ReviewItemNotFoundError
from resolution_service.person_resolution.resolver import PendingReview, Resolved
from resolution_service.pipeline import QuoteCandidate
from resolution_service.quote_dedup.merge import ArticleRef, QuoteData

ARTICLE = ArticleRef(url="https://news.example.com/budget")


def _count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


async def _ingest_pending(pipeline, speaker="W. Clinton", text="We will balance the budget this decade"):
    outcome = await pipeline.ingest_candidate(QuoteCandidate(text=text, speaker_name=speaker), ARTICLE)
    assert isinstance(outcome.resolution, PendingReview)
    return outcome


class TestMerge:
    async def test_merge_repoints_quote_and_audits_once(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline(provisional_attach="new_person")
        outcome = await _ingest_pending(pipeline)
        provisional_id = outcome.resolution.person_id
        item_id = outcome.resolution.queue_item_id
        assert session.get(DisambiguationQueueItem, item_id).quote_id == outcome.quote.id
        assert session.get(Person, provisional_id).quote_count == 1

        result = pipeline.queue.merge(item_id)

        assert result.action == "merged"
        assert result.person_id == 7
        assert session.get(Quote, outcome.quote.id).person_id == 7
        assert session.get(Person, 7).quote_count == 1
        assert session.get(Person, provisional_id) is None
        item = session.get(DisambiguationQueueItem, item_id)
        assert item.status is ReviewStatus.merged
        assert item.resolved_by == "user"
        assert item.resolved_at is not None
        merges = session.scalars(select(PersonMerge)).all()
        assert len(merges) == 1
        assert merges[0].surviving_person_id == 7
        assert merges[0].merged_person_id == provisional_id
        assert merges[0].merged_by is MergedBy.user
        alias = session.scalar(
            select(PersonAlias).where(PersonAlias.person_id == 7, PersonAlias.alias_normalized == "w. clinton")
        )
        assert alias.alias_type is AliasType.variant
        assert alias.source is AliasSource.user

    async def test_merge_absorbs_provisional_person(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline(provisional_attach="new_person")
        first = await _ingest_pending(pipeline)
        provisional_id = first.resolution.person_id
        second = await pipeline.ingest_candidate(
            QuoteCandidate(text="Health care is a right for every family", speaker_name="W. Clinton"), ARTICLE
        )
        assert second.resolution.person_id == provisional_id

        pipeline.queue.merge(first.resolution.queue_item_id)

        owners = session.execute(select(Quote.id, Quote.person_id).order_by(Quote.id)).all()
        assert owners == [(first.quote.id, 7), (second.quote.id, 7)]
        assert session.scalars(select(Person.id)).all() == [7]
        assert session.get(Person, 7).quote_count == 2
        assert _count(session, PersonAlias) == 2

        again = await pipeline.resolver.resolve("W. Clinton")
        assert isinstance(again, Resolved)
        assert again.person_id == 7

    async def test_second_merge_conflicts(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        outcome = await _ingest_pending(pipeline)
        pipeline.queue.merge(outcome.resolution.queue_item_id)

        with pytest.raises(ReviewConflictError):
            pipeline.queue.merge(outcome.resolution.queue_item_id)

        assert _count(session, PersonMerge) == 1

    def test_missing_item(self, session, persons):
        from resolution_service.person_resolution.review_queue import DisambiguationQueue

        with pytest.raises(ReviewItemNotFoundError):
            DisambiguationQueue(session, persons).merge(12345)

    def test_merge_without_candidate_conflicts(self, session, persons):
        from resolution_service.person_resolution.review_queue import DisambiguationQueue

        item = persons.enqueue_review(new_name="Nobody", new_name_normalized="nobody", candidate_person_id=None)
        session.commit()

        with pytest.raises(ReviewConflictError):
            DisambiguationQueue(session, persons).merge(item.id)


class TestReject:
    async def test_reject_reuses_provisional_person(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline(provisional_attach="new_person")
        outcome = await _ingest_pending(pipeline)
        provisional_id = outcome.resolution.person_id

        result = pipeline.queue.reject(outcome.resolution.queue_item_id)

        assert result.action == "new_person"
        assert result.person_id == provisional_id
        assert session.get(Quote, outcome.quote.id).person_id == provisional_id
        assert session.get(DisambiguationQueueItem, outcome.resolution.queue_item_id).status is ReviewStatus.new_person
        assert _count(session, PersonMerge) == 0

    async def test_reject_moves_quote_off_candidate(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        outcome = await _ingest_pending(pipeline)
        assert outcome.resolution.person_id == 7
        assert session.get(Person, 7).quote_count == 1

        result = pipeline.queue.reject(outcome.resolution.queue_item_id)

        assert result.person_id not in (None, 7)
        assert session.get(Quote, outcome.quote.id).person_id == result.person_id
        assert session.get(Person, 7).quote_count == 0
        new_person = session.get(Person, result.person_id)
        assert new_person.canonical_name == "W. Clinton"
        assert new_person.quote_count == 1
        alias = session.scalar(select(PersonAlias).where(PersonAlias.person_id == result.person_id))
        assert alias.alias_type is AliasType.full_name
        assert alias.source is AliasSource.user


class TestSkipAndList:
    async def test_skip_moves_item_to_back(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        first = await pipeline.resolve_person("W. Clinton")
        second = await pipeline.resolve_person("Clinton")
        assert [i.id for i in pipeline.queue.list_pending().items] == [first.queue_item_id, second.queue_item_id]

        result = pipeline.queue.skip(first.queue_item_id)

        assert result.action == "skipped"
        assert [i.id for i in pipeline.queue.list_pending().items] == [second.queue_item_id, first.queue_item_id]
        assert session.get(DisambiguationQueueItem, first.queue_item_id).status is ReviewStatus.pending

    async def test_skip_resolved_item_conflicts(self, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        pending = await pipeline.resolve_person("W. Clinton")
        pipeline.queue.merge(pending.queue_item_id)

        with pytest.raises(ReviewConflictError):
            pipeline.queue.skip(pending.queue_item_id)
        with pytest.raises(ReviewItemNotFoundError):
            pipeline.queue.skip(999)

    async def test_list_pending_enriches_candidate(self, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        long_text = "It depends on what the meaning of the word is is. " * 4
        await pipeline.insert_and_deduplicate(QuoteData(text=long_text), 7, ARTICLE)
        await pipeline.resolve_person("W. Clinton")

        page = pipeline.queue.list_pending()

        assert page.total == 1
        view = page.items[0]
        assert view.candidate_person_id == 7
        assert view.candidate_quote_count == 1
        assert view.candidate_aliases == ["William Clinton"]
        assert view.candidate_recent_quotes == [long_text[:100] + "..."]
        assert view.match_signals["first_name"] == "initial"

    async def test_stats(self, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        pending = await pipeline.resolve_person("W. Clinton")
        await pipeline.resolve_person("Clinton")
        assert pipeline.queue.stats().pending == 2
        assert pipeline.queue.stats().resolved_today == 0

        pipeline.queue.merge(pending.queue_item_id)

        stats = pipeline.queue.stats()
        assert stats.pending == 1
        assert stats.resolved_today == 1


class TestBatch:
    async def test_failures_do_not_roll_back_siblings(self, session, persons, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        pending = await pipeline.resolve_person("W. Clinton")
        orphan = persons.enqueue_review(new_name="Nobody", new_name_normalized="nobody", candidate_person_id=None)
        session.commit()
        orphan_id = orphan.id

        results = pipeline.queue.batch("merge", [pending.queue_item_id, 999, orphan_id, pending.queue_item_id])

        assert [r["success"] for r in results] == [True, False, False, False]
        assert results[0] == {"id": pending.queue_item_id, "success": True, "action": "merged", "person_id": 7}
        assert "not found" in results[1]["reason"]
        assert "no candidate" in results[2]["reason"]
        assert "already resolved" in results[3]["reason"]
        session.expire_all()
        assert session.get(DisambiguationQueueItem, pending.queue_item_id).status is ReviewStatus.merged
        assert session.get(DisambiguationQueueItem, orphan_id).status is ReviewStatus.pending
        assert _count(session, PersonMerge) == 1

    async def test_batch_reject(self, session, seed_person, make_pipeline):
        seed_person("William Clinton", person_id=7)
        pipeline = make_pipeline()
        a = await pipeline.resolve_person("W. Clinton")
        b = await pipeline.resolve_person("Clinton")

        results = pipeline.queue.batch("reject", [a.queue_item_id, b.queue_item_id])

        assert all(r["success"] and r["action"] == "new_person" for r in results)
        assert len({r["person_id"] for r in results}) == 2
        assert pipeline.queue.stats().pending == 0

    def test_unknown_action(self, session, persons):
        from resolution_service.person_resolution.review_queue import DisambiguationQueue

        with pytest.raises(ValueError):
            DisambiguationQueue(session, persons).batch("delete", [1])

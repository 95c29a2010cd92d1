"""
Human-in-the-loop resolution of ambiguous identities.

Items move exactly once from `pending` to a terminal status (`merged` or
`new_person`); `skip` only pushes an item to the back of the queue. Every
merge appends one `PersonMerge` audit row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quotelog_core.db.enums import AliasSource, AliasType, MergedBy, ReviewStatus
from quotelog_core.db.models import DisambiguationQueueItem, PersonMerge, utcnow
from quotelog_core.db.session import unit_of_work
from resolution_service.errors import ReviewConflictError, ReviewItemNotFoundError
from resolution_service.person_resolution.names import split_name_parts
from resolution_service.person_resolution.phonetics import phonetic_rows
from resolution_service.repositories import PersonRepository

logger = logging.getLogger(__name__)

RECENT_QUOTES = 3
SNIPPET_CHARS = 100
ALIAS_PREVIEW = 10

BatchAction = Literal["merge", "reject"]


def record_person_merge(
    persons: PersonRepository,
    *,
    surviving_person_id: int,
    merged_person_id: int,
    merged_by: MergedBy,
    confidence: float | None = None,
    reason: str | None = None,
) -> PersonMerge:
    """Append an identity-consolidation audit row. Callers own the transaction."""
    row = persons.record_person_merge(
        surviving_person_id=surviving_person_id,
        merged_person_id=merged_person_id,
        merged_by=merged_by,
        confidence=confidence,
        reason=reason,
    )
    logger.info(
        "person merge recorded",
        extra={"surviving_person_id": surviving_person_id, "merged_person_id": merged_person_id, "merged_by": merged_by.value},
    )
    return row


def _snippet(text: str) -> str:
    return text[:SNIPPET_CHARS] + "..." if len(text) > SNIPPET_CHARS else text


@dataclass(frozen=True)
class ReviewItemView:
    id: int
    new_name: str
    new_context: str | None
    candidate_person_id: int | None
    candidate_name: str | None
    provisional_person_id: int | None
    similarity_score: float | None
    match_signals: dict[str, Any] | None
    quote_id: int | None
    created_at: datetime
    candidate_disambiguation: str | None = None
    candidate_quote_count: int | None = None
    candidate_aliases: list[str] = field(default_factory=list)
    candidate_recent_quotes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PendingPage:
    items: list[ReviewItemView]
    total: int
    limit: int
    offset: int


@dataclass(frozen=True)
class ReviewStats:
    pending: int
    resolved_today: int


@dataclass(frozen=True)
class ReviewOutcome:
    item_id: int
    action: Literal["merged", "new_person", "skipped"]
    person_id: int | None = None


class DisambiguationQueue:
    def __init__(self, session: Session, persons: PersonRepository) -> None:
        self.session = session
        self.persons = persons

    def list_pending(self, limit: int = 20, offset: int = 0) -> PendingPage:
        items = self.persons.pending_review_items(limit=limit, offset=offset)
        total = self.persons.count_review_items(status=ReviewStatus.pending)
        return PendingPage(items=[self._view(item) for item in items], total=total, limit=limit, offset=offset)

    def _view(self, item: DisambiguationQueueItem) -> ReviewItemView:
        view: dict[str, Any] = {}
        if item.candidate_person_id is not None:
            candidate = self.persons.get_person(item.candidate_person_id)
            aliases = self.persons.aliases_for_persons([item.candidate_person_id]).get(item.candidate_person_id, [])
            view = {
                "candidate_disambiguation": candidate.disambiguation if candidate else None,
                "candidate_quote_count": candidate.quote_count if candidate else None,
                "candidate_aliases": [a.alias for a in aliases[:ALIAS_PREVIEW]],
                "candidate_recent_quotes": [
                    _snippet(t) for t in self.persons.recent_quote_texts(item.candidate_person_id, RECENT_QUOTES)
                ],
            }
        return ReviewItemView(
            id=item.id,
            new_name=item.new_name,
            new_context=item.new_context,
            candidate_person_id=item.candidate_person_id,
            candidate_name=item.candidate_name,
            provisional_person_id=item.provisional_person_id,
            similarity_score=item.similarity_score,
            match_signals=item.match_signals,
            quote_id=item.quote_id,
            created_at=item.created_at,
            **view,
        )

    def stats(self) -> ReviewStats:
        return ReviewStats(
            pending=self.persons.count_review_items(status=ReviewStatus.pending),
            resolved_today=self.persons.count_review_items(resolved_since=utcnow() - timedelta(days=1)),
        )

    def attach_quote(self, item_id: int, quote_id: int) -> None:
        """Record which quote was inserted under a pending resolution."""
        with unit_of_work(self.session):
            item = self._get(item_id)
            item.quote_id = quote_id

    def merge(self, item_id: int, *, resolved_by: str = "user") -> ReviewOutcome:
        with unit_of_work(self.session):
            return self._merge(item_id, resolved_by)

    def reject(self, item_id: int, *, resolved_by: str = "user") -> ReviewOutcome:
        with unit_of_work(self.session):
            return self._reject(item_id, resolved_by)

    def skip(self, item_id: int) -> ReviewOutcome:
        with unit_of_work(self.session):
            item = self._pending(item_id)
            item.created_at = utcnow()
        return ReviewOutcome(item_id=item_id, action="skipped")

    def batch(self, action: BatchAction, ids: list[int], *, resolved_by: str = "user") -> list[dict[str, Any]]:
        """
        Apply `action` to every id inside one transaction, one SAVEPOINT per id.

        A failing id rolls back only its own savepoint and is reported as
        `{"id", "success": False, "reason"}`; the others still commit.
        """
        handlers: dict[str, Callable[[int, str], ReviewOutcome]] = {"merge": self._merge, "reject": self._reject}
        if action not in handlers:
            raise ValueError("action must be merge or reject")
        handler = handlers[action]

        results: list[dict[str, Any]] = []
        with unit_of_work(self.session):
            for item_id in ids:
                try:
                    with self.session.begin_nested():
                        outcome = handler(item_id, resolved_by)
                except (ReviewItemNotFoundError, ReviewConflictError) as exc:
                    results.append({"id": item_id, "success": False, "reason": str(exc)})
                    continue
                except SQLAlchemyError as exc:
                    logger.error("batch review item failed", extra={"item_id": item_id, "error": str(exc)})
                    results.append({"id": item_id, "success": False, "reason": "database error"})
                    continue
                results.append(
                    {"id": item_id, "success": True, "action": outcome.action, "person_id": outcome.person_id}
                )
        return results

    def _get(self, item_id: int) -> DisambiguationQueueItem:
        item = self.persons.get_review_item(item_id)
        if item is None:
            raise ReviewItemNotFoundError(item_id)
        return item

    def _pending(self, item_id: int) -> DisambiguationQueueItem:
        item = self._get(item_id)
        if item.status != ReviewStatus.pending:
            raise ReviewConflictError(item_id, f"already resolved ({item.status.value})")
        return item

    def _resolve(self, item: DisambiguationQueueItem, status: ReviewStatus, resolved_by: str) -> None:
        item.status = status
        item.resolved_by = resolved_by
        item.resolved_at = utcnow()

    def _merge(self, item_id: int, resolved_by: str) -> ReviewOutcome:
        item = self._pending(item_id)
        candidate_id = item.candidate_person_id
        if candidate_id is None or self.persons.get_person(candidate_id) is None:
            raise ReviewConflictError(item_id, "no candidate to merge into")

        previous_owner = self.persons.quote_owner(item.quote_id) if item.quote_id is not None else None
        provisional_id = item.provisional_person_id

        self.persons.add_alias(
            person_id=candidate_id,
            alias=item.new_name,
            alias_normalized=item.new_name_normalized,
            alias_type=AliasType.variant,
            confidence=1.0,
            source=AliasSource.user,
        )
        if item.quote_id is not None and previous_owner != candidate_id:
            self.persons.repoint_quote(item.quote_id, candidate_id)

        # The provisional identity was this name all along; fold it into the candidate.
        absorbed = (
            provisional_id is not None
            and provisional_id != candidate_id
            and self.persons.get_person(provisional_id) is not None
        )
        if absorbed:
            moved = self.persons.absorb_person(provisional_id, into_person_id=candidate_id)
            logger.info(
                "provisional person absorbed",
                extra={"person_id": candidate_id, "provisional_person_id": provisional_id, "quotes_moved": moved},
            )

        self.persons.recompute_quote_count(candidate_id)
        if previous_owner is not None and previous_owner not in (candidate_id, provisional_id if absorbed else None):
            self.persons.recompute_quote_count(previous_owner)

        record_person_merge(
            self.persons,
            surviving_person_id=candidate_id,
            merged_person_id=provisional_id or previous_owner or candidate_id,
            merged_by=MergedBy.user,
            confidence=item.similarity_score,
            reason=f'review item {item_id}: "{item.new_name}" is {item.candidate_name}',
        )
        self._resolve(item, ReviewStatus.merged, resolved_by)

        if absorbed:
            self.persons.delete_person_if_orphaned(provisional_id)

        logger.info("review item merged", extra={"item_id": item_id, "person_id": candidate_id})
        return ReviewOutcome(item_id=item_id, action="merged", person_id=candidate_id)

    def _reject(self, item_id: int, resolved_by: str) -> ReviewOutcome:
        item = self._pending(item_id)

        person = None
        if item.provisional_person_id is not None and item.provisional_person_id != item.candidate_person_id:
            person = self.persons.get_person(item.provisional_person_id)
        if person is None:
            person = self.persons.create_person(
                canonical_name=item.new_name,
                disambiguation=None,
                alias_normalized=item.new_name_normalized,
                phonetics=phonetic_rows(split_name_parts(item.new_name_normalized)),
                alias_source=AliasSource.user,
            )

        previous_owner = self.persons.quote_owner(item.quote_id) if item.quote_id is not None else None
        if item.quote_id is not None and previous_owner != person.id:
            self.persons.repoint_quote(item.quote_id, person.id)
            if previous_owner is not None:
                self.persons.recompute_quote_count(previous_owner)
        self.persons.recompute_quote_count(person.id)

        self._resolve(item, ReviewStatus.new_person, resolved_by)
        logger.info("review item rejected", extra={"item_id": item_id, "person_id": person.id})
        return ReviewOutcome(item_id=item_id, action="new_person", person_id=person.id)

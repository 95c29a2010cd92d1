"""Speaker name resolution: normalization, nickname and phonetic matching, review queue."""

from resolution_service.person_resolution.resolver import (
    MatchSignals,
    NewPerson,
    PendingReview,
    PersonResolver,
    Resolution,
    Resolved,
)
from resolution_service.person_resolution.review_queue import DisambiguationQueue

__all__ = [
    "DisambiguationQueue",
    "MatchSignals",
    "NewPerson",
    "PendingReview",
    "PersonResolver",
    "Resolution",
    "Resolved",
]

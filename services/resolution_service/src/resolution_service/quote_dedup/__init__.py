"""Quote deduplication: similarity metrics, pair policy, candidate retrieval and merge execution."""

from resolution_service.quote_dedup.candidates import DuplicateCandidate, DuplicateCandidateFinder
from resolution_service.quote_dedup.deduplicator import QuoteDeduplicator
from resolution_service.quote_dedup.merge import ArticleRef, CanonicalMergeExecutor, QuoteData, QuoteResult

__all__ = [
    "ArticleRef",
    "CanonicalMergeExecutor",
    "DuplicateCandidate",
    "DuplicateCandidateFinder",
    "QuoteData",
    "QuoteDeduplicator",
    "QuoteResult",
]

"""
Vector similarity access for duplicate-candidate retrieval.

Used ONLY for retrieval, never as ground truth: every hit is re-checked
against the relational store and the text similarity policy.
"""

from resolution_service.vector.embeddings import EmbeddingEncoder
from resolution_service.vector.index import QuoteVectorIndex, VectorHit

__all__ = ["EmbeddingEncoder", "QuoteVectorIndex", "VectorHit"]

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, FieldCondition, Filter, MatchValue, PointStruct, VectorParams

from resolution_service.errors import ServiceUnavailableError
from resolution_service.settings import Settings
from resolution_service.vector.embeddings import EmbeddingEncoder

logger = logging.getLogger(__name__)

MAX_INDEXED_CHARS = 1000


@dataclass(frozen=True)
class VectorHit:
    quote_id: int
    score: float
    text: str | None = None


def enriched_quote_text(text: str, context: str | None, person_name: str | None) -> str:
    """Text + context + speaker, the form quotes are embedded in."""
    parts = [p for p in (text, context or "", person_name or "") if p]
    return " | ".join(parts)[:MAX_INDEXED_CHARS]


class QuoteVectorIndex:
    """
    Per-person quote similarity search over a Qdrant collection.

    Every public call is bounded by `timeout_s`; expiry and transport errors
    surface as `ServiceUnavailableError`.
    """

    def __init__(
        self,
        *,
        client: AsyncQdrantClient,
        encoder: EmbeddingEncoder,
        collection: str = "quotes",
        vector_size: int = 1536,
        timeout_s: float = 10.0,
    ) -> None:
        self.client = client
        self.encoder = encoder
        self.collection = collection
        self.vector_size = vector_size
        self.timeout_s = timeout_s
        self._collection_ready = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "QuoteVectorIndex":
        if not settings.qdrant_url:
            raise ValueError("QUOTELOG_QDRANT_URL is not set")
        client = AsyncQdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            timeout=int(settings.vector_timeout_s),
        )
        return cls(
            client=client,
            encoder=EmbeddingEncoder.from_settings(settings),
            collection=settings.qdrant_collection,
            vector_size=settings.embedding_dimension,
            timeout_s=settings.vector_timeout_s,
        )

    async def close(self) -> None:
        await self.client.close()

    async def _bounded(self, awaitable: Any) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_s)
        except ServiceUnavailableError:
            raise
        except asyncio.TimeoutError as exc:
            raise ServiceUnavailableError("vector", f"timed out after {self.timeout_s}s") from exc
        except Exception as exc:
            raise ServiceUnavailableError("vector", str(exc)) from exc

    async def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        if not await self.client.collection_exists(self.collection):
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
            )
        self._collection_ready = True

    async def _query(self, text: str, person_id: int, limit: int) -> list[VectorHit]:
        embedding = await self.encoder.encode_single(text)
        response = await self.client.query_points(
            collection_name=self.collection,
            query=embedding,
            limit=limit,
            query_filter=Filter(must=[FieldCondition(key="person_id", match=MatchValue(value=person_id))]),
            with_payload=True,
        )
        hits = []
        for point in response.points:
            payload = point.payload or {}
            quote_id = payload.get("quote_id", point.id)
            hits.append(VectorHit(quote_id=int(quote_id), score=float(point.score), text=payload.get("text")))
        return hits

    async def query(self, text: str, person_id: int, limit: int = 10) -> list[VectorHit]:
        """Nearest stored quotes of `person_id`, best first, cosine scores."""
        return await self._bounded(self._query(text, person_id, limit))

    async def _upsert(self, quote_id: int, text: str, person_id: int, context: str | None, person_name: str | None) -> None:
        await self._ensure_collection()
        embedding = await self.encoder.encode_single(enriched_quote_text(text, context, person_name))
        await self.client.upsert(
            collection_name=self.collection,
            points=[
                PointStruct(
                    id=quote_id,
                    vector=embedding,
                    payload={
                        "quote_id": quote_id,
                        "person_id": person_id,
                        "text": text[:MAX_INDEXED_CHARS],
                        "context": (context or "")[:500],
                        "person_name": (person_name or "")[:200],
                    },
                )
            ],
        )

    async def upsert_quote(
        self,
        quote_id: int,
        text: str,
        person_id: int,
        *,
        context: str | None = None,
        person_name: str | None = None,
    ) -> None:
        await self._bounded(self._upsert(quote_id, text, person_id, context, person_name))
        logger.debug("quote indexed", extra={"quote_id": quote_id, "person_id": person_id})

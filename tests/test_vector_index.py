"""Tests for the per-person quote vector index against Qdrant's in-process mode."""

import asyncio

import pytest
from qdrant_client import AsyncQdrantClient

from resolution_service.errors import ServiceUnavailableError
from resolution_service.vector.index import QuoteVectorIndex, enriched_quote_text

VECTORS = {
    "taxes": [1.0, 0.0, 0.0],
    "wall": [0.0, 1.0, 0.0],
}


class KeywordEncoder:
    """Maps text to a fixed vector by the first known keyword it contains."""

    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail
        self.texts: list[str] = []

    async def encode_single(self, text: str) -> list[float]:
        self.texts.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ServiceUnavailableError("embeddings", "HTTP 503")
        for word, vector in VECTORS.items():
            if word in text:
                return vector
        return [0.0, 0.0, 1.0]


@pytest.fixture
async def index():
    idx = QuoteVectorIndex(
        client=AsyncQdrantClient(location=":memory:"),
        encoder=KeywordEncoder(),
        collection="quotes_test",
        vector_size=3,
    )
    yield idx
    await idx.close()


class TestQuoteVectorIndex:
    async def test_query_is_scoped_to_person(self, index):
        await index.upsert_quote(1, "we will cut taxes", 10, context="rally", person_name="Jane Roe")
        await index.upsert_quote(2, "cut taxes now", 20)
        await index.upsert_quote(3, "build the wall", 10)

        hits = await index.query("taxes for everyone", 10)

        assert [h.quote_id for h in hits][0] == 1
        assert 2 not in [h.quote_id for h in hits]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[0].text == "we will cut taxes"

    async def test_indexed_text_is_enriched(self, index):
        await index.upsert_quote(1, "we will cut taxes", 10, context="rally", person_name="Jane Roe")
        assert index.encoder.texts == ["we will cut taxes | rally | Jane Roe"]

    async def test_upsert_is_idempotent_per_quote(self, index):
        await index.upsert_quote(1, "cut taxes", 10)
        await index.upsert_quote(1, "cut taxes", 10)
        hits = await index.query("taxes", 10)
        assert [h.quote_id for h in hits] == [1]

    async def test_encoder_failure_is_unavailable(self):
        idx = QuoteVectorIndex(
            client=AsyncQdrantClient(location=":memory:"), encoder=KeywordEncoder(fail=True), vector_size=3
        )
        with pytest.raises(ServiceUnavailableError):
            await idx.query("taxes", 10)
        await idx.close()

    async def test_slow_call_times_out(self):
        idx = QuoteVectorIndex(
            client=AsyncQdrantClient(location=":memory:"),
            encoder=KeywordEncoder(delay=1.0),
            vector_size=3,
            timeout_s=0.05,
        )
        with pytest.raises(ServiceUnavailableError) as excinfo:
            await idx.upsert_quote(1, "cut taxes", 10)
        assert excinfo.value.service == "vector"
        await idx.close()


def test_enriched_text_skips_empty_parts():
    assert enriched_quote_text("hello", None, "") == "hello"
    assert len(enriched_quote_text("x" * 2000, None, None)) == 1000

from __future__ import annotations

import httpx

from resolution_service.errors import ServiceUnavailableError
from resolution_service.settings import Settings


class EmbeddingEncoder:
    """OpenAI-compatible `/embeddings` encoder."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        timeout_s: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingEncoder":
        if not settings.embedding_api_key:
            raise ValueError("QUOTELOG_EMBEDDING_API_KEY is not set")
        return cls(
            api_key=settings.embedding_api_key,
            base_url=settings.embedding_base_url,
            model=settings.embedding_model,
            timeout_s=settings.vector_timeout_s,
        )

    async def encode(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {"model": self.model, "input": texts, "encoding_format": "float"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                response = await client.post(f"{self.base_url}/embeddings", headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ServiceUnavailableError(
                "embeddings", f"HTTP {exc.response.status_code}: {exc.response.text[:300]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ServiceUnavailableError("embeddings", f"request failed: {exc}") from exc

        # {"data": [{"embedding": [...], "index": 0}, ...]}; keep request order.
        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in items]

    async def encode_single(self, text: str) -> list[float]:
        result = await self.encode([text])
        if not result:
            raise ServiceUnavailableError("embeddings", "empty embedding response")
        return result[0]

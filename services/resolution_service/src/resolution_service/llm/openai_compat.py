from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from resolution_service.errors import ServiceUnavailableError
from resolution_service.llm.client import LLMResponse
from resolution_service.settings import Settings

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """
    Best-effort extraction when providers wrap JSON in additional text.
    Returns the first parsable JSON object found, else None.
    """
    text = text.strip()
    if not text:
        return None

    try:
        obj = json.loads(text)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass

    # Heuristic: find the first balanced {...} span and try parsing it.
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_str = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    obj = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    return None
                return obj if isinstance(obj, dict) else None
    return None


@dataclass
class OpenAICompatibleClient:
    """
    JSON completions over an OpenAI-compatible `POST {base_url}/chat/completions` endpoint.

    Timeouts and 429s are retried with linear backoff; anything else surfaces as
    `ServiceUnavailableError` so callers can degrade.
    """

    api_key: str
    base_url: str
    model: str
    timeout_s: float = 30.0
    temperature: float = 0.3
    max_tokens: int = 512
    max_attempts: int = 3
    _client: httpx.AsyncClient | None = field(default=None, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatibleClient":
        if not settings.llm_api_key:
            raise ValueError("QUOTELOG_LLM_API_KEY is not set")
        return cls(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            timeout_s=settings.llm_timeout_s,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete_json(self, *, prompt: str, schema: dict[str, Any]) -> LLMResponse:
        base = self.base_url.rstrip("/")
        url = base if base.endswith("/chat/completions") else base + "/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": "Return only valid JSON that conforms to this schema: " + json.dumps(schema),
                },
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

        resp: httpx.Response | None = None
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self._http().post(url, headers=headers, json=payload)
            except httpx.TimeoutException as exc:
                last_exc = exc
                logger.warning("llm request timed out", extra={"attempt": attempt, "url": url})
                await asyncio.sleep(1.5 * attempt)
                continue
            except httpx.HTTPError as exc:
                raise ServiceUnavailableError("llm", f"transport error: {exc}") from exc

            if resp.status_code == 429:
                logger.warning("llm rate limited", extra={"attempt": attempt})
                await asyncio.sleep(1.5 * attempt)
                continue
            if resp.status_code >= 400:
                raise ServiceUnavailableError("llm", f"HTTP {resp.status_code} from {url}: {resp.text[:300]}")
            break
        else:
            raise ServiceUnavailableError("llm", f"no response after {self.max_attempts} attempts: {last_exc}")

        data = resp.json()
        choice0 = (data.get("choices") or [{}])[0]
        content = (choice0.get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}

        return LLMResponse(
            raw_text=content,
            json=extract_json_object(content),
            model_name=data.get("model") or self.model,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
        )

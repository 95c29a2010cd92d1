from __future__ import annotations

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUOTELOG_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"

    # Person resolution bands.
    auto_merge_threshold: float = 0.9
    review_threshold: float = 0.7
    fuzzy_cutoff: float = 0.85
    # "candidate": attach pending quotes to the best candidate; "new_person": to a provisional person.
    provisional_attach: Literal["candidate", "new_person"] = "candidate"
    llm_disambiguation_enabled: bool = True

    # Quote dedup: whether a more complete incoming quote may replace the canonical row.
    canonical_policy: Literal["keep_existing", "prefer_complete"] = "keep_existing"

    # OpenAI-compatible chat completions endpoint used for JSON verdicts.
    llm_api_key: str | None = None
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_timeout_s: float = 30.0
    llm_temperature: float = 0.3
    llm_max_tokens: int = 512

    # Vector similarity service (Qdrant) and the embedding endpoint feeding it.
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    qdrant_collection: str = "quotes"
    vector_timeout_s: float = 10.0
    embedding_api_key: str | None = None
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = 1536

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if not 0.0 <= self.review_threshold <= self.auto_merge_threshold <= 1.0:
            raise ValueError("expected 0 <= review_threshold <= auto_merge_threshold <= 1")
        return self

    @property
    def llm_configured(self) -> bool:
        return bool(self.llm_api_key)

    @property
    def vector_configured(self) -> bool:
        return bool(self.qdrant_url and self.embedding_api_key)


settings = Settings()

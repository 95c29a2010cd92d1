from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="QUOTELOG_", extra="ignore")

    database_url: str = "sqlite:///data/quotelog.sqlite"


settings = Settings()

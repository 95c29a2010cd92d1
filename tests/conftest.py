"""Pytest fixtures: in-memory SQLite store, repositories and fake external services."""

from __future__ import annotations

import json
from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from quotelog_core.db import models  # noqa: F401  registers tables on Base.metadata
from quotelog_core.db.base import Base
from quotelog_core.db.enums import AliasSource, AliasType
from quotelog_core.db.models import Person, PersonAlias
from quotelog_core.db.session import make_engine
from resolution_service.errors import ServiceUnavailableError
from resolution_service.llm.client import LLMResponse
from resolution_service.person_resolution.names import normalize_name, split_name_parts
from resolution_service.person_resolution.phonetics import phonetic_rows
from resolution_service.pipeline import IdentityPipeline
from resolution_service.repositories import SqlPersonRepository, SqlQuoteRepository
from resolution_service.settings import Settings
from resolution_service.vector.index import VectorHit


class FakeLLM:
    """Returns queued JSON payloads in order; raises `error` when set."""

    def __init__(self, payloads: list[dict[str, Any] | None] | None = None, error: Exception | None = None) -> None:
        self.payloads = list(payloads or [])
        self.error = error
        self.prompts: list[str] = []

    async def complete_json(self, *, prompt: str, schema: dict[str, Any]) -> LLMResponse:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        payload = self.payloads.pop(0) if self.payloads else None
        return LLMResponse(raw_text=json.dumps(payload), json=payload, model_name="fake")


class FakeVectorIndex:
    def __init__(self, hits: list[VectorHit] | None = None, fail: bool = False) -> None:
        self.hits = list(hits or [])
        self.fail = fail
        self.queries: list[tuple[str, int]] = []
        self.upserts: list[int] = []

    async def query(self, text: str, person_id: int, limit: int = 10) -> list[VectorHit]:
        self.queries.append((text, person_id))
        if self.fail:
            raise ServiceUnavailableError("vector", "connection refused")
        return self.hits[:limit]

    async def upsert_quote(self, quote_id: int, text: str, person_id: int, **kwargs: Any) -> None:
        if self.fail:
            raise ServiceUnavailableError("vector", "connection refused")
        self.upserts.append(quote_id)

    async def close(self) -> None:
        pass


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine: Engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def persons(session: Session) -> SqlPersonRepository:
    return SqlPersonRepository(session)


@pytest.fixture
def quotes(session: Session) -> SqlQuoteRepository:
    return SqlQuoteRepository(session)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def seed_person(session: Session, persons: SqlPersonRepository):
    """Insert a person with a full_name alias and phonetic rows, optionally with a fixed id."""

    def _seed(name: str, *, person_id: int | None = None, disambiguation: str | None = None) -> int:
        normalized = normalize_name(name)
        person = Person(id=person_id, canonical_name=name, disambiguation=disambiguation, person_metadata={})
        session.add(person)
        session.flush()
        session.add(
            PersonAlias(
                person_id=person.id,
                alias=name,
                alias_normalized=normalized,
                alias_type=AliasType.full_name,
                confidence=1.0,
                source=AliasSource.extraction,
            )
        )
        persons.add_phonetics(person.id, phonetic_rows(split_name_parts(normalized)))
        session.commit()
        return person.id

    return _seed


@pytest.fixture
def make_pipeline(session: Session):
    def _make(*, llm: Any = None, index: Any = None, **overrides: Any) -> IdentityPipeline:
        return IdentityPipeline.build(session, Settings(_env_file=None, **overrides), llm=llm, index=index)

    return _make

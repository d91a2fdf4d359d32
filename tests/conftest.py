"""Shared fixtures for consent service tests."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable

import pytest
from sqlalchemy import update as sql_update

from cookie_consent.config import ConsentConfig
from cookie_consent.consent.models import ConsentContext
from cookie_consent.consent.storage import ConsentLogDB, ConsentStorage, InMemoryConsentStorage


LOCAL_ISSUER = "https://consent.example.test"
JWT_SECRET = "test-signing-secret-with-enough-bytes-for-hs256"


@pytest.fixture
def config() -> ConsentConfig:
    return ConsentConfig(
        jwt_secret=JWT_SECRET,
        jwt_issuer=LOCAL_ISSUER,
        cookie_secret="test-cookie-secret",
    )


@pytest.fixture
def memory_storage(config: ConsentConfig) -> InMemoryConsentStorage:
    return InMemoryConsentStorage(config=config)


@pytest.fixture(params=["memory", "sql"])
async def storage(request, config: ConsentConfig, tmp_path):
    """Both storage adapters, so store behaviour is checked against each."""
    if request.param == "memory":
        store: ConsentStorage = InMemoryConsentStorage(config=config)
    else:
        store = ConsentStorage(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'consent.db'}",
            config=config,
        )
    await store.init_models()
    yield store
    await store.close()


@pytest.fixture
def backdate() -> Callable[..., Awaitable[None]]:
    """Rewrite stored timestamps directly, bypassing the store's own clock."""

    async def _backdate(store: ConsentStorage, uuid: str, **dates: datetime) -> None:
        if isinstance(store, InMemoryConsentStorage):
            record = store._find(None, uuid, None)
            assert record is not None
            store.records[record.id] = record.model_copy(update=dates)
            return
        async with store.SessionLocal() as session:
            await session.execute(
                sql_update(ConsentLogDB).where(ConsentLogDB.uuid == uuid).values(**dates)
            )
            await session.commit()

    return _backdate


@pytest.fixture
def make_context() -> Callable[..., ConsentContext]:
    def _make(**overrides: Any) -> ConsentContext:
        values: dict = {"url": "https://shop.example.test/", "ip_address": "203.0.113.7"}
        values.update(overrides)
        return ConsentContext(**values)

    return _make

"""Shared fixtures: an isolated SQLite store per test and a stubbed chat model."""

from __future__ import annotations

import json
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage
from sqlalchemy.ext.asyncio import async_sessionmaker

from trackerhub.core.config import get_settings
from trackerhub.core.db import create_engine_for_url, init_models
from trackerhub.main import create_app
from trackerhub.models.tracker import ColumnDefinition, TrackerCreate
from trackerhub.services import trackers
from trackerhub.services.extraction import ExtractionEngine, ExtractionSettings


class StubLLM:
    """Minimal async-compatible LLM stub."""

    def __init__(
        self,
        responses: list[AIMessage] | None = None,
        *,
        default: AIMessage | None = None,
        error: Exception | None = None,
    ) -> None:
        self._responses = responses or []
        self._default = default
        self._error = error
        self.calls = 0
        self.last_messages = None

    async def ainvoke(self, messages) -> AIMessage:  # noqa: D401 - match langchain signature
        self.last_messages = messages
        self.calls += 1
        if self._error is not None:
            raise self._error
        if self.calls <= len(self._responses):
            return self._responses[self.calls - 1]
        if self._default is not None:
            return self._default
        raise AssertionError("StubLLM received more calls than configured")


def matches_reply(*matches: dict[str, Any], fenced: bool = False) -> AIMessage:
    content = json.dumps({"matches": list(matches)})
    if fenced:
        content = f"```json\n{content}\n```"
    return AIMessage(content=content)


def stub_engine(llm: StubLLM, **settings: Any) -> ExtractionEngine:
    return ExtractionEngine(llm, ExtractionSettings(**settings))


def inventory_columns() -> list[ColumnDefinition]:
    return [
        ColumnDefinition(id="c1", name="SKU", key="sku", type="text", required=True, order=0),
        ColumnDefinition(id="c2", name="Product", key="product", type="text", ai_enabled=True, order=1),
        ColumnDefinition(
            id="c3",
            name="Quantity",
            key="quantity",
            type="number",
            ai_enabled=True,
            ai_aliases=["qty", "units"],
            order=2,
        ),
        ColumnDefinition(id="c4", name="Delivery Date", key="delivery_date", type="date", ai_enabled=True, order=3),
        ColumnDefinition(
            id="c5",
            name="Status",
            key="status",
            type="select",
            options=["active", "discontinued"],
            order=4,
        ),
        ColumnDefinition(id="c6", name="In Stock", key="in_stock", type="boolean", order=5),
    ]


def inventory_payload(name: str = "Inventory") -> TrackerCreate:
    return TrackerCreate(
        name=name,
        description="Warehouse stock levels",
        columns=inventory_columns(),
        primary_key_column="sku",
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'trackerhub.db'}")
    await init_models(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest_asyncio.fixture
async def inventory(session):
    """An inventory tracker owned by ``user-1``."""

    return await trackers.create_tracker(session, "user-1", inventory_payload())


@pytest.fixture
def api_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("INBOX_PATH", str(tmp_path / "inbox.json"))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


@pytest.fixture
def app(api_env):
    return create_app()


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client

"""End-to-end inbox pipeline runs over a JSON inbox and a stubbed model."""

from __future__ import annotations

import json

import pytest
from conftest import StubLLM, matches_reply, stub_engine
from pydantic import ValidationError

from trackerhub.core.config import AppSettings
from trackerhub.services import lifecycle, rows
from trackerhub.services.email_source import JsonFileEmailSource
from trackerhub.services.pipeline import InboxPipeline


def _write_inbox(path, messages) -> None:
    path.write_text(json.dumps(messages), encoding="utf-8")


def _message(message_id: str, subject: str, body: str, date: int) -> dict:
    return {
        "id": message_id,
        "subject": subject,
        "from": {"name": "Ops", "email": "ops@example.com"},
        "date": date,
        "body": body,
    }


class ExplodingEngine:
    """Extraction stand-in that fails for one message id."""

    def __init__(self, inner, failing_id: str) -> None:
        self.inner = inner
        self.failing_id = failing_id

    async def extract(self, session, email, matches, trackers):
        if email.id == self.failing_id:
            raise RuntimeError("extraction backend unavailable")
        return await self.inner.extract(session, email, matches, trackers)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(pipeline_concurrency=1)


@pytest.mark.asyncio
async def test_pipeline_creates_one_update_per_new_email(tmp_path, session_factory, session, inventory, settings) -> None:
    await rows.add_row(session, inventory, "user-1", {"sku": "12", "quantity": 10})
    inbox = tmp_path / "inbox.json"
    _write_inbox(
        inbox,
        [
            _message("m1", "Inventory update", "Quantity for SKU 12 changed to 40", 200),
            _message("m2", "Lunch?", "Are you free on Friday?", 100),
        ],
    )
    llm = StubLLM(
        default=matches_reply(
            {"trackerId": inventory.id, "confidence": 0.9, "extractedData": {"sku": "12", "quantity": 40}}
        )
    )
    pipeline = InboxPipeline(session_factory, JsonFileEmailSource(inbox), stub_engine(llm), settings)

    result = await pipeline.run("user-1", 10)

    assert result.success is True
    assert result.message == "Created 2 updates from 2 new emails"
    assert result.updates_created == 2
    assert result.statistics.total_proposals == 1
    assert result.statistics.average_proposals_per_item == pytest.approx(0.5)
    assert llm.calls == 1

    records, total = await lifecycle.list_updates(session, "user-1")
    assert total == 2
    by_source = {record.source_id: record for record in records}
    assert by_source["m1"].type == "update"
    assert by_source["m1"].proposals[0]["column_updates"][1]["current_value"] == 10
    assert by_source["m1"].has_high_confidence_updates is True
    assert by_source["m2"].type == "general"
    assert by_source["m2"].proposals is None
    assert by_source["m2"].has_high_confidence_updates is False

    again = await pipeline.run("user-1", 10)
    assert again.success is True
    assert again.message == "No new emails since last check"
    assert again.updates_created == 0
    assert again.statistics.skipped_already_processed == 2
    assert llm.calls == 1


@pytest.mark.asyncio
async def test_repeated_message_ids_create_a_single_update(tmp_path, session_factory, session, inventory) -> None:
    inbox = tmp_path / "inbox.json"
    message = _message("m1", "Inventory update", "Quantity for SKU 12 changed to 40", 200)
    _write_inbox(inbox, [message, dict(message), dict(message)])
    llm = StubLLM(
        default=matches_reply(
            {"trackerId": inventory.id, "confidence": 0.9, "extractedData": {"sku": "12", "quantity": 40}}
        )
    )
    pipeline = InboxPipeline(
        session_factory,
        JsonFileEmailSource(inbox),
        stub_engine(llm),
        AppSettings(pipeline_concurrency=4),
    )

    result = await pipeline.run("user-1", 10)

    assert result.updates_created == 1
    assert result.statistics.skipped_already_processed == 2
    assert llm.calls == 1
    _, total = await lifecycle.list_updates(session, "user-1")
    assert total == 1


@pytest.mark.asyncio
async def test_failed_items_are_retried_on_the_next_run(tmp_path, session_factory, inventory, settings) -> None:
    inbox = tmp_path / "inbox.json"
    _write_inbox(
        inbox,
        [
            _message("m1", "Inventory update", "Quantity changed to 4", 200),
            _message("m2", "Inventory update", "Quantity changed to 5", 100),
        ],
    )
    llm = StubLLM(default=matches_reply())
    engine = ExplodingEngine(stub_engine(llm), failing_id="m2")
    pipeline = InboxPipeline(session_factory, JsonFileEmailSource(inbox), engine, settings)

    result = await pipeline.run("user-1", 10)

    assert result.success is True
    assert result.updates_created == 1
    assert [(item.source_id, item.error) for item in result.failed_items] == [
        ("m2", "extraction backend unavailable")
    ]
    assert result.statistics.failed_processing == 1

    engine.failing_id = None
    retry = await pipeline.run("user-1", 10)
    assert [outcome.source_id for outcome in retry.results] == ["m2"]
    assert retry.statistics.skipped_already_processed == 1


@pytest.mark.asyncio
async def test_empty_inbox_and_fetch_limits(tmp_path, session_factory, settings) -> None:
    pipeline = InboxPipeline(session_factory, JsonFileEmailSource(tmp_path / "missing.json"), stub_engine(StubLLM()), settings)

    result = await pipeline.run("user-1")

    assert result.success is True
    assert result.message == "No emails found to process"
    assert pipeline.clamp_limit(None) == settings.default_email_fetch_count
    assert pipeline.clamp_limit(0) == 1
    assert pipeline.clamp_limit(10_000) == settings.max_email_fetch_count


@pytest.mark.asyncio
async def test_json_inbox_is_per_user_and_newest_first(tmp_path) -> None:
    inbox = tmp_path / "inbox.json"
    _write_inbox(
        inbox,
        {
            "user-1": [
                _message("a", "old", "", 1),
                _message("b", "new", "", 3),
                _message("c", "mid", "", 2),
            ],
            "user-2": [_message("z", "other", "", 5)],
        },
    )
    source = JsonFileEmailSource(inbox)

    messages = await source.fetch_recent("user-1", 2)

    assert [message.id for message in messages] == ["b", "c"]
    assert await source.fetch_recent("user-3", 5) == []


@pytest.mark.asyncio
async def test_json_inbox_rejects_malformed_messages(tmp_path) -> None:
    inbox = tmp_path / "inbox.json"
    _write_inbox(inbox, [{"id": "x", "subject": "no sender or date"}])

    with pytest.raises(ValidationError):
        await JsonFileEmailSource(inbox).fetch_recent("user-1", 5)

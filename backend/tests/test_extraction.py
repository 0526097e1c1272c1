"""Extraction engine behaviour with a stubbed chat model."""

from __future__ import annotations

import pytest
from conftest import StubLLM, matches_reply, stub_engine
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from trackerhub.core.errors import ExtractionParseError
from trackerhub.models.email import InboundEmail
from trackerhub.services import aliases, rows, trackers
from trackerhub.services.extraction import ExtractionProfile, parse_extraction_response
from trackerhub.services.matcher import TrackerMatch


def _email(body: str = "Quantity for the green dress is now 40", subject: str = "Stock update") -> InboundEmail:
    return InboundEmail.model_validate(
        {
            "id": "msg-1",
            "subject": subject,
            "from": {"name": "Alice", "email": "alice@example.com"},
            "date": 1726214400,
            "body": body,
        }
    )


def _context(tracker, confidence: float = 0.5):
    schema = trackers.to_schema(tracker)
    match = TrackerMatch(tracker_id=schema.id, tracker_name=schema.name, confidence=confidence)
    return [match], {schema.id: schema}


@pytest.mark.asyncio
async def test_alias_in_reply_resolves_to_row_id(session, inventory) -> None:
    await rows.add_row(session, inventory, "user-1", {"sku": "12", "quantity": 10})
    await aliases.add_alias(session, inventory.id, "user-1", "12", "green dress")

    llm = StubLLM(
        [
            matches_reply(
                {
                    "trackerId": inventory.id,
                    "trackerName": "Inventory",
                    "confidence": 0.9,
                    "extractedData": {"sku": "Green Dress", "quantity": 40},
                },
                fenced=True,
            )
        ]
    )
    matches, schemas = _context(inventory)

    results = await stub_engine(llm).extract(session, _email(), matches, schemas)

    assert len(results) == 1
    assert results[0].row_id == "12"
    assert results[0].data == {"sku": "12", "quantity": 40}
    assert results[0].confidence == pytest.approx(0.9)
    assert llm.calls == 1


@pytest.mark.asyncio
async def test_unknown_primary_key_is_kept_verbatim(session, inventory) -> None:
    llm = StubLLM([matches_reply({"trackerId": inventory.id, "extractedData": {"sku": " B-7 ", "product": "Hat"}})])
    matches, schemas = _context(inventory, confidence=0.35)

    results = await stub_engine(llm).extract(session, _email(), matches, schemas)

    assert results[0].row_id == "B-7"
    assert results[0].data["sku"] == "B-7"
    assert results[0].confidence == pytest.approx(0.35)


@pytest.mark.asyncio
async def test_reply_is_sanitised_against_the_schema(session, inventory) -> None:
    llm = StubLLM(
        [
            matches_reply(
                {
                    "trackerId": "not-a-candidate",
                    "trackerName": "inventory",
                    "confidence": 7,
                    "extractedData": {"sku": 12, "quantity": [1, 2], "colour": "red", "status": "active"},
                    "fieldConfidence": {"sku": 0.4, "colour": 0.9, "status": "high"},
                },
                {"trackerId": "elsewhere", "extractedData": {"sku": "1"}},
            )
        ]
    )
    matches, schemas = _context(inventory)

    results = await stub_engine(llm).extract(session, _email(), matches, schemas)

    assert len(results) == 1
    match = results[0]
    assert match.tracker_id == inventory.id
    assert match.confidence == 1.0
    assert match.data == {"sku": 12, "status": "active"}
    assert match.field_confidence == {"sku": pytest.approx(0.4), "status": 1.0}
    assert match.row_id == "12"


@pytest.mark.asyncio
async def test_model_failures_degrade_to_no_matches(session, inventory) -> None:
    matches, schemas = _context(inventory)

    failing = StubLLM(error=RuntimeError("rate limited"))
    assert await stub_engine(failing).extract(session, _email(), matches, schemas) == []
    assert failing.calls == 1

    garbled = StubLLM([AIMessage(content="Sure! Here is what I found.")])
    assert await stub_engine(garbled).extract(session, _email(), matches, schemas) == []

    empty = StubLLM([matches_reply()])
    assert await stub_engine(empty).extract(session, _email(), matches, schemas) == []


@pytest.mark.asyncio
async def test_no_candidates_skips_the_model_call(session, inventory) -> None:
    llm = StubLLM()
    _, schemas = _context(inventory)

    assert await stub_engine(llm).extract(session, _email(), [], schemas) == []
    assert llm.calls == 0


@pytest.mark.asyncio
async def test_messages_describe_candidates_and_truncate_content(inventory) -> None:
    matches, schemas = _context(inventory)
    engine = stub_engine(StubLLM(), max_prompt_chars=20)

    system, human = engine.build_messages(_email(body="x" * 50), matches, schemas)

    assert isinstance(system, SystemMessage)
    assert isinstance(human, HumanMessage)
    assert '"matches"' in system.content
    assert "Content: " + "x" * 20 + "\n" in human.content
    assert f"trackerId: {inventory.id}" in human.content
    assert "Primary key field: sku" in human.content
    assert "- quantity: Quantity (also known as: qty, units) (type: number)" in human.content
    assert "- status:" not in human.content
    assert "Keyword match score: 0.50" in human.content

    fields_only = stub_engine(StubLLM())
    fields_only.profile = ExtractionProfile.FIELDS_ONLY
    _, plain = fields_only.build_messages(_email(), matches, schemas)
    assert "Keyword match score" not in plain.content


def test_parse_extraction_response_rejects_malformed_payloads() -> None:
    assert parse_extraction_response('```json\n{"matches": [{"trackerId": "t"}, 3]}\n```') == [{"trackerId": "t"}]

    with pytest.raises(ExtractionParseError, match="empty"):
        parse_extraction_response("  ")
    with pytest.raises(ExtractionParseError, match="not valid JSON"):
        parse_extraction_response("{matches: }")
    with pytest.raises(ExtractionParseError, match="missing a matches list"):
        parse_extraction_response('{"results": []}')

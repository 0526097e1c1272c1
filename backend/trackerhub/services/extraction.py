"""LLM extraction of tracker values from inbound messages."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from json import JSONDecodeError
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from langsmith.run_helpers import traceable
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.config import AppSettings, get_settings
from trackerhub.core.errors import ExtractionParseError
from trackerhub.core.logging import get_logger
from trackerhub.models.email import InboundEmail
from trackerhub.models.tracker import CellValue, TrackerRead

from .aliases import resolve_alias
from .matcher import TrackerMatch
from .rows import find_row, row_id_for

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExtractionSettings:
    """Call settings handed to the engine at construction time."""

    model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_retries: int = 2
    max_prompt_chars: int = 12000

    @classmethod
    def from_settings(cls, settings: AppSettings) -> ExtractionSettings:
        return cls(
            model=settings.extraction_model,
            temperature=settings.extraction_temperature,
            max_retries=settings.extraction_max_retries,
            max_prompt_chars=settings.extraction_max_prompt_chars,
        )


@dataclass(frozen=True, slots=True)
class ProfileDefinition:
    instructions: str
    include_match_guidance: bool


_BASE_RULES = (
    "Extract ONLY the actual values, not descriptions. "
    'For "sku code 12" extract "12"; for "delivery date updated to sep 13" extract "sep 13"; '
    'for "quantity is 50 units" extract "50". '
    "If a value cannot be found, omit it. "
    "For the primary key field, extract the exact term used in the message, even when it is a "
    "descriptive name rather than a code."
)

_RESPONSE_FORMAT = (
    "Respond with a JSON object only, no prose, of the shape "
    '{"matches": [{"trackerId": string, "trackerName": string, "confidence": number between 0 and 1, '
    '"extractedData": {columnKey: value}, "fieldConfidence": {columnKey: number between 0 and 1}}]}. '
    '"fieldConfidence" is optional. Return {"matches": []} when nothing applies.'
)


class ExtractionProfile(Enum):
    """Closed set of prompt variants the engine can run with."""

    COMBINED = "combined"
    FIELDS_ONLY = "fields_only"

    @property
    def definition(self) -> ProfileDefinition:
        return _PROFILES[self]


_PROFILES: dict[ExtractionProfile, ProfileDefinition] = {
    ExtractionProfile.COMBINED: ProfileDefinition(
        instructions=(
            "You read business emails and decide which of the candidate trackers the email updates, "
            "then extract the new values for those trackers. "
            "Only include a tracker when the email clearly refers to one of its rows. "
            + _BASE_RULES
        ),
        include_match_guidance=True,
    ),
    ExtractionProfile.FIELDS_ONLY: ProfileDefinition(
        instructions="You are a precise data extraction agent. You extract specific values from text. " + _BASE_RULES,
        include_match_guidance=False,
    ),
}


@dataclass(slots=True)
class ExtractedMatch:
    tracker_id: str
    tracker_name: str
    confidence: float
    data: dict[str, CellValue] = field(default_factory=dict)
    field_confidence: dict[str, float] = field(default_factory=dict)
    row_id: str | None = None


def build_chat_model(settings: AppSettings, extraction: ExtractionSettings | None = None) -> ChatOpenAI:
    """Instantiate the chat model used for extraction."""

    if not settings.openai_api_key:
        logger.error("extraction.model.missing_api_key", message="OpenAI key not configured")
        raise RuntimeError("OpenAI API key required for extraction.")

    extraction = extraction or ExtractionSettings.from_settings(settings)
    return ChatOpenAI(
        model=extraction.model,
        temperature=extraction.temperature,
        max_retries=extraction.max_retries,
        openai_api_key=settings.openai_api_key,
        openai_api_base=settings.openai_api_base,
    )


class ExtractionEngine:
    """Runs one model call per message over the pre-matched trackers."""

    def __init__(
        self,
        llm: BaseChatModel,
        settings: ExtractionSettings,
        profile: ExtractionProfile = ExtractionProfile.COMBINED,
    ) -> None:
        self.llm = llm
        self.settings = settings
        self.profile = profile

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings | None = None,
        profile: ExtractionProfile = ExtractionProfile.COMBINED,
    ) -> ExtractionEngine:
        settings = settings or get_settings()
        extraction = ExtractionSettings.from_settings(settings)
        return cls(build_chat_model(settings, extraction), extraction, profile)

    def build_messages(
        self,
        email: InboundEmail,
        matches: Sequence[TrackerMatch],
        trackers: Mapping[str, TrackerRead],
    ) -> list[BaseMessage]:
        definition = self.profile.definition
        sections = [_describe_tracker(trackers[match.tracker_id], match, definition) for match in matches]

        content = email.content or "(No content)"
        if len(content) > self.settings.max_prompt_chars:
            content = content[: self.settings.max_prompt_chars]

        human_payload = (
            f"Email details:\n"
            f"From: {email.sender_label} <{email.sender.email}>\n"
            f"Subject: {email.subject}\n"
            f"Content: {content}\n\n"
            f"Candidate trackers:\n" + "\n\n".join(sections)
        )

        return [
            SystemMessage(content=f"{definition.instructions}\n\n{_RESPONSE_FORMAT}"),
            HumanMessage(content=human_payload),
        ]

    async def extract(
        self,
        session: AsyncSession,
        email: InboundEmail,
        matches: Sequence[TrackerMatch],
        trackers: Mapping[str, TrackerRead],
    ) -> list[ExtractedMatch]:
        """Extract values for the matched trackers; any model failure yields no matches."""

        candidates = [match for match in matches if match.tracker_id in trackers]
        if not candidates:
            return []

        messages = self.build_messages(email, candidates, trackers)
        try:
            raw = await _request_extraction(self.llm, messages)
        except Exception as exc:  # noqa: BLE001 - provider errors vary by client
            logger.exception("extraction.model.failed", source_id=email.id, exc_info=exc)
            return []

        try:
            payload = parse_extraction_response(raw)
        except ExtractionParseError as exc:
            logger.warning("extraction.parse_failed", source_id=email.id, error=exc.message, content=raw[:200])
            return []

        heuristic = {match.tracker_id: match.confidence for match in candidates}
        results: list[ExtractedMatch] = []
        for item in payload:
            tracker = _lookup_tracker(item, trackers, heuristic)
            if tracker is None:
                logger.debug("extraction.unknown_tracker", source_id=email.id, tracker_id=item.get("trackerId"))
                continue

            extracted = _build_match(item, tracker, heuristic.get(tracker.id, 0.0))
            extracted.row_id = await _resolve_row_id(session, tracker, extracted.data)
            results.append(extracted)

        logger.info("extraction.completed", source_id=email.id, candidates=len(candidates), matches=len(results))
        return results


_engine: ExtractionEngine | None = None
_engine_settings: AppSettings | None = None


def get_extraction_engine(settings: AppSettings | None = None) -> ExtractionEngine:
    """Return a cached extraction engine."""

    global _engine, _engine_settings
    settings = settings or get_settings()

    if _engine is None or _engine_settings is not settings:
        _engine = ExtractionEngine.from_settings(settings)
        _engine_settings = settings

    return _engine


@traceable(name="extraction.request")
async def _request_extraction(llm: BaseChatModel, messages: list[BaseMessage]) -> str:
    result = await llm.ainvoke(messages)
    return _message_content_to_text(result)


def _describe_tracker(tracker: TrackerRead, match: TrackerMatch, definition: ProfileDefinition) -> str:
    lines = [f'Tracker "{tracker.name}" (trackerId: {tracker.id})']
    if tracker.description:
        lines.append(f"Description: {tracker.description}")
    if definition.include_match_guidance:
        lines.append(f"Keyword match score: {match.confidence:.2f}")
        if match.matched_keywords:
            lines.append(f"Matched keywords: {', '.join(match.matched_keywords)}")
    lines.append(f"Primary key field: {tracker.primary_key_column}")
    lines.append("Fields to extract:")

    for column in tracker.ordered_columns():
        if not column.extraction_eligible and column.key != tracker.primary_key_column:
            continue
        aliases = f" (also known as: {', '.join(column.ai_aliases)})" if column.ai_aliases else ""
        options = f" (one of: {', '.join(column.options)})" if column.options else ""
        lines.append(f"- {column.key}: {column.name}{aliases} (type: {column.type}){options}")
    return "\n".join(lines)


def parse_extraction_response(raw: str) -> list[dict[str, Any]]:
    """Decode the model reply into its list of match objects."""

    cleaned = (raw or "").strip()
    if cleaned.startswith("```"):
        cleaned = _strip_code_fence(cleaned)
    if not cleaned:
        raise ExtractionParseError("Model response was empty")

    try:
        data = json.loads(cleaned)
    except JSONDecodeError as exc:
        raise ExtractionParseError("Model response is not valid JSON") from exc

    if not isinstance(data, dict) or not isinstance(data.get("matches"), list):
        raise ExtractionParseError("Model response is missing a matches list")
    return [item for item in data["matches"] if isinstance(item, dict)]


def _lookup_tracker(
    item: Mapping[str, Any],
    trackers: Mapping[str, TrackerRead],
    candidates: Mapping[str, float],
) -> TrackerRead | None:
    tracker_id = item.get("trackerId")
    if isinstance(tracker_id, str) and tracker_id in candidates:
        return trackers[tracker_id]

    name = item.get("trackerName")
    if isinstance(name, str):
        lowered = name.strip().lower()
        for candidate_id in candidates:
            if trackers[candidate_id].name.lower() == lowered:
                return trackers[candidate_id]
    return None


def _build_match(item: Mapping[str, Any], tracker: TrackerRead, fallback: float) -> ExtractedMatch:
    confidence = _clamp_confidence(item.get("confidence"), fallback)

    raw_data = item.get("extractedData")
    data: dict[str, CellValue] = {}
    if isinstance(raw_data, dict):
        for key, value in raw_data.items():
            if tracker.column(key) is not None and _is_scalar(value):
                data[key] = value

    field_confidence: dict[str, float] = {}
    raw_field_confidence = item.get("fieldConfidence")
    if isinstance(raw_field_confidence, dict):
        for key, score in raw_field_confidence.items():
            if key in data:
                field_confidence[key] = _clamp_confidence(score, confidence)

    return ExtractedMatch(
        tracker_id=tracker.id,
        tracker_name=tracker.name,
        confidence=confidence,
        data=data,
        field_confidence=field_confidence,
    )


async def _resolve_row_id(session: AsyncSession, tracker: TrackerRead, data: dict[str, CellValue]) -> str | None:
    """Map the extracted primary-key value onto a row id, trying aliases for unknown values."""

    value = data.get(tracker.primary_key_column)
    row_id = row_id_for(value)
    if row_id is None or not isinstance(value, str):
        return row_id

    row_id = row_id.strip()
    if await find_row(session, tracker.id, row_id) is not None:
        data[tracker.primary_key_column] = row_id
        return row_id

    resolved = await resolve_alias(session, tracker.id, value)
    if resolved is None:
        data[tracker.primary_key_column] = row_id
        return row_id

    logger.info("extraction.alias_resolved", tracker_id=tracker.id, alias=value, row_id=resolved)
    data[tracker.primary_key_column] = resolved
    return resolved


def _clamp_confidence(value: Any, fallback: float) -> float:
    if isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return min(max(number, 0.0), 1.0)


def _is_scalar(value: Any) -> bool:
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (str, int, bool))


def _message_content_to_text(message: AIMessage) -> str:
    """Coerce message content into a string for downstream parsing."""

    content = message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
        return "".join(parts)
    return str(content)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("```", 2)[1] if stripped.count("```") >= 2 else stripped.lstrip("`")
    if stripped.lower().startswith("json"):
        stripped = stripped[4:]
    return stripped.strip()

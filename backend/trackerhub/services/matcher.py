"""Deterministic keyword scorer that pre-filters trackers before extraction."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from trackerhub.core.logging import get_logger
from trackerhub.models.email import InboundEmail
from trackerhub.models.tracker import ColumnDefinition, TrackerRead

NAME_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.2
COLUMN_WEIGHT = 0.2
UPDATE_CUE_BONUS = 0.1
MATCH_THRESHOLD = 0.15
UPDATE_CUES = ("updated", "changed", "modified", "set to", "is now")

logger = get_logger(__name__)


@dataclass(slots=True)
class TrackerMatch:
    tracker_id: str
    tracker_name: str
    confidence: float
    matched_keywords: list[str] = field(default_factory=list)
    relevant_columns: list[str] = field(default_factory=list)


def email_match_text(email: InboundEmail) -> str:
    return f"{email.subject} {email.content}".lower()


def _column_mentioned(column: ColumnDefinition, text: str) -> bool:
    if column.name and column.name.lower() in text:
        return True
    if column.key.lower() in text:
        return True
    return any(alias and alias.lower() in text for alias in column.ai_aliases)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def score_tracker(text: str, tracker: TrackerRead) -> TrackerMatch | None:
    """Score one tracker against lower-cased text; ``None`` when it has nothing to extract."""

    eligible = [column for column in tracker.columns if column.extraction_eligible]
    if not eligible:
        return None

    score = 0.0
    keywords: list[str] = []
    columns: list[str] = []

    if tracker.name and tracker.name.lower() in text:
        score += NAME_WEIGHT
        keywords.append(tracker.name)

    if tracker.description and tracker.description.lower() in text:
        score += DESCRIPTION_WEIGHT

    has_update_cue = any(cue in text for cue in UPDATE_CUES)
    for column in eligible:
        if not _column_mentioned(column, text):
            continue
        score += COLUMN_WEIGHT
        columns.append(column.name)
        keywords.append(column.name)
        if has_update_cue:
            score += UPDATE_CUE_BONUS

    return TrackerMatch(
        tracker_id=tracker.id,
        tracker_name=tracker.name,
        confidence=round(min(score, 1.0), 4),
        matched_keywords=_unique(keywords),
        relevant_columns=_unique(columns),
    )


def match_trackers(text: str, trackers: Iterable[TrackerRead]) -> list[TrackerMatch]:
    """Return trackers scoring at least the match threshold, best first."""

    lowered = text.lower()
    matches = [
        match
        for match in (score_tracker(lowered, tracker) for tracker in trackers)
        if match is not None and match.confidence >= MATCH_THRESHOLD
    ]
    matches.sort(key=lambda match: match.confidence, reverse=True)

    logger.debug("matcher.completed", matched=len(matches), tracker_ids=[match.tracker_id for match in matches])
    return matches

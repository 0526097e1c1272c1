"""Turn extraction output into reviewable per-column proposals."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.logging import get_logger
from trackerhub.models.email import InboundEmail
from trackerhub.models.tracker import TrackerRead
from trackerhub.models.updates import ColumnUpdate, TrackerMatchRef, TrackerProposal, UpdateCreate

from .extraction import ExtractedMatch
from .matcher import TrackerMatch
from .rows import NEW_ROW_ID, fetch_rows_by_ids

HIGH_CONFIDENCE = 0.8
TITLE_MAX_LENGTH = 50
QUOTE_MAX_LENGTH = 500

logger = get_logger(__name__)


@dataclass(slots=True)
class ProposalBundle:
    proposals: list[TrackerProposal] = field(default_factory=list)
    tracker_matches: list[TrackerMatchRef] = field(default_factory=list)
    average_confidence: float = 0.0
    has_high_confidence_updates: bool = False


async def build_proposals(
    session: AsyncSession,
    extracted: Sequence[ExtractedMatch],
    trackers: Mapping[str, TrackerRead],
    matches: Sequence[TrackerMatch] = (),
) -> ProposalBundle:
    """Build one proposal per extracted tracker that yields at least one column update.

    Matches without a primary-key value target the ``NEW_ROW_ID`` placeholder
    as a new row; the reviewer supplies the key when approving with edits.
    """

    bundle = ProposalBundle(
        tracker_matches=[
            TrackerMatchRef(tracker_id=match.tracker_id, tracker_name=match.tracker_name, confidence=match.confidence)
            for match in matches
        ]
    )

    known_ids: dict[str, list[str]] = {}
    for item in extracted:
        if item.tracker_id in trackers and item.row_id is not None:
            known_ids.setdefault(item.tracker_id, []).append(item.row_id)
    current_rows = {
        tracker_id: await fetch_rows_by_ids(session, tracker_id, row_ids) for tracker_id, row_ids in known_ids.items()
    }

    for item in extracted:
        tracker = trackers.get(item.tracker_id)
        if tracker is None or not item.data:
            continue

        existing = current_rows.get(tracker.id, {}).get(item.row_id) if item.row_id is not None else None
        current = existing.data if existing is not None else {}

        updates: list[ColumnUpdate] = []
        for key, value in item.data.items():
            column = tracker.column(key)
            if column is None or value is None:
                continue
            updates.append(
                ColumnUpdate(
                    column_key=key,
                    column_name=column.name,
                    column_type=column.type,
                    current_value=current.get(key),
                    proposed_value=value,
                    confidence=item.field_confidence.get(key, item.confidence),
                )
            )

        if not updates:
            continue
        if item.row_id is None:
            logger.info("proposals.placeholder_row", tracker_id=tracker.id, columns=[update.column_key for update in updates])

        bundle.proposals.append(
            TrackerProposal(
                tracker_id=tracker.id,
                tracker_name=tracker.name,
                row_id=item.row_id or NEW_ROW_ID,
                is_new_row=existing is None,
                column_updates=updates,
            )
        )

    if bundle.proposals:
        per_proposal = [
            sum(update.confidence for update in proposal.column_updates) / len(proposal.column_updates)
            for proposal in bundle.proposals
        ]
        bundle.average_confidence = sum(per_proposal) / len(per_proposal)
        bundle.has_high_confidence_updates = any(
            update.confidence >= HIGH_CONFIDENCE for proposal in bundle.proposals for update in proposal.column_updates
        )

    return bundle


def summarize_email(email: InboundEmail, bundle: ProposalBundle) -> UpdateCreate:
    """Describe the message and its proposals as a new update record."""

    has_proposals = bool(bundle.proposals)
    if has_proposals:
        names = list(dict.fromkeys(proposal.tracker_name for proposal in bundle.proposals))
        summary = f"Email about {', '.join(names)}"
    else:
        summary = f"Email from {email.sender_label}"

    return UpdateCreate(
        source="email",
        source_id=email.id,
        tracker_matches=bundle.tracker_matches,
        proposals=bundle.proposals or None,
        type="update" if has_proposals else "general",
        category="tracker_update" if has_proposals else "general",
        title=email.subject[:TITLE_MAX_LENGTH] or "(No subject)",
        summary=summary,
        urgency="medium",
        average_confidence=bundle.average_confidence if has_proposals else None,
        has_high_confidence_updates=bundle.has_high_confidence_updates,
        from_name=email.sender.name,
        from_id=email.sender.email,
        source_subject=email.subject,
        source_quote=(email.snippet or (email.body or "")[:QUOTE_MAX_LENGTH]) or None,
        source_date=email.date,
    )

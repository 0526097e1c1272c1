"""Review lifecycle of update records: approve, reject, archive, mark viewed."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.errors import AlreadyProcessedError, NotFoundError, TrackerHubError, UnauthorizedError
from trackerhub.core.logging import get_logger
from trackerhub.models.tables import Tracker, UpdateRecord, utcnow
from trackerhub.models.tracker import CellValue
from trackerhub.models.updates import (
    ApprovalResult,
    ProposalEdit,
    ProposalResult,
    TrackerProposal,
    UpdateCreate,
    UpdateStats,
    ViewMode,
)

from .rows import check_primary_key_duplicate, upsert_row
from .trackers import to_schema
from .validation import validate_row_data

MARK_ALL_VIEWED_LIMIT = 500

logger = get_logger(__name__)


async def _get_owned_update(session: AsyncSession, update_id: str, user_id: str) -> UpdateRecord:
    update = await session.get(UpdateRecord, update_id)
    if update is None:
        raise NotFoundError("Update not found")
    if update.user_id != user_id:
        raise UnauthorizedError("Not authorized to modify this update")
    return update


async def _require_open_update(session: AsyncSession, update_id: str, user_id: str) -> UpdateRecord:
    """Shared guard for terminal transitions: the update must exist, be owned and still open."""

    update = await _get_owned_update(session, update_id, user_id)
    if update.processed:
        raise AlreadyProcessedError("Update has already been processed")
    return update


async def _owned_tracker_or_error(session: AsyncSession, tracker_id: str, user_id: str) -> tuple[Tracker | None, str | None]:
    tracker = await session.get(Tracker, tracker_id)
    if tracker is None:
        return None, "Tracker not found"
    if tracker.user_id != user_id:
        return None, "Not authorized to modify this tracker"
    return tracker, None


async def find_update_by_source(session: AsyncSession, user_id: str, source_id: str) -> UpdateRecord | None:
    stmt = select(UpdateRecord).where(UpdateRecord.user_id == user_id, UpdateRecord.source_id == source_id)
    return await session.scalar(stmt.limit(1))


async def ensure_update(session: AsyncSession, user_id: str, payload: UpdateCreate) -> tuple[UpdateRecord, bool]:
    """Store the update for a source item once.

    Returns the record and whether this call created it. A second call for
    the same ``source_id``, including one racing on another session, gets the
    stored record back instead of a duplicate.
    """

    if payload.source_id is not None:
        existing = await find_update_by_source(session, user_id, payload.source_id)
        if existing is not None:
            return existing, False

    record = UpdateRecord(
        user_id=user_id,
        source=payload.source,
        source_id=payload.source_id,
        tracker_matches=[match.model_dump() for match in payload.tracker_matches],
        proposals=[proposal.model_dump() for proposal in payload.proposals] if payload.proposals else None,
        type=payload.type,
        category=payload.category,
        title=payload.title,
        summary=payload.summary,
        urgency=payload.urgency,
        average_confidence=payload.average_confidence,
        has_high_confidence_updates=payload.has_high_confidence_updates,
        from_name=payload.from_name,
        from_id=payload.from_id,
        source_subject=payload.source_subject,
        source_quote=payload.source_quote,
        source_date=payload.source_date,
        processed=False,
    )
    session.add(record)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = None
        if payload.source_id is not None:
            existing = await find_update_by_source(session, user_id, payload.source_id)
        if existing is None:
            raise
        logger.info("updates.create.conflict", user_id=user_id, source_id=payload.source_id)
        return existing, False

    logger.info(
        "updates.created",
        update_id=record.id,
        source=record.source,
        source_id=record.source_id,
        proposals=len(payload.proposals or []),
    )
    return record, True


async def create_update(session: AsyncSession, user_id: str, payload: UpdateCreate) -> UpdateRecord:
    record, _ = await ensure_update(session, user_id, payload)
    return record


async def get_update(session: AsyncSession, update_id: str, user_id: str) -> UpdateRecord:
    return await _get_owned_update(session, update_id, user_id)


async def list_updates(
    session: AsyncSession,
    user_id: str,
    *,
    view_mode: ViewMode = "active",
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[UpdateRecord], int]:
    """Return a newest-first page of updates in the requested view and the view's total."""

    condition = UpdateRecord.archived_at.is_(None) if view_mode == "active" else UpdateRecord.archived_at.is_not(None)

    stmt = (
        select(UpdateRecord)
        .where(UpdateRecord.user_id == user_id, condition)
        .order_by(UpdateRecord.created_at.desc(), UpdateRecord.id.desc())
        .offset(offset)
        .limit(limit)
    )
    records = list(await session.scalars(stmt))
    total = await session.scalar(
        select(func.count(UpdateRecord.id)).where(UpdateRecord.user_id == user_id, condition)
    )
    return records, int(total or 0)


async def get_stats(session: AsyncSession, user_id: str) -> UpdateStats:
    stmt = select(
        UpdateRecord.processed,
        UpdateRecord.approved,
        UpdateRecord.rejected,
        UpdateRecord.archived_at,
        UpdateRecord.viewed_at,
        UpdateRecord.proposals,
    ).where(UpdateRecord.user_id == user_id)

    stats = UpdateStats()
    for processed, approved, rejected, archived_at, viewed_at, proposals in await session.execute(stmt):
        archived = archived_at is not None
        stats.total += 1
        stats.active += int(not processed and not archived)
        stats.archived += int(archived)
        stats.pending += int(not processed)
        stats.approved += int(approved is True)
        stats.rejected += int(rejected is True)
        stats.with_proposals += int(not archived and bool(proposals))
        stats.unread += int(not archived and viewed_at is None)
    return stats


async def _close_as_approved(session: AsyncSession, update_id: str, user_id: str) -> None:
    # Failed row writes roll the session back, which expires the loaded update.
    update = await session.get(UpdateRecord, update_id)
    if update is None:
        raise NotFoundError("Update not found")

    now = utcnow()
    update.processed = True
    update.processed_at = now
    update.approved = True
    update.approved_at = now
    update.approved_by = user_id
    update.archived_at = now
    await session.commit()


async def _apply(
    session: AsyncSession,
    tracker: Tracker,
    user_id: str,
    row_id: str,
    data: dict[str, CellValue],
    *,
    is_new_row: bool,
) -> str | None:
    try:
        await upsert_row(session, tracker, user_id, row_id, data, is_new_row=is_new_row)
    except TrackerHubError as exc:
        return exc.message
    return None


def _outcome(tracker_id: str, row_id: str, error: str | None) -> ProposalResult:
    return ProposalResult(tracker_id=tracker_id, row_id=row_id, success=error is None, error=error)


async def approve(session: AsyncSession, update_id: str, user_id: str) -> ApprovalResult:
    """Apply every stored proposal, then close the update as approved."""

    update = await _require_open_update(session, update_id, user_id)
    proposals = [TrackerProposal.model_validate(item) for item in update.proposals or []]

    result = ApprovalResult(update_id=update_id)
    for proposal in proposals:
        tracker, error = await _owned_tracker_or_error(session, proposal.tracker_id, user_id)
        if tracker is None:
            result.results.append(_outcome(proposal.tracker_id, proposal.row_id, error))
            continue

        data = {column.column_key: column.proposed_value for column in proposal.column_updates}
        if not data:
            result.results.append(_outcome(proposal.tracker_id, proposal.row_id, "No valid columns to update"))
            continue

        error = await _apply(session, tracker, user_id, proposal.row_id, data, is_new_row=proposal.is_new_row)
        result.results.append(_outcome(proposal.tracker_id, proposal.row_id, error))

    await _close_as_approved(session, update_id, user_id)

    logger.info("updates.approved", update_id=update_id, applied=result.applied, proposals=len(proposals))
    return result


async def _prepare_edit(
    session: AsyncSession,
    tracker: Tracker,
    edit: ProposalEdit,
) -> tuple[dict[str, CellValue], str | None]:
    """Build the row patch for one edited proposal or explain why it cannot apply."""

    schema = to_schema(tracker)
    data: dict[str, CellValue] = {}
    errors: list[str] = []

    for column_edit in edit.edited_columns:
        target_key = column_edit.target_column_key or column_edit.column_key
        column = schema.column(target_key)
        if column is None:
            errors.append(f"Column {target_key} not found in tracker")
            continue

        validation = validate_row_data([column], {target_key: column_edit.new_value})
        if not validation.is_valid:
            errors.append(validation.error_message())
            continue
        data[target_key] = validation.data.get(target_key, column_edit.new_value)

    if errors:
        return {}, "; ".join(errors)
    if not data:
        return {}, "No valid columns to update"

    new_key = data.get(schema.primary_key_column)
    if new_key is not None:
        duplicate = await check_primary_key_duplicate(session, tracker, new_key, edit.row_id)
        if duplicate:
            return {}, duplicate

    return data, None


async def approve_with_edits(
    session: AsyncSession,
    update_id: str,
    user_id: str,
    edited_proposals: Sequence[ProposalEdit],
) -> ApprovalResult:
    """Apply reviewer-edited proposals; each proposal succeeds or fails on its own."""

    await _require_open_update(session, update_id, user_id)

    result = ApprovalResult(update_id=update_id)
    for edit in edited_proposals:
        tracker, error = await _owned_tracker_or_error(session, edit.tracker_id, user_id)
        if tracker is None:
            result.results.append(_outcome(edit.tracker_id, edit.row_id, error))
            continue

        data, error = await _prepare_edit(session, tracker, edit)
        if error is None:
            error = await _apply(session, tracker, user_id, edit.row_id, data, is_new_row=edit.is_new_row)
        result.results.append(_outcome(edit.tracker_id, edit.row_id, error))

    await _close_as_approved(session, update_id, user_id)

    logger.info(
        "updates.approved_with_edits",
        update_id=update_id,
        applied=result.applied,
        failed=len(result.results) - result.applied,
    )
    return result


async def reject(session: AsyncSession, update_id: str, user_id: str) -> UpdateRecord:
    update = await _require_open_update(session, update_id, user_id)

    now = utcnow()
    update.processed = True
    update.processed_at = now
    update.rejected = True
    update.rejected_at = now
    update.archived_at = now
    await session.commit()

    logger.info("updates.rejected", update_id=update.id)
    return update


async def archive(session: AsyncSession, update_id: str, user_id: str) -> UpdateRecord:
    update = await _get_owned_update(session, update_id, user_id)
    if update.archived_at is None:
        update.archived_at = utcnow()
        await session.commit()
    return update


async def mark_viewed(session: AsyncSession, update_id: str, user_id: str) -> UpdateRecord:
    update = await _get_owned_update(session, update_id, user_id)
    if update.viewed_at is None:
        update.viewed_at = utcnow()
        await session.commit()
    return update


async def mark_all_viewed(session: AsyncSession, user_id: str) -> int:
    """Mark unread active updates as viewed, capped per call."""

    stmt = (
        select(UpdateRecord)
        .where(
            UpdateRecord.user_id == user_id,
            UpdateRecord.viewed_at.is_(None),
            UpdateRecord.archived_at.is_(None),
        )
        .limit(MARK_ALL_VIEWED_LIMIT)
    )
    updates = list(await session.scalars(stmt))

    now = utcnow()
    for update in updates:
        update.viewed_at = now
    await session.commit()

    return len(updates)

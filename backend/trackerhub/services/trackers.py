"""Tracker schema management and ownership checks."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.errors import NotFoundError, TrackerValidationError, UnauthorizedError
from trackerhub.core.logging import get_logger
from trackerhub.models.tables import RowAlias, Tracker, TrackerRow, utcnow
from trackerhub.models.tracker import ColumnDefinition, TrackerCreate, TrackerRead, TrackerUpdate

from .validation import (
    DESCRIPTION_MAX_LENGTH,
    MAX_SLUG_GENERATION_ATTEMPTS,
    NAME_MAX_LENGTH,
    generate_slug,
    validate_columns,
)

logger = get_logger(__name__)


def to_schema(tracker: Tracker) -> TrackerRead:
    return TrackerRead.model_validate(tracker)


async def get_tracker(session: AsyncSession, tracker_id: str) -> Tracker:
    tracker = await session.get(Tracker, tracker_id)
    if tracker is None:
        raise NotFoundError("Tracker not found")
    return tracker


async def get_owned_tracker(session: AsyncSession, tracker_id: str, user_id: str) -> Tracker:
    """Load a tracker and verify the caller owns it."""

    tracker = await get_tracker(session, tracker_id)
    if tracker.user_id != user_id:
        raise UnauthorizedError("Not authorized to access this tracker")
    return tracker


async def get_tracker_by_slug(session: AsyncSession, slug: str) -> Tracker:
    tracker = await session.scalar(select(Tracker).where(Tracker.slug == slug))
    if tracker is None:
        raise NotFoundError("Tracker not found")
    return tracker


async def list_trackers(
    session: AsyncSession,
    user_id: str,
    *,
    active_only: bool = False,
    folder_id: str | None = None,
) -> list[Tracker]:
    stmt = select(Tracker).where(Tracker.user_id == user_id).order_by(Tracker.created_at)
    if active_only:
        stmt = stmt.where(Tracker.is_active.is_(True))
    if folder_id is not None:
        stmt = stmt.where(Tracker.folder_id == folder_id)

    results = await session.scalars(stmt)
    return list(results)


def _check_schema(columns: Sequence[ColumnDefinition], primary_key_column: str) -> None:
    validation = validate_columns(columns)
    if not validation.is_valid:
        raise TrackerValidationError(
            f"Invalid columns: {validation.error_message()}",
            errors=[error.as_dict() for error in validation.errors],
        )

    if not any(column.key == primary_key_column for column in columns):
        raise TrackerValidationError(f'Primary key column "{primary_key_column}" does not exist')


def _check_text_limits(name: str | None, description: str | None) -> None:
    if name is not None and len(name) > NAME_MAX_LENGTH:
        raise TrackerValidationError(f"Tracker name must be {NAME_MAX_LENGTH} characters or less")
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise TrackerValidationError(f"Description must be {DESCRIPTION_MAX_LENGTH} characters or less")


async def _unique_slug(session: AsyncSession, name: str) -> str:
    base = generate_slug(name) or "tracker"
    candidate = base

    for counter in range(1, MAX_SLUG_GENERATION_ATTEMPTS + 2):
        existing = await session.scalar(select(Tracker.id).where(Tracker.slug == candidate))
        if existing is None:
            return candidate
        candidate = f"{base}-{counter}"

    raise TrackerValidationError("Unable to generate unique slug. Please try a different name.")


async def create_tracker(session: AsyncSession, user_id: str, payload: TrackerCreate) -> Tracker:
    _check_text_limits(payload.name, payload.description)
    _check_schema(payload.columns, payload.primary_key_column)

    tracker = Tracker(
        name=payload.name,
        slug=await _unique_slug(session, payload.name),
        description=payload.description,
        folder_id=payload.folder_id,
        columns=[column.model_dump() for column in payload.columns],
        primary_key_column=payload.primary_key_column,
        user_id=user_id,
        is_active=True,
    )
    session.add(tracker)
    await session.commit()

    logger.info("tracker.created", tracker_id=tracker.id, slug=tracker.slug, columns=len(payload.columns))
    return tracker


async def update_tracker(session: AsyncSession, tracker_id: str, user_id: str, payload: TrackerUpdate) -> Tracker:
    """Patch tracker settings; column changes are validated as a whole schema."""

    tracker = await get_owned_tracker(session, tracker_id, user_id)
    _check_text_limits(payload.name, payload.description)

    columns = payload.columns if payload.columns is not None else to_schema(tracker).columns
    primary_key_column = payload.primary_key_column or tracker.primary_key_column
    if payload.columns is not None or payload.primary_key_column is not None:
        _check_schema(columns, primary_key_column)

    if payload.name is not None:
        tracker.name = payload.name
    if payload.description is not None:
        tracker.description = payload.description
    if payload.folder_id is not None:
        tracker.folder_id = payload.folder_id
    if payload.is_active is not None:
        tracker.is_active = payload.is_active
    if payload.columns is not None:
        tracker.columns = [column.model_dump() for column in payload.columns]
    tracker.primary_key_column = primary_key_column
    tracker.updated_at = utcnow()

    await session.commit()
    logger.info("tracker.updated", tracker_id=tracker.id)
    return tracker


async def set_column_ai_enabled(
    session: AsyncSession,
    tracker_id: str,
    user_id: str,
    column_id: str,
    ai_enabled: bool,
) -> Tracker:
    tracker = await get_owned_tracker(session, tracker_id, user_id)
    if not any(column.get("id") == column_id for column in tracker.columns):
        raise NotFoundError(f"Column {column_id} not found in tracker")

    tracker.columns = [
        {**column, "ai_enabled": ai_enabled} if column.get("id") == column_id else dict(column)
        for column in tracker.columns
    ]
    tracker.updated_at = utcnow()
    await session.commit()
    return tracker


async def delete_tracker(session: AsyncSession, tracker_id: str, user_id: str) -> None:
    """Delete a tracker along with its rows and aliases."""

    tracker = await get_owned_tracker(session, tracker_id, user_id)

    await session.execute(delete(TrackerRow).where(TrackerRow.tracker_id == tracker.id))
    await session.execute(delete(RowAlias).where(RowAlias.tracker_id == tracker.id))
    await session.delete(tracker)
    await session.commit()

    logger.info("tracker.deleted", tracker_id=tracker_id)

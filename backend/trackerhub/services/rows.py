"""Row store: one JSON document per tracker row, keyed by its primary-key value."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.errors import DuplicateKeyError, NotFoundError, TrackerValidationError
from trackerhub.core.logging import get_logger
from trackerhub.models.tables import Tracker, TrackerRow, utcnow
from trackerhub.models.tracker import CellValue, TrackerRead

from .trackers import to_schema
from .validation import ValidationResult, is_valid_field_name, validate_row_data

NEW_ROW_ID = "new"

logger = get_logger(__name__)


def row_id_for(value: CellValue) -> str | None:
    """Render a primary-key value as the canonical row id string."""

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _raise_for(validation: ValidationResult) -> None:
    if not validation.is_valid:
        raise TrackerValidationError(
            f"Validation failed: {validation.error_message()}",
            errors=[error.as_dict() for error in validation.errors],
        )


def _require_row_id(schema: TrackerRead, data: Mapping[str, CellValue]) -> str:
    row_id = row_id_for(data.get(schema.primary_key_column))
    if row_id is None:
        raise TrackerValidationError(f'Primary key "{schema.primary_key_column}" is required')
    return row_id


def _carry_unknown_keys(schema: TrackerRead, existing: Mapping[str, Any]) -> dict[str, Any]:
    """Keep values for keys no longer in the schema so older data survives edits."""

    defined = {column.key for column in schema.columns}
    return {key: value for key, value in existing.items() if key not in defined}


async def find_row(session: AsyncSession, tracker_id: str, row_id: str) -> TrackerRow | None:
    stmt = select(TrackerRow).where(TrackerRow.tracker_id == tracker_id, TrackerRow.row_id == row_id)
    return await session.scalar(stmt.limit(1))


async def get_row(session: AsyncSession, tracker_id: str, row_id: str) -> TrackerRow:
    row = await find_row(session, tracker_id, row_id)
    if row is None:
        raise NotFoundError("Row not found")
    return row


async def list_rows(
    session: AsyncSession,
    tracker_id: str,
    *,
    offset: int = 0,
    limit: int | None = 100,
) -> tuple[list[TrackerRow], int]:
    """Return a creation-ordered page of rows and the tracker's total row count."""

    stmt = select(TrackerRow).where(TrackerRow.tracker_id == tracker_id).order_by(TrackerRow.id).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)

    rows = list(await session.scalars(stmt))
    total = await session.scalar(select(func.count(TrackerRow.id)).where(TrackerRow.tracker_id == tracker_id))
    return rows, int(total or 0)


async def check_primary_key_duplicate(
    session: AsyncSession,
    tracker: Tracker,
    new_value: CellValue,
    exclude_row_id: str | None,
) -> str | None:
    """Return an error message if another row already carries ``new_value`` as its key."""

    column = tracker.primary_key_column
    if not is_valid_field_name(column):
        return "Invalid primary key column name"

    candidate = row_id_for(new_value)
    if candidate is None:
        return None

    # Keys are interpolated into the JSON path, hence the allow-list above.
    json_value = func.json_extract(TrackerRow.data, f'$."{column}"')
    stmt = select(TrackerRow.row_id).where(
        TrackerRow.tracker_id == tracker.id,
        or_(TrackerRow.row_id == candidate, json_value == new_value),
    )
    if exclude_row_id is not None:
        stmt = stmt.where(TrackerRow.row_id != exclude_row_id)

    duplicate = await session.scalar(stmt.limit(1))
    if duplicate is not None:
        return f"Duplicate {column} value: {new_value} already exists in tracker"
    return None


async def add_row(
    session: AsyncSession,
    tracker: Tracker,
    user_id: str,
    data: Mapping[str, CellValue],
) -> TrackerRow:
    schema = to_schema(tracker)
    validation = validate_row_data(schema.columns, data)
    _raise_for(validation)
    row_id = _require_row_id(schema, validation.data)

    if await find_row(session, tracker.id, row_id) is not None:
        raise DuplicateKeyError(f'Row with {schema.primary_key_column} "{row_id}" already exists')

    row = TrackerRow(
        tracker_id=tracker.id,
        row_id=row_id,
        data=dict(validation.data),
        created_by=user_id,
        updated_by=user_id,
    )
    session.add(row)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateKeyError(f'Row with {schema.primary_key_column} "{row_id}" already exists') from exc

    logger.debug("rows.added", tracker_id=tracker.id, row_id=row_id)
    return row


async def update_row(
    session: AsyncSession,
    tracker: Tracker,
    user_id: str,
    row_id: str,
    updates: Mapping[str, CellValue],
) -> TrackerRow:
    """Merge ``updates`` into an existing row; untouched fields keep their values."""

    schema = to_schema(tracker)
    row = await get_row(session, tracker.id, row_id)

    merged = {**row.data, **updates}
    validation = validate_row_data(schema.columns, merged)
    _raise_for(validation)
    new_row_id = _require_row_id(schema, validation.data)

    if new_row_id != row.row_id:
        duplicate = await check_primary_key_duplicate(session, tracker, validation.data[schema.primary_key_column], row.row_id)
        if duplicate:
            raise DuplicateKeyError(duplicate)

    row.data = {**_carry_unknown_keys(schema, row.data), **validation.data}
    row.row_id = new_row_id
    row.updated_at = utcnow()
    row.updated_by = user_id
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateKeyError(f'Row with {schema.primary_key_column} "{new_row_id}" already exists') from exc

    return row


async def delete_row(session: AsyncSession, tracker: Tracker, row_id: str) -> None:
    row = await get_row(session, tracker.id, row_id)
    await session.delete(row)
    await session.commit()


async def upsert_row(
    session: AsyncSession,
    tracker: Tracker,
    user_id: str,
    row_id: str,
    data: Mapping[str, CellValue],
    *,
    is_new_row: bool,
) -> tuple[TrackerRow, bool]:
    """Apply a proposal: merge into an existing row, otherwise insert it.

    Returns the row and whether it was created.
    """

    if row_id == NEW_ROW_ID:
        # Placeholder proposals become rows only once a primary-key value is supplied.
        row_id = _require_row_id(to_schema(tracker), data)

    existing = await find_row(session, tracker.id, row_id)
    if existing is not None:
        if is_new_row:
            logger.info("rows.upsert.new_row_exists", tracker_id=tracker.id, row_id=row_id)
        return await update_row(session, tracker, user_id, row_id, data), False

    payload = dict(data)
    schema = to_schema(tracker)
    if row_id_for(payload.get(schema.primary_key_column)) is None:
        payload[schema.primary_key_column] = row_id
    return await add_row(session, tracker, user_id, payload), True


async def delete_all_rows(session: AsyncSession, tracker_id: str) -> int:
    """Delete every row of a tracker one document at a time."""

    rows = list(await session.scalars(select(TrackerRow).where(TrackerRow.tracker_id == tracker_id)))
    for row in rows:
        await session.delete(row)
        await session.commit()
    return len(rows)


async def fetch_rows_by_ids(session: AsyncSession, tracker_id: str, row_ids: list[str]) -> dict[str, TrackerRow]:
    """Fetch rows keyed by row id."""

    ids = list({row_id for row_id in row_ids if row_id})
    if not ids:
        return {}
    results = await session.scalars(select(TrackerRow).where(TrackerRow.tracker_id == tracker_id, TrackerRow.row_id.in_(ids)))
    return {row.row_id: row for row in results}

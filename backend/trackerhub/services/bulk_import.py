"""Bulk and CSV import of tracker rows with per-row failure reporting."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.config import AppSettings, get_settings
from trackerhub.core.errors import TrackerHubError, TrackerValidationError, UnauthorizedError
from trackerhub.core.logging import get_logger
from trackerhub.models.tables import Tracker, TrackerRow, utcnow
from trackerhub.models.tracker import CellValue, ImportFailure, ImportMode, ImportResult, TrackerRead

from .rows import delete_all_rows, find_row, row_id_for
from .trackers import to_schema
from .validation import map_csv_to_tracker_data, parse_csv, validate_row_data

logger = get_logger(__name__)


def _batched(seq: Sequence, size: int) -> Iterator[tuple[int, int]]:
    """Yield start/end indices for slicing in fixed-size batches."""

    if size <= 0:
        raise ValueError("Batch size must be positive")
    start = 0
    length = len(seq)
    while start < length:
        end = min(start + size, length)
        yield start, end
        start = end


@dataclass(slots=True)
class RowOutcome:
    imported: bool = False
    updated: bool = False
    error: str | None = None


def validate_import_target(tracker: Tracker, user_id: str) -> TrackerRead:
    if tracker.user_id != user_id:
        raise UnauthorizedError("Not authorized to import to this tracker")

    schema = to_schema(tracker)
    if not schema.columns:
        raise TrackerValidationError("Tracker has no columns defined")
    if not schema.primary_key_column:
        raise TrackerValidationError("Tracker has no primary key column defined")
    return schema


async def process_import_row(
    session: AsyncSession,
    schema: TrackerRead,
    row_data: Mapping[str, CellValue],
    *,
    mode: ImportMode,
    user_id: str,
) -> RowOutcome:
    """Validate and write a single import row; the row commits on its own."""

    validation = validate_row_data(schema.columns, row_data)
    if not validation.is_valid:
        return RowOutcome(error=validation.error_message())

    row_id = row_id_for(validation.data.get(schema.primary_key_column))
    if row_id is None:
        return RowOutcome(error=f'Primary key "{schema.primary_key_column}" is required')

    existing = await find_row(session, schema.id, row_id)
    if existing is not None:
        if mode == "append":
            return RowOutcome(error=f'Row with {schema.primary_key_column} "{row_id}" already exists')

        existing.data = dict(validation.data)
        existing.updated_at = utcnow()
        existing.updated_by = user_id
        await session.commit()
        return RowOutcome(updated=True)

    session.add(
        TrackerRow(
            tracker_id=schema.id,
            row_id=row_id,
            data=dict(validation.data),
            created_by=user_id,
            updated_by=user_id,
        )
    )
    await session.commit()
    return RowOutcome(imported=True)


async def bulk_import(
    session: AsyncSession,
    tracker: Tracker,
    user_id: str,
    rows: Sequence[Mapping[str, CellValue]],
    *,
    mode: ImportMode = "append",
    settings: AppSettings | None = None,
) -> ImportResult:
    """Import rows independently in fixed-size batches.

    ``replace`` deletes the tracker's rows before importing. The delete and the
    import are separate units of work: a crash in between leaves the tracker
    partially emptied.
    """

    settings = settings or get_settings()
    if len(rows) > settings.max_import_rows:
        raise TrackerValidationError(
            f"Cannot import more than {settings.max_import_rows} rows at once. "
            "Please split your data into smaller batches."
        )

    schema = validate_import_target(tracker, user_id)

    if mode == "replace":
        deleted = await delete_all_rows(session, schema.id)
        logger.info("rows.import.replace_cleared", tracker_id=schema.id, deleted=deleted)

    result = ImportResult()
    for start, end in _batched(rows, settings.import_batch_size):
        for offset, row_data in enumerate(rows[start:end]):
            row_number = start + offset + 1
            try:
                outcome = await process_import_row(session, schema, row_data, mode=mode, user_id=user_id)
            except TrackerHubError as exc:
                await session.rollback()
                outcome = RowOutcome(error=exc.message)
            except Exception as exc:  # noqa: BLE001 - one bad row must not abort the batch
                await session.rollback()
                logger.warning("rows.import.row_failed", tracker_id=schema.id, row=row_number, error=str(exc))
                outcome = RowOutcome(error=str(exc) or "Unknown error")

            if outcome.imported:
                result.imported += 1
            elif outcome.updated:
                result.updated += 1
            elif outcome.error:
                result.failed.append(ImportFailure(row=row_number, error=outcome.error))

    logger.info(
        "rows.import.completed",
        tracker_id=schema.id,
        mode=mode,
        imported=result.imported,
        updated=result.updated,
        failed=len(result.failed),
    )
    return result


async def import_csv(
    session: AsyncSession,
    tracker: Tracker,
    user_id: str,
    csv_content: str,
    *,
    mode: ImportMode = "append",
    settings: AppSettings | None = None,
) -> ImportResult:
    """Parse CSV text, map headers onto columns and run it through ``bulk_import``."""

    settings = settings or get_settings()
    if len(csv_content.encode("utf-8")) > settings.max_csv_size_bytes:
        raise TrackerValidationError(
            f"CSV file too large. Maximum size is {settings.max_csv_size_bytes // (1024 * 1024)}MB."
        )

    schema = validate_import_target(tracker, user_id)
    headers, csv_rows = parse_csv(csv_content)
    if len(csv_rows) > settings.max_import_rows:
        raise TrackerValidationError(
            f"CSV contains too many rows ({len(csv_rows)}). Maximum is {settings.max_import_rows} rows."
        )

    mapped = map_csv_to_tracker_data(headers, csv_rows, schema.columns)
    return await bulk_import(session, tracker, user_id, mapped, mode=mode, settings=settings)

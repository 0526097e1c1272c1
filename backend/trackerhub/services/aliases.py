"""Row aliases: free-text names that resolve to a tracker row id."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.errors import DuplicateKeyError, NotFoundError, TrackerValidationError, UnauthorizedError
from trackerhub.core.logging import get_logger
from trackerhub.models.tables import RowAlias, Tracker
from trackerhub.models.tracker import AliasCreate, AliasFailure, BulkAliasResult

from .trackers import get_owned_tracker

ALIAS_MAX_LENGTH = 100

logger = get_logger(__name__)


def normalize_alias(alias: str) -> str:
    return alias.strip().lower()


def _alias_problem(normalized: str, row_id: str) -> str | None:
    if not normalized:
        return "Alias cannot be empty"
    if len(normalized) > ALIAS_MAX_LENGTH:
        return f"Alias must be {ALIAS_MAX_LENGTH} characters or less"
    if normalized == row_id.lower():
        return "Cannot create an alias that is the same as the row ID"
    return None


async def _find_alias(session: AsyncSession, tracker_id: str, normalized: str) -> RowAlias | None:
    stmt = select(RowAlias).where(RowAlias.tracker_id == tracker_id, RowAlias.alias == normalized)
    return await session.scalar(stmt.limit(1))


async def resolve_alias(session: AsyncSession, tracker_id: str, term: str) -> str | None:
    """Return the row id registered for ``term`` in this tracker, if any."""

    normalized = normalize_alias(term)
    if not normalized:
        return None

    alias = await _find_alias(session, tracker_id, normalized)
    if alias is None:
        return None

    logger.debug("aliases.resolved", tracker_id=tracker_id, alias=normalized, row_id=alias.row_id)
    return alias.row_id


async def add_alias(
    session: AsyncSession,
    tracker_id: str,
    user_id: str,
    row_id: str,
    alias: str,
) -> RowAlias:
    normalized = normalize_alias(alias)
    problem = _alias_problem(normalized, row_id)
    if problem:
        raise TrackerValidationError(problem)

    await get_owned_tracker(session, tracker_id, user_id)

    existing = await _find_alias(session, tracker_id, normalized)
    if existing is not None:
        if existing.row_id == row_id:
            raise DuplicateKeyError(f'Alias "{alias}" already exists for this row')
        raise DuplicateKeyError(f'Alias "{alias}" is already used for row "{existing.row_id}"')

    record = RowAlias(tracker_id=tracker_id, row_id=row_id, alias=normalized, user_id=user_id)
    session.add(record)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateKeyError(f'Alias "{alias}" already exists in this tracker') from exc

    logger.info("aliases.added", tracker_id=tracker_id, row_id=row_id, alias=normalized)
    return record


async def remove_alias(session: AsyncSession, alias_id: int, user_id: str) -> None:
    alias = await session.get(RowAlias, alias_id)
    if alias is None:
        raise NotFoundError("Alias not found")

    tracker = await session.get(Tracker, alias.tracker_id)
    if tracker is None or tracker.user_id != user_id:
        raise UnauthorizedError("Not authorized to remove this alias")

    await session.delete(alias)
    await session.commit()
    logger.info("aliases.removed", tracker_id=alias.tracker_id, row_id=alias.row_id, alias=alias.alias)


async def list_row_aliases(session: AsyncSession, tracker_id: str, row_id: str) -> list[RowAlias]:
    stmt = (
        select(RowAlias)
        .where(RowAlias.tracker_id == tracker_id, RowAlias.row_id == row_id)
        .order_by(RowAlias.created_at, RowAlias.id)
    )
    return list(await session.scalars(stmt))


async def list_tracker_aliases(session: AsyncSession, tracker_id: str, user_id: str) -> dict[str, list[RowAlias]]:
    """Return every alias of a tracker grouped by row id."""

    await get_owned_tracker(session, tracker_id, user_id)

    stmt = select(RowAlias).where(RowAlias.tracker_id == tracker_id).order_by(RowAlias.row_id, RowAlias.id)
    grouped: dict[str, list[RowAlias]] = defaultdict(list)
    for alias in await session.scalars(stmt):
        grouped[alias.row_id].append(alias)
    return dict(grouped)


async def bulk_add_aliases(
    session: AsyncSession,
    tracker_id: str,
    user_id: str,
    aliases: Iterable[AliasCreate],
) -> BulkAliasResult:
    """Add aliases one by one, collecting a reason for each one that is skipped."""

    await get_owned_tracker(session, tracker_id, user_id)

    result = BulkAliasResult()
    for item in aliases:
        normalized = normalize_alias(item.alias)
        problem = _alias_problem(normalized, item.row_id)
        if problem:
            result.failed.append(AliasFailure(alias=item.alias, reason=problem))
            continue

        existing = await _find_alias(session, tracker_id, normalized)
        if existing is not None:
            result.failed.append(AliasFailure(alias=item.alias, reason=f"Already exists for row {existing.row_id}"))
            continue

        session.add(RowAlias(tracker_id=tracker_id, row_id=item.row_id, alias=normalized, user_id=user_id))
        await session.commit()
        result.success.append(item.alias)

    logger.info(
        "aliases.bulk_added",
        tracker_id=tracker_id,
        added=len(result.success),
        failed=len(result.failed),
    )
    return result

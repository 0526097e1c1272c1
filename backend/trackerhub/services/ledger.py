"""Ledger of source item ids that already produced an update record."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trackerhub.core.config import AppSettings, get_settings
from trackerhub.core.logging import get_logger
from trackerhub.models.tables import ProcessedSourceId, utcnow

CLEANUP_BATCH_SIZE = 100

logger = get_logger(__name__)


def _retention_cutoff(settings: AppSettings, now: datetime | None = None) -> datetime:
    return (now or utcnow()) - timedelta(days=settings.ledger_retention_days)


async def already_processed(
    session: AsyncSession,
    user_id: str,
    source_id: str,
    *,
    settings: AppSettings | None = None,
) -> bool:
    settings = settings or get_settings()
    stmt = select(ProcessedSourceId.id).where(
        ProcessedSourceId.user_id == user_id,
        ProcessedSourceId.source_id == source_id,
        ProcessedSourceId.created_at >= _retention_cutoff(settings),
    )
    return await session.scalar(stmt.limit(1)) is not None


async def filter_unprocessed(
    session: AsyncSession,
    user_id: str,
    source_ids: Iterable[str],
    *,
    settings: AppSettings | None = None,
) -> list[str]:
    """Return the ids not yet recorded inside the retention window, preserving order."""

    settings = settings or get_settings()
    ids = list(dict.fromkeys(source_id for source_id in source_ids if source_id))
    if not ids:
        return []

    stmt = select(ProcessedSourceId.source_id).where(
        ProcessedSourceId.user_id == user_id,
        ProcessedSourceId.source_id.in_(ids),
        ProcessedSourceId.created_at >= _retention_cutoff(settings),
    )
    seen = set(await session.scalars(stmt))
    return [source_id for source_id in ids if source_id not in seen]


async def mark_processed(session: AsyncSession, user_id: str, source_ids: Iterable[str]) -> int:
    """Record ids as processed; ids already present are left untouched."""

    ids = list(dict.fromkeys(source_id for source_id in source_ids if source_id))
    if not ids:
        return 0

    stmt = select(ProcessedSourceId.source_id).where(
        ProcessedSourceId.user_id == user_id,
        ProcessedSourceId.source_id.in_(ids),
    )
    existing = set(await session.scalars(stmt))
    new_ids = [source_id for source_id in ids if source_id not in existing]
    if not new_ids:
        return 0

    session.add_all(ProcessedSourceId(user_id=user_id, source_id=source_id) for source_id in new_ids)
    try:
        await session.commit()
    except IntegrityError:
        # A concurrent run recorded the same id first.
        await session.rollback()
        logger.info("ledger.mark.conflict", user_id=user_id, source_ids=new_ids)
        return 0

    logger.debug("ledger.marked", user_id=user_id, count=len(new_ids))
    return len(new_ids)


async def cleanup_stale(
    session: AsyncSession,
    *,
    settings: AppSettings | None = None,
    now: datetime | None = None,
) -> int:
    """Delete entries older than the cleanup age, in fixed-size batches."""

    settings = settings or get_settings()
    cutoff = (now or utcnow()) - timedelta(days=settings.ledger_cleanup_days)

    deleted = 0
    while True:
        stmt = select(ProcessedSourceId.id).where(ProcessedSourceId.created_at < cutoff).limit(CLEANUP_BATCH_SIZE)
        batch = list(await session.scalars(stmt))
        if not batch:
            break
        await session.execute(delete(ProcessedSourceId).where(ProcessedSourceId.id.in_(batch)))
        await session.commit()
        deleted += len(batch)

    logger.info("ledger.cleanup.completed", deleted=deleted, cutoff=cutoff.isoformat())
    return deleted


async def list_processed(
    session: AsyncSession,
    user_id: str,
    *,
    limit: int = 100,
    settings: AppSettings | None = None,
) -> list[ProcessedSourceId]:
    settings = settings or get_settings()
    stmt = (
        select(ProcessedSourceId)
        .where(
            ProcessedSourceId.user_id == user_id,
            ProcessedSourceId.created_at >= _retention_cutoff(settings),
        )
        .order_by(ProcessedSourceId.created_at.desc())
        .limit(limit)
    )
    return list(await session.scalars(stmt))

"""Inbox pipeline: fetch, dedup, match, extract, propose, persist, mark processed."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trackerhub.core.config import AppSettings, get_settings
from trackerhub.core.logging import bind_request_context, get_logger
from trackerhub.models.email import FailedItem, InboundEmail, ItemOutcome, PipelineResult, PipelineStatistics
from trackerhub.models.tracker import TrackerRead

from . import ledger
from .email_source import EmailSource
from .extraction import ExtractionEngine
from .lifecycle import ensure_update
from .matcher import email_match_text, match_trackers
from .proposals import build_proposals, summarize_email
from .trackers import list_trackers, to_schema

logger = get_logger(__name__)


@dataclass(slots=True)
class InboxPipeline:
    session_factory: async_sessionmaker[AsyncSession]
    email_source: EmailSource
    engine: ExtractionEngine
    settings: AppSettings | None = None

    def __post_init__(self) -> None:
        if self.settings is None:
            self.settings = get_settings()

    def clamp_limit(self, limit: int | None) -> int:
        requested = limit if limit is not None else self.settings.default_email_fetch_count
        return max(1, min(requested, self.settings.max_email_fetch_count))

    async def run(self, user_id: str, limit: int | None = None) -> PipelineResult:
        fetch_count = self.clamp_limit(limit)
        messages = await self.email_source.fetch_recent(user_id, fetch_count)
        if not messages:
            return PipelineResult(success=True, message="No emails found to process")

        async with self.session_factory() as session:
            fresh_ids = set(
                await ledger.filter_unprocessed(
                    session, user_id, [message.id for message in messages], settings=self.settings
                )
            )
            trackers = {
                tracker.id: to_schema(tracker)
                for tracker in await list_trackers(session, user_id, active_only=True)
            }

        # A fetch can repeat a message id; each id is processed once per run.
        pending = list({message.id: message for message in messages if message.id in fresh_ids}.values())
        statistics = PipelineStatistics(
            total_items=len(messages),
            skipped_already_processed=len(messages) - len(pending),
        )
        if not pending:
            return PipelineResult(success=True, message="No new emails since last check", statistics=statistics)

        logger.info(
            "pipeline.run.started",
            user_id=user_id,
            fetched=len(messages),
            pending=len(pending),
            trackers=len(trackers),
        )

        semaphore = asyncio.Semaphore(self.settings.pipeline_concurrency)

        async def process(message: InboundEmail) -> ItemOutcome | FailedItem | None:
            async with semaphore:
                return await self._process_item(user_id, message, trackers)

        outcomes = await asyncio.gather(*(process(message) for message in pending))

        results = [outcome for outcome in outcomes if isinstance(outcome, ItemOutcome)]
        failed = [outcome for outcome in outcomes if isinstance(outcome, FailedItem)]
        statistics.skipped_already_processed += sum(1 for outcome in outcomes if outcome is None)
        statistics.successful_updates = len(results)
        statistics.failed_processing = len(failed)
        statistics.total_proposals = sum(result.proposal_count for result in results)
        statistics.average_proposals_per_item = (
            statistics.total_proposals / len(results) if results else 0.0
        )

        logger.info(
            "pipeline.run.completed",
            user_id=user_id,
            updates_created=len(results),
            failed=len(failed),
            proposals=statistics.total_proposals,
        )

        return PipelineResult(
            success=bool(results) or not failed,
            message=f"Created {len(results)} updates from {len(pending)} new emails",
            updates_created=len(results),
            results=results,
            failed_items=failed,
            statistics=statistics,
        )

    async def _process_item(
        self,
        user_id: str,
        message: InboundEmail,
        trackers: Mapping[str, TrackerRead],
    ) -> ItemOutcome | FailedItem | None:
        """Handle one message in its own session; ``None`` means another run already took it."""

        bind_request_context(source_id=message.id)
        async with self.session_factory() as session:
            try:
                if await ledger.already_processed(session, user_id, message.id, settings=self.settings):
                    return None

                matches = match_trackers(email_match_text(message), trackers.values())
                extracted = await self.engine.extract(session, message, matches, trackers)
                bundle = await build_proposals(session, extracted, trackers, matches)
                record, created = await ensure_update(session, user_id, summarize_email(message, bundle))
                update_id = record.id

                # The ledger entry is only written once the update is stored.
                await ledger.mark_processed(session, user_id, [message.id])
                if not created:
                    return None
            except Exception as exc:  # noqa: BLE001 - one bad item must not abort the batch
                await session.rollback()
                logger.exception("pipeline.item.failed", source_id=message.id, exc_info=exc)
                return FailedItem(source_id=message.id, error=str(exc) or "Failed to process email")

        return ItemOutcome(
            source_id=message.id,
            update_id=update_id,
            proposal_count=len(bundle.proposals),
            tracker_count=len(bundle.tracker_matches),
        )

"""SQLAlchemy models for trackers, rows, aliases, updates and the dedup ledger."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """Base declarative model."""


class Tracker(Base):
    """A user-defined schema: the column list lives in a JSON document."""

    __tablename__ = "trackers"
    __table_args__ = (Index("ix_trackers_user_active", "user_id", "is_active"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    columns: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    primary_key_column: Mapped[str] = mapped_column(String, nullable=False)
    folder_id: Mapped[str | None] = mapped_column(String, nullable=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class TrackerRow(Base):
    """One row of a tracker; ``row_id`` mirrors the primary-key value."""

    __tablename__ = "tracker_rows"
    __table_args__ = (UniqueConstraint("tracker_id", "row_id", name="uq_tracker_row"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tracker_id: Mapped[str] = mapped_column(ForeignKey("trackers.id"), nullable=False, index=True)
    row_id: Mapped[str] = mapped_column(String, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_by: Mapped[str] = mapped_column(String, nullable=False)


class RowAlias(Base):
    __tablename__ = "tracker_row_aliases"
    __table_args__ = (
        UniqueConstraint("tracker_id", "alias", name="uq_tracker_alias"),
        Index("ix_row_aliases_tracker_row", "tracker_id", "row_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tracker_id: Mapped[str] = mapped_column(ForeignKey("trackers.id"), nullable=False)
    row_id: Mapped[str] = mapped_column(String, nullable=False)
    alias: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class UpdateRecord(Base):
    """A reviewable bundle of tracker proposals derived from one source item."""

    __tablename__ = "update_records"
    __table_args__ = (
        Index("ix_update_records_user_created", "user_id", "created_at"),
        Index("ix_update_records_user_archived", "user_id", "archived_at"),
        UniqueConstraint("user_id", "source_id", name="uq_update_source"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String, nullable=True)

    tracker_matches: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    proposals: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    type: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    urgency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    average_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_high_confidence_updates: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    from_name: Mapped[str | None] = mapped_column(String, nullable=True)
    from_id: Mapped[str | None] = mapped_column(String, nullable=True)
    source_subject: Mapped[str | None] = mapped_column(String, nullable=True)
    source_quote: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_date: Mapped[int | None] = mapped_column(Integer, nullable=True)

    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    rejected: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ProcessedSourceId(Base):
    """Write-once ledger entry: this user's source item has produced an update."""

    __tablename__ = "processed_source_ids"
    __table_args__ = (UniqueConstraint("user_id", "source_id", name="uq_processed_source"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    source_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

"""Pydantic schemas for update records, proposals and review actions."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .tracker import CellValue

UpdateSource = Literal["email", "manual"]
ViewMode = Literal["active", "archived"]


class TrackerMatchRef(BaseModel):
    tracker_id: str
    tracker_name: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class ColumnUpdate(BaseModel):
    column_key: str
    column_name: str
    column_type: str
    current_value: CellValue = None
    proposed_value: CellValue
    confidence: float = Field(..., ge=0.0, le=1.0)


class TrackerProposal(BaseModel):
    tracker_id: str
    tracker_name: str
    row_id: str = Field(..., description="Primary-key value of the target row, or the new-row placeholder.")
    is_new_row: bool
    column_updates: list[ColumnUpdate] = Field(default_factory=list)


class UpdateCreate(BaseModel):
    source: UpdateSource = "email"
    source_id: str | None = None
    tracker_matches: list[TrackerMatchRef] = Field(default_factory=list)
    proposals: list[TrackerProposal] | None = None
    type: str = "general"
    category: str = "general"
    title: str = Field(..., min_length=1)
    summary: str | None = None
    urgency: str | None = None
    average_confidence: float | None = None
    has_high_confidence_updates: bool = False
    from_name: str | None = None
    from_id: str | None = None
    source_subject: str | None = None
    source_quote: str | None = None
    source_date: int | None = None


class UpdateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    source: str
    source_id: str | None = None
    tracker_matches: list[TrackerMatchRef] = Field(default_factory=list)
    proposals: list[TrackerProposal] | None = None
    type: str
    category: str
    title: str
    summary: str | None = None
    urgency: str | None = None
    average_confidence: float | None = None
    has_high_confidence_updates: bool = False
    from_name: str | None = None
    from_id: str | None = None
    source_subject: str | None = None
    source_quote: str | None = None
    source_date: int | None = None
    processed: bool
    processed_at: datetime | None = None
    approved: bool | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected: bool | None = None
    rejected_at: datetime | None = None
    viewed_at: datetime | None = None
    archived_at: datetime | None = None
    created_at: datetime


class UpdatePage(BaseModel):
    updates: list[UpdateRead]
    total: int
    offset: int
    limit: int


class UpdateStats(BaseModel):
    total: int = 0
    active: int = 0
    archived: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    with_proposals: int = 0
    unread: int = 0


class ColumnEdit(BaseModel):
    column_key: str
    new_value: CellValue
    target_column_key: str | None = Field(default=None, description="Write the value to another column instead.")


class ProposalEdit(BaseModel):
    tracker_id: str
    row_id: str
    is_new_row: bool = False
    edited_columns: list[ColumnEdit] = Field(default_factory=list)


class ApproveWithEditsRequest(BaseModel):
    edited_proposals: list[ProposalEdit] = Field(default_factory=list)


class ProposalResult(BaseModel):
    tracker_id: str
    row_id: str
    success: bool
    error: str | None = None


class ApprovalResult(BaseModel):
    update_id: str
    results: list[ProposalResult] = Field(default_factory=list)

    @property
    def applied(self) -> int:
        return sum(1 for result in self.results if result.success)


class MarkViewedResult(BaseModel):
    count: int

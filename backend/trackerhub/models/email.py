"""Schemas for inbound source items and inbox pipeline results."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class EmailSender(BaseModel):
    name: str | None = None
    email: str


class InboundEmail(BaseModel):
    """A message as supplied by the email provider."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Provider message id, used as the dedup key.")
    subject: str = ""
    sender: EmailSender = Field(..., alias="from")
    date: int = Field(..., description="Unix timestamp in seconds.")
    body: str | None = None
    snippet: str | None = None

    @property
    def content(self) -> str:
        return self.body or self.snippet or ""

    @property
    def sender_label(self) -> str:
        return self.sender.name or self.sender.email


class ProcessInboxRequest(BaseModel):
    email_count: int | None = Field(default=None, description="How many recent messages to consider.")


class FailedItem(BaseModel):
    source_id: str
    error: str


class ItemOutcome(BaseModel):
    source_id: str
    update_id: str
    proposal_count: int = 0
    tracker_count: int = 0


class PipelineStatistics(BaseModel):
    total_items: int = 0
    skipped_already_processed: int = 0
    successful_updates: int = 0
    failed_processing: int = 0
    total_proposals: int = 0
    average_proposals_per_item: float = 0.0


class PipelineResult(BaseModel):
    success: bool
    message: str
    updates_created: int = 0
    results: list[ItemOutcome] = Field(default_factory=list)
    failed_items: list[FailedItem] = Field(default_factory=list)
    statistics: PipelineStatistics = Field(default_factory=PipelineStatistics)

"""Pydantic schemas for trackers, rows, aliases and imports."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ColumnType = Literal["text", "number", "date", "select", "boolean"]
ImportMode = Literal["append", "update", "replace"]
CellValue = str | int | float | bool | None


class ColumnDefinition(BaseModel):
    id: str = Field(..., min_length=1, description="Stable column identifier.")
    name: str = Field(..., min_length=1, description="Display name.")
    key: str = Field(..., min_length=1, description="Storage key inside row data.")
    type: ColumnType = Field(default="text")
    required: bool = Field(default=False)
    options: list[str] | None = Field(default=None, description="Allowed values for select columns.")
    order: int = Field(default=0, description="Display and export order.")
    width: int | None = Field(default=None, description="Column width in pixels.")
    ai_enabled: bool = Field(default=False, description="Expose this column to extraction.")
    ai_aliases: list[str] = Field(default_factory=list, description="Alternative names used in inbound text.")
    description: str | None = None

    @property
    def extraction_eligible(self) -> bool:
        return self.ai_enabled or self.required


class TrackerCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    folder_id: str | None = None
    columns: list[ColumnDefinition] = Field(..., min_length=1)
    primary_key_column: str = Field(..., min_length=1)


class TrackerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    folder_id: str | None = None
    columns: list[ColumnDefinition] | None = None
    primary_key_column: str | None = None
    is_active: bool | None = None


class TrackerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: str | None = None
    folder_id: str | None = None
    columns: list[ColumnDefinition]
    primary_key_column: str
    user_id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    def column(self, key: str) -> ColumnDefinition | None:
        return next((col for col in self.columns if col.key == key), None)

    def ordered_columns(self) -> list[ColumnDefinition]:
        return sorted(self.columns, key=lambda col: col.order)


class RowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tracker_id: str
    row_id: str
    data: dict[str, CellValue]
    created_at: datetime
    created_by: str
    updated_at: datetime
    updated_by: str


class RowPage(BaseModel):
    rows: list[RowRead]
    total: int
    offset: int
    limit: int


class RowWrite(BaseModel):
    data: dict[str, CellValue] = Field(..., description="Column key to value mapping.")


class BulkImportRequest(BaseModel):
    rows: list[dict[str, CellValue]] = Field(default_factory=list)
    mode: ImportMode = Field(default="append")


class CsvImportRequest(BaseModel):
    csv_content: str = Field(..., description="Raw CSV text with a header line.")
    mode: ImportMode = Field(default="append")


class ImportFailure(BaseModel):
    row: int = Field(..., description="1-based index of the row in the submitted batch.")
    error: str


class ImportResult(BaseModel):
    imported: int = 0
    updated: int = 0
    failed: list[ImportFailure] = Field(default_factory=list)


class AliasCreate(BaseModel):
    row_id: str = Field(..., min_length=1)
    alias: str = Field(..., description="Free-text name that should resolve to the row.")


class AliasRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tracker_id: str
    row_id: str
    alias: str
    user_id: str
    created_at: datetime


class BulkAliasRequest(BaseModel):
    aliases: list[AliasCreate] = Field(default_factory=list)


class AliasFailure(BaseModel):
    alias: str
    reason: str


class BulkAliasResult(BaseModel):
    success: list[str] = Field(default_factory=list)
    failed: list[AliasFailure] = Field(default_factory=list)

"""Schema validation for tracker columns, rows and CSV payloads."""

from __future__ import annotations

import csv
import io
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

from trackerhub.models.tracker import CellValue, ColumnDefinition

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
TEXT_FIELD_MAX_LENGTH = 10000
SLUG_MAX_LENGTH = 50
MAX_COLUMNS = 100
MAX_SLUG_GENERATION_ATTEMPTS = 100

_FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
_SLUG_STRIP_PATTERN = re.compile(r"[^a-z0-9]+")
_TRUTHY = {"true", "1", "yes"}
_FORMULA_TRIGGERS = ("=", "+", "-", "@")
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)


@dataclass(slots=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass(slots=True)
class ValidationResult:
    errors: list[FieldError] = field(default_factory=list)
    data: dict[str, CellValue] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_message(self) -> str:
        return ", ".join(error.message for error in self.errors)


def is_valid_field_name(name: str) -> bool:
    """Allow-list check for keys interpolated into JSON path predicates."""

    return bool(_FIELD_NAME_PATTERN.match(name or ""))


def generate_slug(name: str) -> str:
    slug = _SLUG_STRIP_PATTERN.sub("-", name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def validate_columns(columns: Sequence[ColumnDefinition]) -> ValidationResult:
    result = ValidationResult()
    seen_ids: set[str] = set()
    seen_keys: set[str] = set()

    if len(columns) > MAX_COLUMNS:
        result.errors.append(FieldError("columns", f"Cannot create more than {MAX_COLUMNS} columns"))

    for column in columns:
        if column.id in seen_ids:
            result.errors.append(FieldError("columns", f"Duplicate column ID: {column.id}"))
        seen_ids.add(column.id)

        if column.key in seen_keys:
            result.errors.append(FieldError("columns", f"Duplicate column key: {column.key}"))
        seen_keys.add(column.key)

        if not is_valid_field_name(column.key):
            result.errors.append(
                FieldError(column.key, f"Column key \"{column.key}\" may only contain letters, digits, '_' and '-'")
            )

        if column.type == "select" and not column.options:
            result.errors.append(FieldError(column.key, f'Select column "{column.name}" must have options'))

    return result


def validate_row_data(columns: Iterable[ColumnDefinition], data: Mapping[str, Any]) -> ValidationResult:
    """Validate and coerce a row against the schema.

    Only defined column keys are carried into ``result.data``; unknown keys are
    dropped. Missing optional values are omitted while an explicit ``None`` is
    preserved so callers can clear a cell.
    """

    result = ValidationResult()

    for column in columns:
        present = column.key in data
        value = data.get(column.key)

        if column.required and (value is None or value == ""):
            result.errors.append(FieldError(column.key, f"{column.name} is required"))
            continue

        if not present or value == "":
            continue

        if value is None:
            result.data[column.key] = None
            continue

        coerced, error = _coerce_value(column, value)
        if error:
            result.errors.append(FieldError(column.key, error))
        else:
            result.data[column.key] = coerced

    return result


def _coerce_value(column: ColumnDefinition, value: Any) -> tuple[CellValue, str | None]:
    if column.type == "number":
        number = coerce_number(value)
        if number is None:
            return None, f"{column.name} must be a number"
        return number, None

    if column.type == "date":
        parsed = coerce_date(value)
        if parsed is None:
            return None, f"{column.name} must be a valid date"
        return parsed, None

    if column.type == "select":
        if column.options and value not in column.options:
            return None, f"{column.name} must be one of: {', '.join(column.options)}"
        return value, None

    if column.type == "boolean":
        return coerce_boolean(value), None

    text = str(value)
    if len(text) > TEXT_FIELD_MAX_LENGTH:
        return None, f"{column.name} must be {TEXT_FIELD_MAX_LENGTH} characters or less"
    return text, None


def coerce_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip().replace(",", ""))
        except ValueError:
            return None

    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().lower() in _TRUTHY


def coerce_date(value: Any) -> str | None:
    """Return an ISO-8601 UTC timestamp for any accepted date representation."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        parsed = _parse_date_string(str(value).strip())
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_date_string(text: str) -> datetime | None:
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def sanitize_csv_cell(value: str) -> str:
    if value and value.startswith(_FORMULA_TRIGGERS):
        return f"'{value}"
    return value


def parse_csv(csv_text: str) -> tuple[list[str], list[list[str]]]:
    """Parse CSV text into a header and data rows, neutralising formula cells."""

    if not csv_text.strip():
        return [], []

    reader = csv.reader(io.StringIO(csv_text.strip()))
    lines = [row for row in reader if any(cell.strip() for cell in row)]
    if not lines:
        return [], []

    headers = [sanitize_csv_cell(cell.strip()) for cell in lines[0]]
    rows = [[sanitize_csv_cell(cell.strip()) for cell in line] for line in lines[1:]]
    return headers, rows


def map_csv_to_tracker_data(
    headers: Sequence[str],
    rows: Iterable[Sequence[str]],
    columns: Sequence[ColumnDefinition],
) -> list[dict[str, CellValue]]:
    """Map CSV cells onto column keys, matching headers by name or key."""

    lookup: dict[str, ColumnDefinition] = {}
    for column in columns:
        lookup.setdefault(column.name.lower(), column)
        lookup.setdefault(column.key.lower(), column)

    header_columns = [lookup.get(header.lower()) for header in headers]

    mapped: list[dict[str, CellValue]] = []
    for row in rows:
        row_data: dict[str, CellValue] = {}
        for index, column in enumerate(header_columns):
            if column is not None and index < len(row):
                row_data[column.key] = row[index]
        mapped.append(row_data)
    return mapped

"""CSV snapshot export of a tracker's rows."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from datetime import date

from trackerhub.models.tables import TrackerRow
from trackerhub.models.tracker import TrackerRead


def _render(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def export_tracker_csv(tracker: TrackerRead, rows: Iterable[TrackerRow]) -> str:
    """Render rows as CSV with one column per schema column, in display order."""

    columns = tracker.ordered_columns()
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([column.name for column in columns])
    for row in rows:
        writer.writerow([_render(row.data.get(column.key)) for column in columns])
    return buffer.getvalue()


def export_filename(slug: str, today: date | None = None) -> str:
    return f"{slug}-{(today or date.today()).isoformat()}.csv"

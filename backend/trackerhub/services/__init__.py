"""Service exports."""

from . import (
    aliases,
    bulk_import,
    email_source,
    export,
    extraction,
    ledger,
    lifecycle,
    matcher,
    pipeline,
    proposals,
    rows,
    trackers,
    validation,
)

__all__ = [
    "aliases",
    "bulk_import",
    "email_source",
    "export",
    "extraction",
    "ledger",
    "lifecycle",
    "matcher",
    "pipeline",
    "proposals",
    "rows",
    "trackers",
    "validation",
]

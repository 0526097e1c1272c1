"""Domain exceptions surfaced by tracker and update operations."""

from __future__ import annotations


class TrackerHubError(Exception):
    """Base class for failures a caller can show verbatim to the end user."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TrackerValidationError(TrackerHubError):
    """Data does not satisfy the tracker schema or an input limit."""

    status_code = 422

    def __init__(self, message: str, *, errors: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class DuplicateKeyError(TrackerHubError):
    status_code = 409


class NotFoundError(TrackerHubError):
    status_code = 404


class UnauthorizedError(TrackerHubError):
    status_code = 403


class AlreadyProcessedError(TrackerHubError):
    status_code = 409


class ExtractionParseError(TrackerHubError):
    """Model output could not be decoded; callers degrade to an empty match set."""

    status_code = 502

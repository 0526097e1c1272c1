"""Email provider interface and a JSON-file implementation."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from trackerhub.core.logging import get_logger
from trackerhub.models.email import InboundEmail

logger = get_logger(__name__)

_MESSAGES = TypeAdapter(list[InboundEmail])


class EmailSource(Protocol):
    async def fetch_recent(self, user_id: str, limit: int) -> list[InboundEmail]:
        """Return up to ``limit`` of the user's most recent messages, newest first."""
        ...


class JsonFileEmailSource:
    """Reads messages from a JSON file.

    The file holds either a list of messages shared by every user or an object
    mapping user ids to their own message lists.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self, user_id: str) -> list[InboundEmail]:
        if not self.path.exists():
            logger.warning("email_source.file_missing", path=str(self.path))
            return []

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload = payload.get(user_id, [])

        try:
            return _MESSAGES.validate_python(payload)
        except ValidationError as exc:
            logger.exception("email_source.invalid_payload", path=str(self.path), exc_info=exc)
            raise

    async def fetch_recent(self, user_id: str, limit: int) -> list[InboundEmail]:
        messages = await asyncio.to_thread(self._load, user_id)
        messages.sort(key=lambda message: message.date, reverse=True)
        return messages[:limit]

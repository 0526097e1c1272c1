"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends, Header

from trackerhub.core.config import AppSettings, get_settings
from trackerhub.core.db import get_session, get_session_factory
from trackerhub.core.errors import UnauthorizedError
from trackerhub.core.logging import bind_request_context
from trackerhub.services import email_source, extraction, pipeline


def get_app_settings() -> AppSettings:
    """Expose application settings as a dependency."""

    return get_settings()


async def get_db_session():
    """Provide an async SQLAlchemy session."""

    async with get_session() as session:
        yield session


def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Read the caller identity supplied by the upstream identity provider."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise UnauthorizedError("Authentication required")

    bind_request_context(user_id=user_id)
    return user_id


def get_extraction_engine(
    settings: AppSettings = Depends(get_app_settings),
) -> extraction.ExtractionEngine:
    return extraction.get_extraction_engine(settings)


def get_email_source(settings: AppSettings = Depends(get_app_settings)) -> email_source.EmailSource:
    return email_source.JsonFileEmailSource(settings.inbox_path)


def get_inbox_pipeline(
    settings: AppSettings = Depends(get_app_settings),
    engine: extraction.ExtractionEngine = Depends(get_extraction_engine),
    source: email_source.EmailSource = Depends(get_email_source),
) -> pipeline.InboxPipeline:
    return pipeline.InboxPipeline(
        session_factory=get_session_factory(),
        email_source=source,
        engine=engine,
        settings=settings,
    )

"""Application configuration powered by Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Strongly typed application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: Literal["dev", "staging", "prod"] = Field(default="dev")
    project_name: str = Field(default="Tracker Hub API")
    version: str = Field(default="0.1.0")
    cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = Field(default="INFO")

    database_url: str = Field(default="sqlite+aiosqlite:///./data/trackerhub.db")

    openai_api_key: str | None = Field(default=None, min_length=1)
    openai_api_base: str | None = None

    extraction_model: str = Field(default="gpt-4o-mini")
    extraction_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    extraction_max_retries: int = Field(default=2, ge=0, le=10)
    extraction_max_prompt_chars: int = Field(default=12000, ge=1000)

    langsmith_api_key: str | None = None
    langsmith_endpoint: str | None = None
    langsmith_project: str = Field(default="trackerhub-extraction")
    enable_tracing: bool = Field(default=False)

    import_batch_size: int = Field(default=50, ge=1, le=1000)
    max_import_rows: int = Field(default=10000, ge=1)
    max_csv_size_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    ledger_retention_days: int = Field(default=90, ge=1)
    ledger_cleanup_days: int = Field(default=30, ge=1)

    pipeline_concurrency: int = Field(default=4, ge=1, le=32)
    default_email_fetch_count: int = Field(default=5, ge=1)
    max_email_fetch_count: int = Field(default=50, ge=1)
    inbox_path: str = Field(default="./data/inbox.json")


@lru_cache
def get_settings() -> AppSettings:
    """Provide a cached singleton settings instance."""

    return AppSettings()

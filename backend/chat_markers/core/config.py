from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="127.0.0.1", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(default="", alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    store_backend: str = Field(default="sqlite", alias="STORE_BACKEND")
    db_url: str = Field(default="sqlite+aiosqlite:///./chat_markers.db", alias="DB_URL")
    storage_soft_limit_bytes: int = Field(
        default=5 * 1024 * 1024, alias="STORAGE_SOFT_LIMIT_BYTES"
    )
    # 0 disables the hard capacity check.
    storage_quota_bytes: int = Field(default=10 * 1024 * 1024, alias="STORAGE_QUOTA_BYTES")
    debounce_delay_ms: int = Field(default=300, alias="DEBOUNCE_DELAY_MS")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            import json

            try:
                value: Any = json.loads(raw)
            except json.JSONDecodeError:
                value = None
            if isinstance(value, list):
                items = [str(item).strip() for item in value]
                return [item for item in items if item]
        return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached engine settings."""

    return Settings()

"""Application configuration loaded from config.yaml and environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_YAML_PATH = PROJECT_ROOT / "config.yaml"


# --- YAML sub-models ---


class ScheduleConfig(BaseModel):
    """Scheduler timing settings."""

    prepare_day_of_month: int = 24
    prepare_hour: int = 3
    prepare_minute: int = 0
    sync_interval_minutes: int = 10


class SyncConfig(BaseModel):
    """Notion sync queue parameters."""

    max_retries: int = 5
    batch_size: int = 10
    stale_after_minutes: int = 15
    notion_version: str = "2022-06-28"
    request_timeout: float = 30.0


# --- Main settings ---


class Settings(BaseSettings):
    """Application settings combining .env secrets and config.yaml values."""

    # App config
    env: str = Field(default="dev")
    log_format: str = Field(default="text")
    timezone: str = Field(default="UTC")
    enable_internal_scheduler: bool = Field(default=True)
    cors_origins: str = Field(default="http://localhost:3000")

    # Secrets from .env
    supabase_url: str = Field(default="")
    supabase_publishable_key: str = Field(default="")
    supabase_secret_key: str = Field(default="")
    supabase_anon_key: str = Field(default="")
    supabase_service_role_key: str = Field(default="")
    supabase_jwt_secret: str = Field(default="")
    cron_token: str = Field(default="")

    # YAML-sourced config (populated via model_validator)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    model_config = {
        "env_file": str(PROJECT_ROOT / ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def __init__(self, **kwargs: Any) -> None:
        yaml_data = _load_yaml_config()
        merged = {**yaml_data, **kwargs}
        super().__init__(**merged)

    @property
    def effective_supabase_publishable_key(self) -> str:
        """Prefer the new publishable key, falling back to the legacy anon key."""
        return self.supabase_publishable_key or self.supabase_anon_key

    @property
    def effective_supabase_secret_key(self) -> str:
        """Prefer the new secret key, falling back to the legacy service-role key."""
        return self.supabase_secret_key or self.supabase_service_role_key

    @property
    def cors_origin_list(self) -> list[str]:
        """Comma-separated CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


def _load_yaml_config() -> dict[str, Any]:
    """Read and parse config.yaml, returning an empty dict on failure."""
    if not CONFIG_YAML_PATH.exists():
        return {}
    with CONFIG_YAML_PATH.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()

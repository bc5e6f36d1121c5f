"""Application-wide settings for the DracoPanel backend."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parents[1]

DEFAULT_PANEL_NAME = "DracoPanel"


class Settings(BaseSettings):
    """Global application configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = Field(default=DEFAULT_PANEL_NAME)
    environment: Literal["production", "development"] = Field(default="production")
    log_level: str = Field(default="INFO")

    # Signed cookie sessions
    session_secret: str = Field(default="dracopanel-dev-secret-change-me")
    session_max_age: int = Field(default=14 * 24 * 60 * 60)
    session_https_only: bool = Field(default=False)

    # Key-value store: JSON file unless DATABASE_URL is configured
    kv_store_path: str = Field(default="storage/kv.json")
    database_url: Optional[str] = Field(default=None)
    database_echo: bool = Field(default=False)

    # Audit trail
    audit_log_dir: str = Field(default="storage/logs")
    audit_max_entries: int = Field(default=1000, ge=1)
    audit_default_limit: int = Field(default=100, ge=1)

    # Page routes generated from a JSON description
    pages_config_path: str = Field(default=str(PACKAGE_DIR / "pages.json"))

    # Hashing cost for passwords and API keys
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # API key rate limiting
    api_key_rate_window_seconds: int = Field(default=60)
    api_key_rate_max_requests: int = Field(default=60)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["DEFAULT_PANEL_NAME", "PACKAGE_DIR", "Settings", "get_settings"]

"""Configuration loaded from ``BOOK_CATALOG_*`` environment variables."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

APP_DIR = Path.home() / ".book_catalog"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOOK_CATALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # "production" hides error details from the error page.
    env: str = "development"
    db_path: Path = APP_DIR / "library.db"
    log_level: str = "INFO"

    host: str = "127.0.0.1"
    port: int = 3000

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()

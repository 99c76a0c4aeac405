from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LEADERBOARD_",
        extra="ignore",
    )

    # Core
    APP_NAME: str = "Leaderboard"
    LOG_LEVEL: str = "INFO"
    DEBUG_HTTP: bool = False

    # DB
    DATABASE_URL: str = "sqlite:///./data/leaderboard.db"
    AUTO_CREATE_SCHEMA: bool = True
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0

    # Listing
    PAGE_SIZE_DEFAULT: int = Field(default=20, ge=1)
    MAX_PAGE_SIZE: int = Field(default=100, ge=1)

    # Photos
    MAX_UPLOAD_BYTES: int = 1 * 1024 * 1024
    MAX_UPLOAD_PIXELS: int = Field(default=40_000_000, ge=1)
    MAX_PHOTO_BYTES: int = 500 * 1024
    MAX_PHOTO_WIDTH: int = 1024
    JPEG_QUALITY_START: int = 80
    JPEG_QUALITY_FLOOR: int = 40
    JPEG_QUALITY_STEP: int = 5
    JPEG_QUALITY_MIN: int = 35
    PHOTO_CACHE_MAX_AGE: int = 30 * 24 * 3600

    # Votes
    VOTE_WINDOW_MINUTES: int = Field(default=60, ge=1)

    @model_validator(mode="after")
    def _clamp_page_size(self) -> "Settings":
        if self.PAGE_SIZE_DEFAULT > self.MAX_PAGE_SIZE:
            self.PAGE_SIZE_DEFAULT = self.MAX_PAGE_SIZE
        return self

settings = Settings()

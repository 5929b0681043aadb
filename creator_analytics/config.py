"""Application configuration loaded from environment variables."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

from creator_analytics.models import TIME_RANGE_DAYS


class Settings(BaseSettings):
    app_port: int = 8050
    data_dir: Path = Path("data")
    log_level: str = "info"
    max_upload_size_mb: int = 50

    # Storage layer rejects bulk writes above 100 rows per call
    daily_upsert_batch_size: int = 100

    # Used when no X-User-Id header is supplied (single-user self-hosting)
    default_user_id: str = "local"

    # Owning page created for users who never connected a real page
    placeholder_page_url: str = "https://www.linkedin.com/in/imported-analytics"

    default_time_range: str = "30d"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("daily_upsert_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError(
                f"DAILY_UPSERT_BATCH_SIZE must be between 1 and 100, got {v}"
            )
        return v

    @field_validator("default_time_range")
    @classmethod
    def validate_time_range(cls, v: str) -> str:
        if v not in TIME_RANGE_DAYS:
            raise ValueError(
                f"DEFAULT_TIME_RANGE must be one of {', '.join(TIME_RANGE_DAYS)}, got '{v}'"
            )
        return v

    @property
    def db_path(self) -> Path:
        return self.data_dir / "analytics.db"

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


settings = Settings()

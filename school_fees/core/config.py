from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    # Shared secret for scheduler-triggered batch endpoints (x-cron-secret header).
    # When unset, every /cron/* call is rejected.
    cron_secret: Optional[str] = Field(None, alias="CRON_SECRET")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    db_echo: bool = Field(False, alias="DB_ECHO")
    # Seconds before a pooled connection is discarded and reopened.
    db_pool_recycle: int = Field(300, alias="DB_POOL_RECYCLE")

    # Monthly obligations fall due on this day of the billed month.
    default_due_day: int = Field(5, alias="DEFAULT_DUE_DAY", ge=1, le=28)
    # Month in which a new academic year starts when a school has no current year configured.
    academic_year_start_month: int = Field(7, alias="ACADEMIC_YEAR_START_MONTH", ge=1, le=12)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

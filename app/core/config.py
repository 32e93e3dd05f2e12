from typing import Optional

import pytz
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Booking policy
    package_validity_months: int = Field(1, alias="PACKAGE_VALIDITY_MONTHS")
    cancellation_notice_hours: int = Field(24, alias="CANCELLATION_NOTICE_HOURS")
    # Weekly slots are wall-clock times in this zone; timestamps are stored in UTC.
    school_timezone: str = Field("Asia/Jakarta", alias="SCHOOL_TIMEZONE")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # First admin account created by app.db.seed_admin
    admin_email: Optional[str] = Field(None, alias="ADMIN_EMAIL")
    admin_password: Optional[str] = Field(None, alias="ADMIN_PASSWORD")

    @field_validator("school_timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()

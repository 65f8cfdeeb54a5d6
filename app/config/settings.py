from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Rental Back Office Scheduler"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite:///./rental_backoffice.db"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Document expiry scheduler
    BUSINESS_TIMEZONE: str = "Asia/Kolkata"
    DOCUMENT_EXPIRY_SCHEDULER_ENABLED: bool = True
    DOCUMENT_EXPIRY_RUN_ON_START: bool = True
    DOCUMENT_EXPIRY_TICK_INTERVAL_SECONDS: int = 24 * 60 * 60
    DEFAULT_NOTIFICATION_THRESHOLDS: Union[str, List[int]] = "30,7,1"
    NOTIFICATION_MAX_RETRIES: int = 3
    NOTIFICATION_SEND_TIMEOUT_SECONDS: float = 30.0
    NOTIFICATION_DISPATCH_BATCH_SIZE: int = 25

    # SMTP
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM_ADDRESS: str = "no-reply@localhost"
    ADMIN_EMAILS: Union[str, List[str]] = ""

    @field_validator("ALLOWED_HOSTS", "ADMIN_EMAILS", mode="before")
    def assemble_string_list(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("DEFAULT_NOTIFICATION_THRESHOLDS", mode="before")
    def assemble_thresholds(cls, v: Union[str, List[int]]) -> Union[List[int], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [int(i.strip()) for i in v.split(",") if i.strip()]
        return v

    @field_validator("DEFAULT_NOTIFICATION_THRESHOLDS")
    def validate_thresholds(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("At least one default notification threshold is required")
        if any(days < 0 for days in v):
            raise ValueError("Notification thresholds must be non-negative")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()

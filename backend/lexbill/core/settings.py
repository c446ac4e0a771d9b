from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "LexBill API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./lexbill.db",
        description="SQLAlchemy database URL",
    )

    # DB pool tuning (Postgres)
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # Billing
    default_currency: str = Field(default="EUR", description="Currency used when a proposal has none")
    invoice_due_days: int = Field(default=30, description="Days from generation until a new invoice is due")
    invoice_number_max_attempts: int = Field(
        default=5,
        description="Attempts to generate an invoice before giving up on number conflicts",
        validation_alias=AliasChoices("INVOICE_NUMBER_MAX_ATTEMPTS", "INVOICE_RETRY_ATTEMPTS"),
    )
    strict_credit_allocation: bool = Field(
        default=True,
        description="Raise on credit over-allocation instead of clamping the share",
    )

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        currency = (value or "").strip().upper()
        if len(currency) != 3:
            return "EUR"
        return currency

    @field_validator("invoice_number_max_attempts")
    @classmethod
    def at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

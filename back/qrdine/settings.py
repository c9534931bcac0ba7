from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from `config.env` at the repository root (or a local `.env`),
    then from the process environment.
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default="sqlite:///./qrdine.db", validation_alias="DATABASE_URL")
    sql_echo: bool = Field(default=False, validation_alias="SQL_ECHO")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=720, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    gateway_currency: str = Field(default="INR", validation_alias="GATEWAY_CURRENCY")
    razorpay_api_base: str = Field(default="https://api.razorpay.com/v1", validation_alias="RAZORPAY_API_BASE")
    gateway_timeout_seconds: float = Field(default=10.0, validation_alias="GATEWAY_TIMEOUT_SECONDS")

    # Kitchen escalation defaults, used when a tenant has no threshold row
    default_warning_minutes: int = Field(default=5, validation_alias="DEFAULT_WARNING_MINUTES")
    default_critical_minutes: int = Field(default=20, validation_alias="DEFAULT_CRITICAL_MINUTES")
    # Floor-plan overdue flag; not tied to the per-tenant thresholds
    overdue_minutes: int = Field(default=20, validation_alias="OVERDUE_MINUTES")

    cors_origins: str = Field(
        default="http://localhost:4200",
        validation_alias="CORS_ORIGINS"
    )


settings = Settings()

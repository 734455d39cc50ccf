"""Application settings loaded from the environment (and `.env`)."""
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


GATEWAY_BASE_URLS = {
    "sandbox": "https://sandbox.cashfree.com/pg",
    "production": "https://api.cashfree.com/pg",
}


class Settings(BaseSettings):
    # Application
    app_name: str = Field(default="payment-broker", description="Service name")
    app_env: str = Field(default="development", description="development / production")
    debug: bool = Field(default=False, description="Include internal error detail in responses")
    log_level: str = Field(default="INFO", description="Logging level")
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
    )

    # Store
    database_url: str = Field(default="sqlite:///./payments.db", description="SQLAlchemy URL")
    notification_claim_ttl_seconds: int = Field(
        default=300, description="Age after which an unfinished email claim is abandoned"
    )

    # Payment gateway
    gateway_environment: str = Field(default="sandbox", description="sandbox / production")
    gateway_client_id: str = Field(default="", description="Gateway client id")
    gateway_client_secret: str = Field(default="", description="Gateway client secret")
    gateway_api_version: str = Field(default="2022-09-01", description="x-api-version header")
    gateway_timeout_seconds: float = Field(default=10.0, description="Per-request timeout")
    gateway_verify_webhooks: bool = Field(
        default=False, description="Reject webhooks without a valid signature"
    )

    # Callback URLs
    frontend_url: str = Field(default="http://localhost:3000", description="Customer-facing site")
    backend_url: str = Field(default="http://localhost:8000", description="Public URL of this API")

    # SMTP
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587)
    smtp_secure: bool = Field(default=False, description="Implicit TLS (SMTPS)")
    smtp_user: str = Field(default="")
    smtp_password: str = Field(default="")
    email_from: str = Field(default="notifications@localhost")
    admin_email: str = Field(default="admin@localhost")

    # Orders
    brand_name: str = Field(default="Teraforge Digital Lab LLP")
    transaction_id_prefix: str = Field(default="HFU")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("gateway_environment")
    @classmethod
    def validate_gateway_environment(cls, v: str) -> str:
        if v.lower() not in GATEWAY_BASE_URLS:
            raise ValueError(f"Invalid gateway environment. Must be one of: {list(GATEWAY_BASE_URLS)}")
        return v.lower()

    @property
    def gateway_base_url(self) -> str:
        return GATEWAY_BASE_URLS[self.gateway_environment]

    def get_allowed_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Settings are read once per process."""
    return Settings()

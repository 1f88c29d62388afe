from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Variable names match the ones used by existing deployments of the commerce
    backend so a shared ``.env`` file keeps working.
    """

    app_name: str = Field(default="medshop", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
    )
    api_version: str = Field(default="v1", validation_alias="API_VERSION")

    database_host: str | None = Field(default=None, validation_alias="DB_HOST")
    database_port: int = Field(default=3306, validation_alias="DB_PORT")
    database_user: str | None = Field(default=None, validation_alias="DB_USER")
    database_password: str | None = Field(default=None, validation_alias="DB_PASSWORD")
    database_name: str | None = Field(default=None, validation_alias="DB_NAME")
    database_pool_size: int = Field(default=10, validation_alias="DB_POOL_SIZE")
    sqlite_path: Path | None = Field(default=None, validation_alias="SQLITE_PATH")
    migration_lock_timeout: int = Field(
        default=60, validation_alias="MIGRATION_LOCK_TIMEOUT"
    )

    redis_url: str | None = Field(default=None, validation_alias="REDIS_URL")
    cache_default_ttl: int = Field(default=3600, validation_alias="CACHE_DEFAULT_TTL")
    cache_retry_interval: int = Field(default=30, validation_alias="CACHE_RETRY_INTERVAL")
    cache_sweep_interval: int = Field(default=60, validation_alias="CACHE_SWEEP_INTERVAL")

    jwt_secret: str = Field(validation_alias=AliasChoices("JWT_SECRET", "SECRET_KEY"))
    jwt_access_expiry: int = Field(default=86400, validation_alias="JWT_ACCESS_EXPIRY")
    jwt_refresh_expiry: int = Field(
        default=2592000, validation_alias="JWT_REFRESH_EXPIRY"
    )
    bcrypt_rounds: int = Field(default=10, validation_alias="BCRYPT_ROUNDS")

    tax_rate: Decimal = Field(default=Decimal("0.10"), validation_alias="TAX_RATE")
    free_shipping_threshold: Decimal = Field(
        default=Decimal("500000"), validation_alias="FREE_SHIPPING_THRESHOLD"
    )
    shipping_fee: Decimal = Field(default=Decimal("30000"), validation_alias="SHIPPING_FEE")
    # The counter day for POS reports starts at midnight in this zone.
    store_timezone: str = Field(default="Asia/Ho_Chi_Minh", validation_alias="STORE_TIMEZONE")

    stripe_api_key: str | None = Field(default=None, validation_alias="STRIPE_API_KEY")
    stripe_secret_key: str | None = Field(default=None, validation_alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(
        default=None, validation_alias="STRIPE_WEBHOOK_SECRET"
    )
    vnpay_merchant_id: str | None = Field(default=None, validation_alias="VNPAY_MERCHANT_ID")
    vnpay_secret_key: str | None = Field(default=None, validation_alias="VNPAY_SECRET_KEY")
    vnpay_return_url: str = Field(
        default="http://localhost:3000/api/v1/payment/callback/vnpay",
        validation_alias="VNPAY_RETURN_URL",
    )
    momo_partner_code: str | None = Field(default=None, validation_alias="MOMO_PARTNER_CODE")
    momo_access_key: str | None = Field(default=None, validation_alias="MOMO_ACCESS_KEY")
    momo_secret_key: str | None = Field(default=None, validation_alias="MOMO_SECRET_KEY")
    momo_redirect_url: str = Field(
        default="http://localhost:3000/api/v1/payment/callback/momo",
        validation_alias="MOMO_REDIRECT_URL",
    )
    momo_ipn_url: str = Field(
        default="http://localhost:3000/api/v1/payment/ipn/momo",
        validation_alias="MOMO_IPN_URL",
    )
    payment_simulation_delay: float = Field(
        default=2.0, validation_alias="PAYMENT_SIMULATION_DELAY"
    )
    frontend_url: str = Field(
        default="http://localhost:5173", validation_alias="FRONTEND_URL"
    )

    allowed_origins: str = Field(default="", validation_alias="ALLOWED_ORIGINS")
    log_level: str | None = Field(default=None, validation_alias="LOG_LEVEL")
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    audit_log_file_path: Path | None = Field(
        default=None, validation_alias="AUDIT_LOG_FILE_PATH"
    )

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator(
        "database_host",
        "database_user",
        "database_password",
        "database_name",
        "sqlite_path",
        "redis_url",
        "stripe_api_key",
        "stripe_secret_key",
        "stripe_webhook_secret",
        "vnpay_merchant_id",
        "vnpay_secret_key",
        "momo_partner_code",
        "momo_access_key",
        "momo_secret_key",
        "log_level",
        "log_file_path",
        "audit_log_file_path",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def cors_origins(self) -> list[str]:
        return [item.strip() for item in self.allowed_origins.split(",") if item.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def api_prefix(self) -> str:
        return f"/api/{self.api_version}"


@lru_cache
def get_settings() -> Settings:
    return Settings()

"""API-layer configuration loaded from environment variables."""

from __future__ import annotations

from enum import Enum
from typing import Self

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PLACEHOLDER_PROXY_SECRET = "fleetpay-dev-proxy-secret"


class PlatformEnv(str, Enum):
    """Deployment environment label."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class APISettings(BaseSettings):
    """FastAPI application settings.

    All values can be overridden via environment variables prefixed with
    ``API_`` (e.g. ``API_GATEWAY_PROXY_URL=https://proxy.internal``) or
    through a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    platform_env: PlatformEnv = PlatformEnv.DEV

    # Async SQLAlchemy URL (asyncpg for PostgreSQL, aiosqlite for SQLite).
    database_url: str = "sqlite+aiosqlite:///.fleetpay/state.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20

    cors_origins: list[str] = ["http://localhost:3000"]
    cors_allow_credentials: bool = True

    # Structured JSON logging for log shippers.
    structured_logging: bool = False
    log_level: str = "INFO"

    # mTLS proxy in front of the payment gateway.
    gateway_proxy_url: str = "http://localhost:3000"
    gateway_proxy_secret: SecretStr = SecretStr(_PLACEHOLDER_PROXY_SECRET)
    gateway_timeout_seconds: float = 30.0
    gateway_token_path: str = "/token"
    gateway_statement_path: str = "/transactions"
    gateway_invoices_path: str = "/invoices"
    gateway_invoice_create_path: str = "/invoices/create"
    statement_page_size: int = 100
    invoice_page_size: int = 50
    max_pages: int = 50

    # Token lifecycle.
    token_safety_margin_seconds: int = 300
    default_token_ttl_seconds: int = 3600
    auth_retry_budget: int = 1

    # Reconciliation.
    reconciliation_window_days: int = 7

    # Shared secret for inbound webhook signatures; empty disables the check.
    webhook_secret: SecretStr = SecretStr("")

    # Scheduled sync across all configured tenants.
    auto_sync_enabled: bool = False
    auto_sync_interval_seconds: float = 3600.0
    auto_sync_lookback_days: int = 30
    auto_sync_max_workers: int = 4
    auto_sync_import_invoices: bool = True

    @model_validator(mode="after")
    def _validate_cors_credentials_not_wildcard(self) -> Self:
        """Reject wildcard origins when credentials are enabled."""
        if self.cors_allow_credentials and "*" in self.cors_origins:
            raise ValueError(
                "Cannot use wildcard origins with credentials. "
                "Specify explicit origins instead of '*' when "
                "cors_allow_credentials=True."
            )
        return self

    @model_validator(mode="after")
    def _validate_gateway_settings(self) -> Self:
        """Outside dev, require a real proxy secret and proxy URL."""
        if self.platform_env is not PlatformEnv.DEV:
            secret = self.gateway_proxy_secret.get_secret_value()
            if not secret or secret == _PLACEHOLDER_PROXY_SECRET:
                raise ValueError("API_GATEWAY_PROXY_SECRET must be set outside the dev environment")
            if not self.gateway_proxy_url:
                raise ValueError("API_GATEWAY_PROXY_URL must be set outside the dev environment")
        if self.auto_sync_max_workers < 1:
            raise ValueError("auto_sync_max_workers must be at least 1")
        return self


def load_api_settings() -> APISettings:
    """Construct settings from the environment / ``.env`` file."""
    return APISettings()

"""Tenant gateway credentials and access-token models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from fleetpay_core.errors import GatewayConfigurationError

GATEWAY_SETTINGS_KEY = "gateway_settings"
GATEWAY_TOKEN_KEY = "gateway_access_token"

PRODUCTION_BASE_URL = "https://matls-clients.api.cora.com.br"
STAGE_BASE_URL = "https://matls-clients.api.stage.cora.com.br"

TOKEN_SAFETY_MARGIN = timedelta(minutes=5)


class GatewayEnvironment(str, Enum):
    """Gateway environment a tenant's credentials were issued for."""

    PRODUCTION = "production"
    STAGE = "stage"


class TenantGatewayConfig(BaseModel):
    """Per-tenant gateway identity.

    Field aliases match the stored JSON layout (``cert_file`` /
    ``key_file``).  Completeness is checked by :meth:`validate_credentials`
    rather than at parse time so an incomplete stored config surfaces as a
    configuration error instead of a validation crash.
    """

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(default="", description="OAuth client id issued by the gateway.")
    certificate: str = Field(default="", alias="cert_file", description="Client certificate (PEM).")
    private_key: SecretStr = Field(
        default=SecretStr(""),
        alias="key_file",
        description="Private key matching the certificate (PEM).",
    )
    base_url: str | None = Field(default=None, description="Explicit mTLS base URL override.")
    environment: GatewayEnvironment = Field(
        default=GatewayEnvironment.STAGE,
        description="Environment used to derive the base URL when none is configured.",
    )

    def validate_credentials(self) -> None:
        """Raise :class:`GatewayConfigurationError` unless the identity is usable."""
        key = self.private_key.get_secret_value()
        if not self.client_id or not self.certificate or not key:
            raise GatewayConfigurationError(
                "Incomplete gateway configuration: client_id, certificate and private key are required"
            )
        if "BEGIN CERTIFICATE" not in self.certificate or "END CERTIFICATE" not in self.certificate:
            raise GatewayConfigurationError("Invalid certificate format: a PEM certificate is required")
        if "BEGIN" not in key or "PRIVATE KEY" not in key:
            raise GatewayConfigurationError("Invalid private key format: a PEM private key is required")

    @property
    def resolved_base_url(self) -> str:
        """mTLS host to call; an explicit ``matls-clients`` URL wins."""
        if self.base_url and "matls-clients." in self.base_url:
            return self.base_url.rstrip("/")
        if self.environment is GatewayEnvironment.PRODUCTION:
            return PRODUCTION_BASE_URL
        return STAGE_BASE_URL

    def to_storage(self) -> dict[str, Any]:
        """Serialize to the stored JSON layout (secret included)."""
        return {
            "client_id": self.client_id,
            "cert_file": self.certificate,
            "key_file": self.private_key.get_secret_value(),
            "base_url": self.base_url,
            "environment": self.environment.value,
        }

    def redacted(self) -> dict[str, Any]:
        """Summary safe to return over the API or write to logs."""
        return {
            "client_id": self.client_id,
            "has_certificate": bool(self.certificate),
            "has_private_key": bool(self.private_key.get_secret_value()),
            "base_url": self.resolved_base_url,
            "environment": self.environment.value,
        }


class TokenGrant(BaseModel):
    """Successful answer of the gateway token endpoint."""

    access_token: str = Field(..., min_length=1)
    expires_in: int = Field(default=3600, gt=0, description="Token lifetime in seconds.")


class CachedToken(BaseModel):
    """Access token persisted per tenant with its absolute expiry."""

    access_token: str
    expires_at: datetime

    @classmethod
    def from_grant(cls, grant: TokenGrant, *, now: datetime | None = None) -> CachedToken:
        now = now or datetime.now(UTC)
        return cls(access_token=grant.access_token, expires_at=now + timedelta(seconds=grant.expires_in))

    def is_usable(self, *, now: datetime | None = None, safety_margin: timedelta = TOKEN_SAFETY_MARGIN) -> bool:
        """True while ``now < expires_at - safety_margin``."""
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now < expires_at - safety_margin

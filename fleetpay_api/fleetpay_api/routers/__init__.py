"""API router modules for the fleetpay service."""

from __future__ import annotations

from fleetpay_api.routers import gateway, health, logs, tenant_config, webhooks

__all__ = [
    "gateway",
    "health",
    "logs",
    "tenant_config",
    "webhooks",
]

"""Middleware components for the fleetpay API."""

from __future__ import annotations

from fleetpay_api.middleware.json_formatter import JSONFormatter
from fleetpay_api.middleware.logging import RequestLoggingMiddleware

__all__ = [
    "JSONFormatter",
    "RequestLoggingMiddleware",
]

"""fleetpay API: gateway integration, reconciliation and webhook service."""

__version__ = "0.1.0"

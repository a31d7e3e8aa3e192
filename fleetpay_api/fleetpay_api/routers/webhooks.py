"""Inbound gateway webhook endpoint.

Every delivery is logged before it is applied.  Structurally valid
deliveries are always answered 200, including unhandled event types and
charges without a local invoice, so the gateway does not redeliver them.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from fleetpay_core.errors import InvalidWebhookPayloadError

from fleetpay_api.dependencies import SessionDep, SettingsDep
from fleetpay_api.schemas import ErrorResponse
from fleetpay_api.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_SIGNATURE_HEADER = "x-webhook-signature"


def verify_signature(body: bytes, signature_header: str, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 of *body*.

    A ``sha256=`` prefix on the header value is accepted.
    """
    signature = signature_header.removeprefix("sha256=")
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump(),
    )


@router.post("/gateway")
async def gateway_webhook(request: Request, session: SessionDep, settings: SettingsDep) -> JSONResponse:
    """Receive one charge lifecycle event."""
    body = await request.body()

    secret = settings.webhook_secret.get_secret_value()
    if secret:
        signature = request.headers.get(_SIGNATURE_HEADER, "")
        if not signature or not verify_signature(body, signature, secret):
            logger.warning("Rejected webhook with missing or invalid signature")
            return _error(401, "invalid_signature", "Webhook signature verification failed")

    decoded = True
    try:
        payload = json.loads(body)
    except ValueError:
        decoded = False
        payload = body.decode("utf-8", errors="replace")

    processor = WebhookProcessor(session)
    try:
        outcome = await processor.process(payload)
    except InvalidWebhookPayloadError as exc:
        if not decoded:
            return _error(400, "invalid_json", "Webhook body is not valid JSON")
        return _error(400, "invalid_payload", str(exc))
    except Exception:
        return _error(500, "processing_error", "Webhook processing failed")

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "status": outcome.status.value,
            "log_id": outcome.log_id,
            "invoice_id": outcome.invoice_id,
            "detail": outcome.detail,
            "deliveries": outcome.deliveries,
        },
    )

"""Smartsheet webhook callback endpoint.

Learn: Smartsheet expects a fixed set of answers here:
- 200 {"smartsheetHookResponse": ...} for the enable handshake
- 200 {"status": "success"} once a batch has been processed
- 401 / 400 when the signature or body is wrong (Smartsheet may retry)

The route only maps outcomes to responses; the pipeline itself lives in
WebhookReceiver. Any unexpected error is logged and answered with a 500
so one bad callback can never take the process down.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from sheetlink.api.deps import get_services
from sheetlink.services.container import Services
from sheetlink.services.webhook_receiver import (
    SIGNATURE_HEADER,
    WebhookPayloadError,
    WebhookSignatureError,
)

logger = structlog.get_logger()
router = APIRouter()


@router.post("/smartsheet/webhook")
async def smartsheet_webhook(
    request: Request,
    services: Services = Depends(get_services),
):
    """Receive a signed Smartsheet callback (challenge or change events)."""
    # Raw body — the signature covers the exact bytes sent
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        return await services.receiver.receive(body, signature)
    except WebhookSignatureError as e:
        logger.warning("webhook.invalid_signature", reason=str(e))
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})
    except WebhookPayloadError as e:
        logger.warning("webhook.invalid_payload", errors=e.errors)
        return JSONResponse(status_code=400, content={"error": "Invalid event format"})
    except Exception:
        logger.exception("webhook.processing_error")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

"""Smartsheet webhook receiver — verify, parse, invalidate, broadcast.

Learn: Every callback goes through the same pipeline:

  received → signature verified → challenge | event batch → processed

1. Verify the HMAC-SHA256 signature over the *raw* body (base64, sent in
   the Smartsheet-Hmac-SHA256 header). Fails closed: no secret, no header
   or a mismatch all reject before anything is parsed.
2. A challenge body is answered by echoing the token — that's the
   handshake Smartsheet does when a webhook is enabled.
3. An event batch invalidates the sheet's cache entry and broadcasts one
   sheet_update per change. Invalidation always happens before the
   broadcast, so a client that refetches on the message never gets the
   stale snapshot back.

Nothing is invalidated or broadcast until the whole body has validated.
"""

import base64
import hashlib
import hmac
from typing import Any

import structlog
from pydantic import ValidationError

from sheetlink.events.types import SHEET_UPDATE
from sheetlink.realtime.broadcaster import Broadcaster
from sheetlink.schemas.webhook import (
    Change,
    WebhookBody,
    WebhookChallenge,
    WebhookEventBatch,
)
from sheetlink.services.sheet_cache import SheetCache

logger = structlog.get_logger()

SIGNATURE_HEADER = "Smartsheet-Hmac-SHA256"


class WebhookSignatureError(Exception):
    """Missing or wrong signature, or no secret configured."""
    pass


class WebhookPayloadError(Exception):
    """Body is neither a challenge nor a valid event batch."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


# ─── Signature ───────────────────────────────────────────


def compute_signature(secret: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of the raw body, as Smartsheet sends it."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a webhook signature. Fails closed."""
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode(), signature.encode())


# ─── Parsing ─────────────────────────────────────────────


def parse_webhook_body(body: bytes) -> WebhookBody:
    """Parse a verified body into a WebhookChallenge or WebhookEventBatch.

    The challenge schema is tried first; anything that is not a challenge
    must be a complete event batch.
    """
    try:
        return WebhookChallenge.model_validate_json(body)
    except ValidationError:
        pass

    try:
        return WebhookEventBatch.model_validate_json(body)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_input=False)
        raise WebhookPayloadError("Invalid event format", errors) from e


def sheet_update_message(sheet_id: str, change: Change) -> dict[str, Any]:
    return {
        "type": SHEET_UPDATE,
        "sheetId": sheet_id,
        "change": {
            "type": change.object_type,
            "action": change.action,
            "id": change.id,
            "timestamp": change.timestamp,
        },
    }


# ─── Receiver ────────────────────────────────────────────


class WebhookReceiver:
    def __init__(self, secret: str, cache: SheetCache, broadcaster: Broadcaster):
        self.secret = secret
        self.cache = cache
        self.broadcaster = broadcaster

    async def receive(self, body: bytes, signature: str | None) -> dict[str, Any]:
        """Run one callback through the pipeline and return the response body.

        Raises WebhookSignatureError or WebhookPayloadError; the route maps
        them to 401 / 400.
        """
        if not self.secret:
            logger.error("webhook.secret_not_configured")
            raise WebhookSignatureError("Webhook secret not configured")
        if not verify_signature(self.secret, body, signature):
            raise WebhookSignatureError("Invalid signature")

        parsed = parse_webhook_body(body)

        if isinstance(parsed, WebhookChallenge):
            logger.info("webhook.challenge", webhook_id=parsed.webhook_id)
            return {"smartsheetHookResponse": parsed.challenge}

        await self.process_batch(parsed)
        return {"status": "success"}

    async def process_batch(self, batch: WebhookEventBatch) -> int:
        """Invalidate + broadcast once per change. Returns messages queued to subscribers."""
        sheet_id = batch.scope_object_id
        log = logger.bind(webhook_id=batch.webhook_id, sheet_id=sheet_id)
        delivered = 0

        for change in batch.events:
            log.info(
                "webhook.change",
                object_type=change.object_type,
                action=change.action,
                object_id=change.id,
            )
            self.cache.invalidate(sheet_id)
            delivered += await self.broadcaster.publish(
                sheet_id, sheet_update_message(sheet_id, change)
            )

        log.info("webhook.processed", changes=len(batch.events), deliveries=delivered)
        return delivered

"""
Webhook Routes
Receives Nylas change notifications and queues them for the worker

Nylas verifies the endpoint with GET ?challenge=... and expects the value
echoed as plain text. Notifications are POSTed with X-Nylas-Signature, the
hex HMAC-SHA256 of the raw body keyed with the webhook secret.
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from app.core.config import Settings, get_settings
from app.core.errors import AuthenticationError, BadRequestError
from app.models.schemas import NylasDelta, NylasWebhook
from app.services.jobs.tasks import process_nylas_deltas_task

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


def verify_signature(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def extract_deltas(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Normalize both notification formats into delta dicts.

    - {"deltas": [{"type", "object", "object_data"}]}
    - {"type": "message.created", "data": {"object": {...}}}

    Raises:
        BadRequestError: notification does not match either format
    """
    try:
        if "deltas" in payload:
            webhook = NylasWebhook(**payload)
            return [delta.model_dump() for delta in webhook.deltas]

        notification_type = payload.get("type")
        if notification_type:
            if not isinstance(notification_type, str):
                raise BadRequestError("Webhook notification type must be a string")
            data = payload.get("data") or {}
            object_data = (data.get("object") if isinstance(data, dict) else None) or {}
            delta = NylasDelta(
                type=notification_type,
                object=notification_type.split(".", 1)[0],
                object_data=object_data,
            )
            return [delta.model_dump()]
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise BadRequestError(f"Invalid webhook notification: {location} {first['msg']}")

    return []


@router.get("/nylas-webhook")
async def nylas_webhook_challenge(challenge: str = Query(...)):
    """Endpoint verification: echo the challenge."""
    logger.info("Nylas webhook challenge received")
    return PlainTextResponse(challenge)


@router.post("/nylas-webhook")
async def nylas_webhook(
    request: Request,
    x_nylas_signature: Optional[str] = Header(default=None, alias="X-Nylas-Signature"),
    settings: Settings = Depends(get_settings)
):
    """Verify, normalize and enqueue Nylas deltas."""
    raw_body = await request.body()

    if settings.nylas_webhook_secret:
        if not verify_signature(settings.nylas_webhook_secret, raw_body, x_nylas_signature):
            logger.warning("⚠️  Rejected Nylas webhook with invalid signature")
            raise AuthenticationError("Invalid webhook signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise BadRequestError("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise BadRequestError("Webhook body must be a JSON object")

    deltas = extract_deltas(payload)
    logger.info(f"📨 Nylas webhook: {len(deltas)} deltas")

    if deltas:
        process_nylas_deltas_task.send(deltas)

    return {"success": True, "queued": len(deltas)}

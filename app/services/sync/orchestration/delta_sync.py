"""
Nylas webhook delta processing
Applies message/event change notifications to the emails and appointments tables

Runs inside the Dramatiq worker (see app.services.jobs.tasks).
"""
import logging
from typing import Any, Dict

import httpx
from supabase import Client

from app.core.config import Settings
from app.services.sync.database import find_account_by_grant
from app.services.sync.persistence import (
    delete_appointment,
    delete_message,
    upsert_appointments,
    upsert_messages,
)
from app.services.sync.providers import nylas

logger = logging.getLogger(__name__)

UPSERT_TYPES = ("created", "updated")


async def apply_nylas_delta(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    delta: Dict[str, Any]
) -> str:
    """
    Apply a single delta.

    Args:
        delta: {"type": "message.created", "object": "message", "object_data": {"id", "grant_id", ...}}

    Returns:
        Outcome label: "upserted", "deleted" or "skipped"
    """
    delta_type = delta.get("type") or ""
    object_data = delta.get("object_data") or {}
    object_kind = delta.get("object") or delta_type.split(".", 1)[0]
    action = delta_type.split(".", 1)[1] if "." in delta_type else ""

    account = await find_account_by_grant(supabase, object_data.get("grant_id"))
    if account is None:
        logger.info(f"No account for grant {object_data.get('grant_id')}, skipping {delta_type}")
        return "skipped"

    object_id = object_data.get("id")
    if not object_id:
        logger.warning(f"Delta {delta_type} without object id, skipping")
        return "skipped"

    if object_kind == "message":
        if action in UPSERT_TYPES:
            message = await nylas.get_message(http_client, settings, account.nylas_grant_id, object_id)
            row = nylas.normalize_message(message, account, account.organization_id)
            await upsert_messages(supabase, [row])
            return "upserted"
        if action == "deleted":
            await delete_message(supabase, account.id, object_id)
            return "deleted"

    elif object_kind == "event":
        if action in UPSERT_TYPES:
            event = await nylas.get_event(
                http_client, settings, account.nylas_grant_id, object_id, object_data.get("calendar_id")
            )
            row = nylas.normalize_event(event, account, account.organization_id)
            await upsert_appointments(supabase, [row])
            return "upserted"
        if action == "deleted":
            await delete_appointment(supabase, account.id, object_id)
            return "deleted"

    logger.info(f"Ignoring unsupported delta {delta_type}")
    return "skipped"

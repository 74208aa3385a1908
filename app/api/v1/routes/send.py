"""
Send Routes
Outgoing mail (Outlook via Graph, any Nylas account) and calendar event creation
"""
import logging
import uuid

import httpx
from fastapi import APIRouter, Depends
from supabase import Client

from app.core.config import Settings, get_settings
from app.core.dependencies import get_http_client, get_supabase
from app.core.errors import BadRequestError
from app.core.security import get_current_user_context
from app.models.schemas import (
    AppointmentStatus,
    CreateEventRequest,
    EmailProvider,
    SendEmailRequest,
    as_address_list,
)
from app.services.sync.canonical import parse_timestamp, to_iso
from app.services.sync.database import get_account, resolve_organization_id
from app.services.sync.oauth import ensure_fresh_access_token
from app.services.sync.persistence import record_sent_message, store_appointment
from app.services.sync.providers import microsoft_graph, nylas

logger = logging.getLogger(__name__)

router = APIRouter(tags=["send"])


def _recipients(body: SendEmailRequest):
    to = as_address_list(body.to)
    if not to:
        raise BadRequestError("At least one recipient is required")
    return to, as_address_list(body.cc), as_address_list(body.bcc)


@router.post("/azure-send-email")
async def azure_send_email(
    body: SendEmailRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Send mail from an Outlook account.

    Accepts the caller's JWT in X-User-Token or Authorization.
    """
    to, cc, bcc = _recipients(body)
    account = await get_account(supabase, user_context["user_id"], body.accountId, EmailProvider.OUTLOOK)

    access_token = await ensure_fresh_access_token(http_client, supabase, settings, account)
    await microsoft_graph.send_mail(http_client, access_token, to, body.subject, body.body, cc, bcc)

    # Graph returns 202 with no message id for sendMail
    await record_sent_message(
        supabase, account, account.organization_id, f"sent-{uuid.uuid4()}",
        to, body.subject, body.body, cc, bcc
    )

    return {"success": True, "message": "Email sent successfully"}


@router.post("/nylas-send-email")
async def nylas_send_email(
    body: SendEmailRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Send mail through a Nylas grant."""
    to, cc, bcc = _recipients(body)
    account = await get_account(supabase, user_context["user_id"], body.accountId)
    if not account.is_nylas:
        raise BadRequestError("Account not connected via Nylas")

    sent = await nylas.send_message(http_client, settings, account.nylas_grant_id, to, body.subject, body.body, cc, bcc)
    message_id = sent.get("id") or f"sent-{uuid.uuid4()}"

    await record_sent_message(supabase, account, account.organization_id, message_id, to, body.subject, body.body, cc, bcc)

    return {"success": True, "messageId": message_id}


@router.post("/nylas-create-event")
async def nylas_create_event(
    body: CreateEventRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Create an event on the account's calendar and mirror it into appointments."""
    try:
        start = parse_timestamp(body.startTime)
        end = parse_timestamp(body.endTime)
    except ValueError:
        raise BadRequestError("startTime and endTime must be ISO-8601 timestamps")
    if start is None or end is None or end < start:
        raise BadRequestError("endTime must not be before startTime")

    account = await get_account(supabase, user_context["user_id"], body.accountId)
    if not account.is_nylas:
        raise BadRequestError("Account not connected via Nylas")

    calendar_id = body.calendarId
    if not calendar_id:
        calendars = await nylas.list_calendars(http_client, settings, account.nylas_grant_id)
        primary = next((c for c in calendars if c.get("is_primary")), None)
        if not primary:
            raise BadRequestError("No primary calendar found")
        calendar_id = primary["id"]

    event = await nylas.create_event(
        http_client, settings, account.nylas_grant_id, calendar_id,
        body.title, start, end, body.description, body.location, body.attendees
    )
    event_id = event.get("id")
    if not event_id:
        raise BadRequestError("Nylas did not return an event id")

    organization_id = account.organization_id or await resolve_organization_id(supabase, user_context)
    appointment = await store_appointment(supabase, {
        "organization_id": organization_id,
        "owner_id": user_context["user_id"],
        "account_id": account.id,
        "calendar_event_id": event_id,
        "calendar_provider": account.provider.value,
        "title": body.title,
        "description": body.description,
        "location": body.location,
        "start_time": to_iso(start),
        "end_time": to_iso(end),
        "status": AppointmentStatus.SCHEDULED.value,
        "attendees": [a.strip() for a in body.attendees or [] if a.strip()],
    })

    logger.info(f"📅 Created event {event_id} on calendar {calendar_id} for account {account.id}")
    return {"success": True, "appointment": appointment, "eventId": event_id}

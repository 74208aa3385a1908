"""
Microsoft Graph API helpers
Handles mailbox paging, profile lookup, sending, calendar reads and normalization
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.core.errors import BadRequestError, raise_for_upstream
from app.models.schemas import Account, AppointmentStatus, MessageFolder
from app.services.sync.canonical import parse_timestamp, to_iso

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }


# ============================================================================
# MICROSOFT GRAPH API
# ============================================================================

async def list_messages(
    http_client: httpx.AsyncClient,
    access_token: str,
    limit: int,
    cursor: Optional[str] = None
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Fetch one page of the signed-in user's messages, newest first.

    Args:
        http_client: Async HTTP client instance
        access_token: Microsoft Graph access token
        limit: Page size ($top)
        cursor: @odata.nextLink from a previous page

    Returns:
        (raw messages, next cursor or None)
    """
    if cursor:
        # nextLink carries its own $top/$skip; only follow links back to Graph
        if not cursor.startswith(GRAPH_BASE_URL):
            raise BadRequestError("Invalid cursor")
        url = cursor
        params = None
    else:
        url = f"{GRAPH_BASE_URL}/me/messages"
        params = {"$top": limit, "$orderby": "receivedDateTime desc"}

    response = await http_client.get(url, headers=_auth_headers(access_token), params=params)
    if not response.is_success:
        logger.error(f"❌ Microsoft Graph error: {response.status_code}")
        logger.error(f"   Response: {response.text[:500]}")
    raise_for_upstream(response, "Failed to fetch emails from Microsoft Graph")

    data = response.json()
    messages = data.get("value", [])
    logger.info(f"Fetched {len(messages)} emails from Microsoft Graph")
    return messages, data.get("@odata.nextLink")


async def get_profile_email(http_client: httpx.AsyncClient, access_token: str) -> str:
    """Mailbox address for the signed-in user (mail, else userPrincipalName)."""
    response = await http_client.get(f"{GRAPH_BASE_URL}/me", headers=_auth_headers(access_token))
    raise_for_upstream(response, "Failed to get user info")

    profile = response.json()
    email = profile.get("mail") or profile.get("userPrincipalName")
    if not email:
        raise BadRequestError("Microsoft account has no email address")
    return email


def _recipients(addresses: List[str]) -> List[Dict[str, Any]]:
    return [{"emailAddress": {"address": address}} for address in addresses]


async def send_mail(
    http_client: httpx.AsyncClient,
    access_token: str,
    to: List[str],
    subject: str,
    body_html: str,
    cc: Optional[List[str]] = None,
    bcc: Optional[List[str]] = None
):
    """Send an HTML message and save it to Sent Items."""
    message: Dict[str, Any] = {
        "subject": subject,
        "body": {"contentType": "HTML", "content": body_html},
        "toRecipients": _recipients(to),
    }
    if cc:
        message["ccRecipients"] = _recipients(cc)
    if bcc:
        message["bccRecipients"] = _recipients(bcc)

    response = await http_client.post(
        f"{GRAPH_BASE_URL}/me/sendMail",
        headers=_auth_headers(access_token),
        json={"message": message, "saveToSentItems": True},
    )
    raise_for_upstream(response, "Failed to send email via Microsoft Graph")
    logger.info(f"📤 Sent email via Microsoft Graph to {len(to)} recipient(s)")


# ============================================================================
# CALENDAR
# ============================================================================

async def list_calendar_view(
    http_client: httpx.AsyncClient,
    access_token: str,
    start: datetime,
    end: datetime,
    limit: int
) -> List[Dict[str, Any]]:
    """
    Events of the default calendar overlapping [start, end].

    calendarView expands recurring series into occurrences. Prefer asks
    Graph to report start/end in UTC.
    """
    headers = _auth_headers(access_token)
    headers["Prefer"] = 'outlook.timezone="UTC"'

    response = await http_client.get(
        f"{GRAPH_BASE_URL}/me/calendar/calendarView",
        headers=headers,
        params={
            "startDateTime": to_iso(start),
            "endDateTime": to_iso(end),
            "$top": limit,
            "$orderby": "start/dateTime",
        },
    )
    if not response.is_success:
        logger.error(f"❌ Microsoft Graph calendar error: {response.status_code}")
    raise_for_upstream(response, "Failed to fetch Outlook calendar events")

    events = response.json().get("value", [])
    logger.info(f"📅 Fetched {len(events)} events from Outlook calendar")
    return events


# ============================================================================
# NORMALIZATION
# ============================================================================

def _addresses(recipients: Optional[List[Dict[str, Any]]]) -> List[str]:
    if not recipients:
        return []
    return [
        r["emailAddress"]["address"]
        for r in recipients
        if r.get("emailAddress") and r["emailAddress"].get("address")
    ]


def normalize_message(
    raw_message: Dict[str, Any],
    account: Account,
    organization_id: str
) -> Dict[str, Any]:
    """
    Normalize a raw Microsoft Graph message into an emails row.

    Args:
        raw_message: Raw message dictionary from Graph API
        account: Account the message belongs to
        organization_id: Caller's organization

    Returns:
        Row for the emails table

    Raises:
        ValueError: message has no id or an unparseable receivedDateTime
    """
    message_id = raw_message.get("id")
    if not message_id:
        raise ValueError("Graph message without id")

    sender = (raw_message.get("from") or {}).get("emailAddress") or {}
    from_email = sender.get("address", "")

    body = raw_message.get("body") or {}
    content = body.get("content", "") if isinstance(body, dict) else ""
    is_html = isinstance(body, dict) and (body.get("contentType") or "").lower() == "html"

    parent_folder = raw_message.get("parentFolderId") or ""
    if (from_email and from_email.lower() == account.email.lower()) or "SentItems" in parent_folder:
        folder = MessageFolder.SENT
    else:
        folder = MessageFolder.INBOX

    received_at = parse_timestamp(raw_message.get("receivedDateTime"))

    return {
        "account_id": account.id,
        "organization_id": organization_id,
        "user_id": account.user_id,
        "message_id": message_id,
        "thread_id": raw_message.get("conversationId"),
        "subject": raw_message.get("subject") or "(No Subject)",
        "from_email": from_email,
        "to_emails": _addresses(raw_message.get("toRecipients")),
        "cc_emails": _addresses(raw_message.get("ccRecipients")),
        "bcc_emails": _addresses(raw_message.get("bccRecipients")),
        "body_text": raw_message.get("bodyPreview", "") if is_html else content,
        "body_html": content if is_html else None,
        "folder": folder.value,
        "is_read": bool(raw_message.get("isRead", False)),
        "is_starred": (raw_message.get("flag") or {}).get("flagStatus") == "flagged",
        "has_attachments": bool(raw_message.get("hasAttachments", False)),
        "received_at": to_iso(received_at),
    }


def _graph_datetime(value: Dict[str, Any]) -> datetime:
    # Graph sends 7 fractional digits and the zone separately
    raw = value["dateTime"]
    if "." in raw:
        whole, fraction = raw.split(".", 1)
        raw = f"{whole}.{fraction[:6]}"
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise ValueError("Graph event without dateTime")
    return parsed


def normalize_event(
    raw_event: Dict[str, Any],
    account: Account,
    organization_id: str
) -> Dict[str, Any]:
    """
    Normalize a Graph calendarView event into an appointments row.

    Raises:
        ValueError/KeyError: event has no id or no start/end dateTime
    """
    event_id = raw_event.get("id")
    if not event_id:
        raise ValueError("Graph event without id")

    status = AppointmentStatus.CANCELLED if raw_event.get("isCancelled") else AppointmentStatus.SCHEDULED

    return {
        "organization_id": organization_id,
        "owner_id": account.user_id,
        "account_id": account.id,
        "calendar_event_id": event_id,
        "calendar_provider": account.provider.value,
        "title": raw_event.get("subject") or "(No Title)",
        "description": raw_event.get("bodyPreview") or None,
        "location": (raw_event.get("location") or {}).get("displayName") or None,
        "start_time": to_iso(_graph_datetime(raw_event["start"])),
        "end_time": to_iso(_graph_datetime(raw_event["end"])),
        "status": status.value,
        "attendees": _addresses(raw_event.get("attendees")),
    }

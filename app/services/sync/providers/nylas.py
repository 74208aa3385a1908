"""
Nylas v3 API client
Hosted auth, grant-scoped messages/calendars/events, sending and normalization

Every call authenticates with the application API key; the grant id in the
path selects the mailbox.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.core.config import Settings
from app.core.errors import BadRequestError, ConfigurationError, raise_for_upstream
from app.models.schemas import Account, AppointmentStatus, MessageFolder
from app.services.sync.canonical import addresses_from, date_to_utc, parse_timestamp, to_iso

logger = logging.getLogger(__name__)

# App-facing provider name -> Nylas provider
PROVIDER_MAP = {
    "gmail": "google",
    "outlook": "microsoft",
    "icloud": "icloud",
    "apple": "icloud",
}

# Nylas provider -> email_accounts.provider
ACCOUNT_PROVIDER_MAP = {
    "google": "gmail",
    "microsoft": "outlook",
    "icloud": "icloud",
}

PROVIDER_SCOPES = {
    "google": [
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/gmail.modify",
        "https://www.googleapis.com/auth/calendar",
    ],
    "microsoft": ["email"],
    "icloud": ["email"],
}


def account_provider_for(nylas_provider: Optional[str]) -> str:
    """email_accounts.provider for a Nylas provider name; unknown values map to gmail."""
    if nylas_provider in ACCOUNT_PROVIDER_MAP:
        return ACCOUNT_PROVIDER_MAP[nylas_provider]
    if nylas_provider in ACCOUNT_PROVIDER_MAP.values():
        return nylas_provider
    return "gmail"


def _require_api_key(settings: Settings) -> str:
    if not settings.nylas_api_key:
        raise ConfigurationError("NYLAS_API_KEY not configured")
    return settings.nylas_api_key


def _headers(settings: Settings) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {_require_api_key(settings)}",
        "Content-Type": "application/json",
    }


def _grant_url(settings: Settings, grant_id: str, path: str) -> str:
    return f"{settings.nylas_api_uri}/v3/grants/{grant_id}/{path}"


def _error_text(response: httpx.Response) -> str:
    """Pull the most readable message out of a Nylas error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if not isinstance(body, dict):
        return response.text

    error = body.get("error")
    if body.get("error_description"):
        return body["error_description"]
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    if body.get("message"):
        return body["message"]
    return response.text


# ============================================================================
# HOSTED AUTH
# ============================================================================

async def create_hosted_auth_url(
    http_client: httpx.AsyncClient,
    settings: Settings,
    provider: str,
    state: str,
    login_hint: Optional[str] = None
) -> str:
    """
    Ask Nylas for a hosted-auth URL for the given app-facing provider.

    Raises:
        BadRequestError: provider not supported by hosted auth
        UpstreamError: Nylas rejected the request
    """
    nylas_provider = PROVIDER_MAP.get(provider)
    if not nylas_provider:
        raise BadRequestError("Invalid provider specified")
    if not settings.nylas_callback_uri:
        raise ConfigurationError("NYLAS_CALLBACK_URI not configured")

    body: Dict[str, Any] = {
        "client_id": settings.nylas_client_id or _require_api_key(settings),
        "provider": nylas_provider,
        "redirect_uri": settings.nylas_callback_uri,
        "state": state,
        "scope": PROVIDER_SCOPES[nylas_provider],
    }
    if login_hint:
        body["login_hint"] = login_hint

    response = await http_client.post(
        f"{settings.nylas_api_uri}/v3/connect/auth",
        headers=_headers(settings),
        json=body,
    )
    if not response.is_success:
        logger.error(f"❌ Nylas connect error {response.status_code}: {response.text[:500]}")
        raise_for_upstream(response, f"Nylas API error ({response.status_code})")

    data = response.json()
    auth_url = (data.get("data") or {}).get("url") or data.get("auth_url")
    if not auth_url:
        raise BadRequestError(
            f"Nylas didn't return an auth URL. Check that {nylas_provider} is configured in the Nylas dashboard."
        )
    return auth_url


async def exchange_code_for_grant(
    http_client: httpx.AsyncClient,
    settings: Settings,
    code: str
) -> Dict[str, Any]:
    """
    Exchange a hosted-auth code for a grant.

    Returns:
        Token response including grant_id, email and provider
    """
    response = await http_client.post(
        f"{settings.nylas_api_uri}/v3/connect/token",
        headers=_headers(settings),
        json={
            "client_id": settings.nylas_client_id or _require_api_key(settings),
            "client_secret": _require_api_key(settings),
            "code": code,
            "redirect_uri": settings.nylas_callback_uri,
            "grant_type": "authorization_code",
        },
    )
    raise_for_upstream(response, "Failed to exchange Nylas code for grant")

    data = response.json()
    if not data.get("grant_id"):
        raise BadRequestError("Nylas token response did not include a grant_id")
    return data


# ============================================================================
# MESSAGES
# ============================================================================

async def list_messages(
    http_client: httpx.AsyncClient,
    settings: Settings,
    grant_id: str,
    limit: int,
    cursor: Optional[str] = None
) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Fetch one page of messages for a grant.

    Returns:
        (raw messages, next_cursor or None)
    """
    params: Dict[str, Any] = {"limit": limit}
    if cursor:
        params["page_token"] = cursor

    response = await http_client.get(_grant_url(settings, grant_id, "messages"), headers=_headers(settings), params=params)
    if not response.is_success:
        logger.error(f"❌ Nylas messages error {response.status_code}: {_error_text(response)[:500]}")
    raise_for_upstream(response, "Failed to sync emails")

    data = response.json()
    messages = data.get("data", [])
    logger.info(f"📬 Fetched {len(messages)} messages from Nylas for grant {grant_id}")
    return messages, data.get("next_cursor")


async def get_message(http_client: httpx.AsyncClient, settings: Settings, grant_id: str, message_id: str) -> Dict[str, Any]:
    response = await http_client.get(_grant_url(settings, grant_id, f"messages/{message_id}"), headers=_headers(settings))
    raise_for_upstream(response, f"Failed to fetch Nylas message {message_id}")
    return response.json().get("data", {})


async def send_message(
    http_client: httpx.AsyncClient,
    settings: Settings,
    grant_id: str,
    to: List[str],
    subject: str,
    body_html: str,
    cc: Optional[List[str]] = None,
    bcc: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Send a message through the grant's mailbox.

    Returns:
        The sent message as returned by Nylas (includes id)
    """
    payload: Dict[str, Any] = {
        "to": [{"email": address} for address in to],
        "subject": subject,
        "body": body_html,
    }
    if cc:
        payload["cc"] = [{"email": address} for address in cc]
    if bcc:
        payload["bcc"] = [{"email": address} for address in bcc]

    response = await http_client.post(
        _grant_url(settings, grant_id, "messages/send"),
        headers=_headers(settings),
        json=payload,
    )
    raise_for_upstream(response, "Failed to send email")

    sent = response.json().get("data", {})
    logger.info(f"📤 Sent email via Nylas (message {sent.get('id')})")
    return sent


# ============================================================================
# CALENDARS & EVENTS
# ============================================================================

async def list_calendars(http_client: httpx.AsyncClient, settings: Settings, grant_id: str) -> List[Dict[str, Any]]:
    response = await http_client.get(_grant_url(settings, grant_id, "calendars"), headers=_headers(settings))
    raise_for_upstream(response, "Failed to fetch calendars")
    return response.json().get("data", [])


async def list_events(
    http_client: httpx.AsyncClient,
    settings: Settings,
    grant_id: str,
    calendar_id: str,
    start: datetime,
    end: datetime,
    limit: int
) -> List[Dict[str, Any]]:
    """Events of one calendar overlapping [start, end] (epoch seconds on the wire)."""
    response = await http_client.get(
        _grant_url(settings, grant_id, "events"),
        headers=_headers(settings),
        params={
            "calendar_id": calendar_id,
            "start": int(start.timestamp()),
            "end": int(end.timestamp()),
            "limit": limit,
        },
    )
    raise_for_upstream(response, f"Failed to fetch events for calendar {calendar_id}")
    return response.json().get("data", [])


async def get_event(
    http_client: httpx.AsyncClient,
    settings: Settings,
    grant_id: str,
    event_id: str,
    calendar_id: Optional[str] = None
) -> Dict[str, Any]:
    params = {"calendar_id": calendar_id} if calendar_id else None
    response = await http_client.get(
        _grant_url(settings, grant_id, f"events/{event_id}"),
        headers=_headers(settings),
        params=params,
    )
    raise_for_upstream(response, f"Failed to fetch Nylas event {event_id}")
    return response.json().get("data", {})


async def create_event(
    http_client: httpx.AsyncClient,
    settings: Settings,
    grant_id: str,
    calendar_id: str,
    title: str,
    start: datetime,
    end: datetime,
    description: Optional[str] = None,
    location: Optional[str] = None,
    attendees: Optional[List[str]] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "title": title,
        "when": {"start_time": int(start.timestamp()), "end_time": int(end.timestamp())},
    }
    if description:
        payload["description"] = description
    if location:
        payload["location"] = location
    if attendees:
        payload["participants"] = [{"email": a.strip()} for a in attendees if a.strip()]

    response = await http_client.post(
        _grant_url(settings, grant_id, "events"),
        headers=_headers(settings),
        params={"calendar_id": calendar_id},
        json=payload,
    )
    raise_for_upstream(response, "Failed to create event")
    return response.json().get("data", {})


# ============================================================================
# NORMALIZATION
# ============================================================================

def normalize_message(raw_message: Dict[str, Any], account: Account, organization_id: str) -> Dict[str, Any]:
    """
    Normalize a Nylas message into an emails row.

    Raises:
        ValueError: message has no id or an unparseable date
    """
    message_id = raw_message.get("id")
    if not message_id:
        raise ValueError("Nylas message without id")

    folders = [str(f).upper() for f in raw_message.get("folders") or []]
    if "SENT" in folders:
        folder = MessageFolder.SENT
    elif "TRASH" in folders:
        folder = MessageFolder.TRASH
    elif "SPAM" in folders:
        folder = MessageFolder.SPAM
    else:
        folder = MessageFolder.INBOX

    from_addresses = addresses_from(raw_message.get("from"))
    to_addresses = addresses_from(raw_message.get("to")) or [account.email]

    return {
        "account_id": account.id,
        "organization_id": organization_id,
        "user_id": account.user_id,
        "message_id": message_id,
        "thread_id": raw_message.get("thread_id"),
        "subject": raw_message.get("subject") or "(No Subject)",
        "from_email": from_addresses[0] if from_addresses else "",
        "to_emails": to_addresses,
        "cc_emails": addresses_from(raw_message.get("cc")),
        "bcc_emails": addresses_from(raw_message.get("bcc")),
        "body_text": raw_message.get("snippet", ""),
        "body_html": raw_message.get("body"),
        "folder": folder.value,
        "is_read": raw_message.get("unread") is False,
        "is_starred": bool(raw_message.get("starred", False)),
        "has_attachments": bool(raw_message.get("attachments")),
        "received_at": to_iso(parse_timestamp(raw_message.get("date"))),
    }


def event_times(when: Dict[str, Any]) -> Tuple[datetime, datetime]:
    """
    Start/end for the three Nylas "when" shapes.

    - timespan: start_time/end_time epoch seconds
    - date: single all-day date
    - datespan: start_date/end_date all-day range

    Raises:
        ValueError: unknown or incomplete "when"
    """
    kind = when.get("object")

    if kind == "date" or (kind is None and "date" in when):
        day = date_to_utc(when["date"])
        return day, day

    if kind == "datespan" or (kind is None and "start_date" in when):
        return date_to_utc(when["start_date"]), date_to_utc(when["end_date"])

    if "start_time" in when:
        return parse_timestamp(when["start_time"]), parse_timestamp(when["end_time"])

    raise ValueError(f"Unsupported event time: {kind}")


def normalize_event(
    raw_event: Dict[str, Any],
    account: Account,
    organization_id: str
) -> Dict[str, Any]:
    """
    Normalize a Nylas event into an appointments row.

    Raises:
        ValueError/KeyError: event has no id or unusable times
    """
    event_id = raw_event.get("id")
    if not event_id:
        raise ValueError("Nylas event without id")

    start, end = event_times(raw_event.get("when") or {})
    status = AppointmentStatus.CANCELLED if raw_event.get("status") == "cancelled" else AppointmentStatus.SCHEDULED

    return {
        "organization_id": organization_id,
        "owner_id": account.user_id,
        "account_id": account.id,
        "calendar_event_id": event_id,
        "calendar_provider": account.provider.value,
        "title": raw_event.get("title") or "(No Title)",
        "description": raw_event.get("description") or None,
        "location": raw_event.get("location") or None,
        "start_time": to_iso(start),
        "end_time": to_iso(end),
        "status": status.value,
        "attendees": addresses_from(raw_event.get("participants")),
    }

"""
Google Calendar API helpers
Handles calendar listing, windowed event reads and event normalization
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple
from urllib.parse import quote

import httpx

from app.core.errors import raise_for_upstream
from app.models.schemas import Account, AppointmentStatus
from app.services.sync.canonical import date_to_utc, parse_timestamp, to_iso

logger = logging.getLogger(__name__)

CALENDAR_API_URL = "https://www.googleapis.com/calendar/v3"


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


# ============================================================================
# GOOGLE CALENDAR API
# ============================================================================

async def list_calendars(http_client: httpx.AsyncClient, access_token: str) -> List[Dict[str, Any]]:
    response = await http_client.get(
        f"{CALENDAR_API_URL}/users/me/calendarList",
        headers=_auth_headers(access_token),
    )
    raise_for_upstream(response, "Failed to fetch Google calendar list")
    return response.json().get("items", [])


def primary_calendars(calendars: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Calendars flagged primary; the first calendar when none is flagged."""
    primary = [c for c in calendars if c.get("primary")]
    if primary:
        return primary
    return calendars[:1]


async def list_events(
    http_client: httpx.AsyncClient,
    access_token: str,
    calendar_id: str,
    start: datetime,
    end: datetime,
    limit: int
) -> List[Dict[str, Any]]:
    """
    Events of one calendar overlapping [start, end].

    singleEvents expands recurring series so every occurrence gets its own id.
    """
    response = await http_client.get(
        f"{CALENDAR_API_URL}/calendars/{quote(calendar_id, safe='')}/events",
        headers=_auth_headers(access_token),
        params={
            "timeMin": to_iso(start),
            "timeMax": to_iso(end),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": limit,
        },
    )
    raise_for_upstream(response, f"Failed to fetch Google calendar events for {calendar_id}")

    events = response.json().get("items", [])
    logger.info(f"📅 Fetched {len(events)} events from Google calendar {calendar_id}")
    return events


# ============================================================================
# NORMALIZATION
# ============================================================================

def event_time(value: Dict[str, Any]) -> datetime:
    """
    Start or end of a Google event.

    Timed events carry dateTime (RFC 3339 with offset); all-day events carry
    a bare date.
    """
    if value.get("dateTime"):
        return parse_timestamp(value["dateTime"])
    if value.get("date"):
        return date_to_utc(value["date"])
    raise ValueError("Google event time has neither dateTime nor date")


def normalize_event(
    raw_event: Dict[str, Any],
    account: Account,
    organization_id: str
) -> Dict[str, Any]:
    """
    Normalize a Google Calendar event into an appointments row.

    Raises:
        ValueError: event has no id or unusable start/end
    """
    event_id = raw_event.get("id")
    if not event_id:
        raise ValueError("Google event without id")

    start, end = _event_span(raw_event)
    status = AppointmentStatus.CANCELLED if raw_event.get("status") == "cancelled" else AppointmentStatus.SCHEDULED

    return {
        "organization_id": organization_id,
        "owner_id": account.user_id,
        "account_id": account.id,
        "calendar_event_id": event_id,
        "calendar_provider": account.provider.value,
        "title": raw_event.get("summary") or "(No Title)",
        "description": raw_event.get("description") or None,
        "location": raw_event.get("location") or None,
        "start_time": to_iso(start),
        "end_time": to_iso(end),
        "status": status.value,
        "attendees": [a["email"] for a in raw_event.get("attendees") or [] if a.get("email")],
    }


def _event_span(raw_event: Dict[str, Any]) -> Tuple[datetime, datetime]:
    return event_time(raw_event.get("start") or {}), event_time(raw_event.get("end") or {})

"""
Calendar sync orchestration
Pulls events in the configured window into appointments

- Nylas-wrapped accounts: primary calendar(s) of the grant
- Outlook (direct OAuth): default calendar via Graph calendarView
- Gmail (direct OAuth): primary calendar(s) via the Google Calendar API
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from supabase import Client

from app.core.config import Settings
from app.core.errors import BadRequestError, IntegrationError
from app.models.schemas import Account, EmailProvider
from app.services.sync.canonical import utc_now
from app.services.sync.database import mark_synced
from app.services.sync.oauth import ensure_fresh_access_token
from app.services.sync.orchestration.email_sync import Normalizer, normalize_batch
from app.services.sync.persistence import UpsertResult, upsert_appointments
from app.services.sync.providers import google_calendar, microsoft_graph, nylas

logger = logging.getLogger(__name__)

EventFetcher = Callable[[Dict[str, Any]], Awaitable[List[Dict[str, Any]]]]


def _sync_window(settings: Settings, now: datetime) -> Tuple[datetime, datetime]:
    return (
        now - timedelta(days=settings.calendar_lookback_days),
        now + timedelta(days=settings.calendar_lookahead_days),
    )


async def _store_events(
    supabase: Client,
    events: List[Dict[str, Any]],
    normalizer: Normalizer,
    account: Account,
    organization_id: str
) -> UpsertResult:
    rows, skipped = normalize_batch(events, normalizer, account, organization_id)
    result = await upsert_appointments(supabase, rows)
    return UpsertResult(result.written, result.failed + skipped)


async def _sync_calendars(
    supabase: Client,
    calendars: List[Dict[str, Any]],
    fetch_events: EventFetcher,
    normalizer: Normalizer,
    account: Account,
    organization_id: str
) -> UpsertResult:
    """Fetch and store each calendar in turn; a calendar whose listing fails is skipped."""
    total = UpsertResult()
    for calendar in calendars:
        try:
            events = await fetch_events(calendar)
        except (IntegrationError, httpx.HTTPError) as e:
            logger.warning(f"⏭️  Skipping calendar {calendar.get('id')}: {e}")
            continue

        result = await _store_events(supabase, events, normalizer, account, organization_id)
        total = total.add(result)
        logger.info(f"   📅 Calendar {calendar.get('name') or calendar.get('summary') or calendar.get('id')}: "
                    f"{result.written}/{len(events)} events")
    return total


def _summary(total: UpsertResult, calendars_count: int, last_sync: str) -> Dict[str, Any]:
    return {
        "synced": total.written,
        "failed": total.failed,
        "calendars_count": calendars_count,
        "last_sync": last_sync,
    }


# ============================================================================
# NYLAS CALENDAR SYNC
# ============================================================================

async def run_nylas_calendar_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    account: Account,
    organization_id: str,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Sync events in [now - lookback, now + lookahead] from primary calendars.

    A calendar whose event listing fails is logged and skipped; the other
    calendars still sync.

    Returns:
        Dictionary with synced, failed, calendars_count, last_sync

    Raises:
        BadRequestError: account is not Nylas-wrapped
    """
    if not account.is_nylas:
        raise BadRequestError("Account not connected via Nylas")

    now = now or utc_now()
    window_start, window_end = _sync_window(settings, now)

    calendars = await nylas.list_calendars(http_client, settings, account.nylas_grant_id)
    logger.info(f"📅 Found {len(calendars)} calendars for account {account.id}")

    async def fetch_events(calendar):
        return await nylas.list_events(
            http_client, settings, account.nylas_grant_id, calendar["id"],
            window_start, window_end, settings.calendar_event_limit
        )

    primary = [c for c in calendars if c.get("is_primary")]
    total = await _sync_calendars(supabase, primary, fetch_events, nylas.normalize_event, account, organization_id)
    last_sync = await mark_synced(supabase, account.id, now)

    logger.info(f"✅ Calendar sync complete: {total.written} events for account {account.id}")
    return _summary(total, len(calendars), last_sync)


# ============================================================================
# DIRECT OAUTH CALENDAR SYNC
# ============================================================================

async def run_direct_calendar_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    account: Account,
    organization_id: str,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Sync the calendar window for an Outlook or Gmail account connected by OAuth.

    The access token is refreshed first when it has expired. Outlook reads
    the default calendar through calendarView (one calendar); Gmail reads
    the primary calendar(s) from the calendar list and skips a calendar
    whose listing fails.

    Returns:
        Dictionary with synced, failed, calendars_count, last_sync

    Raises:
        BadRequestError: account is Nylas-wrapped or not Outlook/Gmail
        UpstreamError: Graph calendarView or the Google calendar list failed
    """
    if account.is_nylas or account.provider not in (EmailProvider.OUTLOOK, EmailProvider.GMAIL):
        raise BadRequestError("Calendar sync requires an Outlook or Gmail account connected by OAuth")

    now = now or utc_now()
    window_start, window_end = _sync_window(settings, now)

    logger.info(f"🚀 Starting {account.provider.value} calendar sync for account {account.id}")
    access_token = await ensure_fresh_access_token(http_client, supabase, settings, account)

    if account.provider == EmailProvider.OUTLOOK:
        events = await microsoft_graph.list_calendar_view(
            http_client, access_token, window_start, window_end, settings.calendar_event_limit
        )
        total = await _store_events(supabase, events, microsoft_graph.normalize_event, account, organization_id)
        calendars_count = 1
    else:
        calendars = await google_calendar.list_calendars(http_client, access_token)
        logger.info(f"📅 Found {len(calendars)} Google calendars for account {account.id}")

        async def fetch_events(calendar):
            return await google_calendar.list_events(
                http_client, access_token, calendar["id"],
                window_start, window_end, settings.calendar_event_limit
            )

        total = await _sync_calendars(
            supabase, google_calendar.primary_calendars(calendars), fetch_events,
            google_calendar.normalize_event, account, organization_id
        )
        calendars_count = len(calendars)

    last_sync = await mark_synced(supabase, account.id, now)

    logger.info(f"✅ {account.provider.value} calendar sync complete: {total.written} events for account {account.id}")
    return _summary(total, calendars_count, last_sync)

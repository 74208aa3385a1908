from datetime import timedelta

import httpx
import pytest

from app.core.errors import BadRequestError, UpstreamError
from app.services.jobs import tasks
from app.services.sync.orchestration.calendar_sync import run_direct_calendar_sync, run_nylas_calendar_sync
from app.services.sync.orchestration.delta_sync import apply_nylas_delta
from app.services.sync.persistence import APPOINTMENTS_TABLE, EMAILS_TABLE
from app.services.sync.providers import google_calendar, microsoft_graph
from tests.conftest import NOW, ORG_ID

GRANT = "grant-1"


@pytest.fixture
def nylas_account(add_account):
    return add_account(provider="gmail", nylas_grant_id=GRANT, access_token=None, refresh_token=None)


def grant_url(settings, path):
    return f"{settings.nylas_api_uri}/v3/grants/{GRANT}/{path}"


def timespan_event(event_id, **overrides):
    event = {
        "id": event_id,
        "title": "Site visit",
        "when": {"object": "timespan", "start_time": 1772366400, "end_time": 1772370000},
        "participants": [{"email": "client@example.com"}],
        "status": "confirmed",
    }
    event.update(overrides)
    return event


# ============================================================================
# CALENDAR SYNC
# ============================================================================

async def test_calendar_sync_reads_primary_calendars_only(http_client, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "calendars"), json={"data": [
        {"id": "cal-primary", "name": "Work", "is_primary": True},
        {"id": "cal-holidays", "name": "Holidays", "is_primary": False},
    ]})
    provider.add("GET", grant_url(settings, "events"), json={"data": [
        timespan_event("evt-1"),
        timespan_event("evt-2", when={"object": "date", "date": "2026-03-05"}),
        {"id": "evt-broken", "when": {}},
    ]})

    result = await run_nylas_calendar_sync(http_client, fake_supabase, settings, nylas_account, ORG_ID, now=NOW)

    assert result["synced"] == 2
    assert result["failed"] == 1
    assert result["calendars_count"] == 2
    assert result["last_sync"] == NOW.isoformat()

    event_requests = provider.requests_to("GET", grant_url(settings, "events"))
    assert len(event_requests) == 1
    params = event_requests[0].url.params
    assert params["calendar_id"] == "cal-primary"
    assert int(params["start"]) == int((NOW - timedelta(days=settings.calendar_lookback_days)).timestamp())
    assert int(params["end"]) == int((NOW + timedelta(days=settings.calendar_lookahead_days)).timestamp())

    rows = fake_supabase.rows(APPOINTMENTS_TABLE)
    assert {r["calendar_event_id"] for r in rows} == {"evt-1", "evt-2"}
    assert all(r["organization_id"] == ORG_ID for r in rows)


async def test_calendar_sync_is_idempotent(http_client, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "calendars"), json={"data": [{"id": "c", "is_primary": True}]})
    provider.add("GET", grant_url(settings, "events"), json={"data": [timespan_event("evt-1")]})

    await run_nylas_calendar_sync(http_client, fake_supabase, settings, nylas_account, ORG_ID, now=NOW)
    await run_nylas_calendar_sync(http_client, fake_supabase, settings, nylas_account, ORG_ID, now=NOW)

    assert len(fake_supabase.rows(APPOINTMENTS_TABLE)) == 1


async def test_calendar_sync_skips_failing_calendar(http_client, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "calendars"), json={"data": [
        {"id": "c-1", "is_primary": True},
        {"id": "c-2", "is_primary": True},
    ]})

    def events(request):
        if request.url.params["calendar_id"] == "c-1":
            return httpx.Response(503, text="calendar unavailable")
        return httpx.Response(200, json={"data": [timespan_event("evt-9")]})

    provider.add("GET", grant_url(settings, "events"), handler=events)

    result = await run_nylas_calendar_sync(http_client, fake_supabase, settings, nylas_account, ORG_ID, now=NOW)

    assert result["synced"] == 1
    assert result["calendars_count"] == 2


async def test_calendar_sync_with_no_calendars(http_client, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "calendars"), json={"data": []})

    result = await run_nylas_calendar_sync(http_client, fake_supabase, settings, nylas_account, ORG_ID, now=NOW)

    assert result["synced"] == 0
    assert result["calendars_count"] == 0


async def test_calendar_sync_requires_nylas_account(http_client, fake_supabase, settings, add_account):
    account = add_account(provider="outlook")

    with pytest.raises(BadRequestError) as exc_info:
        await run_nylas_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID)
    assert exc_info.value.message == "Account not connected via Nylas"


# ============================================================================
# DIRECT OAUTH CALENDAR SYNC
# ============================================================================

GRAPH_CALENDAR_VIEW_URL = f"{microsoft_graph.GRAPH_BASE_URL}/me/calendar/calendarView"
GOOGLE_CALENDAR_LIST_URL = f"{google_calendar.CALENDAR_API_URL}/users/me/calendarList"


def google_events_url(calendar_id):
    return f"{google_calendar.CALENDAR_API_URL}/calendars/{calendar_id}/events"


def graph_event(event_id, **overrides):
    event = {
        "id": event_id,
        "subject": "Kitchen walkthrough",
        "bodyPreview": "Bring samples",
        "start": {"dateTime": "2026-03-02T15:00:00.0000000", "timeZone": "UTC"},
        "end": {"dateTime": "2026-03-02T16:00:00.0000000", "timeZone": "UTC"},
        "location": {"displayName": "12 Main St"},
        "attendees": [{"emailAddress": {"address": "client@example.com"}, "type": "required"}],
        "isCancelled": False,
    }
    event.update(overrides)
    return event


def google_event(event_id, **overrides):
    event = {
        "id": event_id,
        "summary": "Design review",
        "start": {"dateTime": "2026-03-03T09:00:00-05:00"},
        "end": {"dateTime": "2026-03-03T10:00:00-05:00"},
        "attendees": [{"email": "client@example.com"}, {"self": True}],
        "status": "confirmed",
    }
    event.update(overrides)
    return event


async def test_outlook_calendar_sync_reads_calendar_view(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_CALENDAR_VIEW_URL, json={"value": [
        graph_event("o-1"),
        graph_event("o-2", isCancelled=True, location=None),
        graph_event("o-broken", start="2026-03-02"),
    ]})

    result = await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)

    assert result == {"synced": 2, "failed": 1, "calendars_count": 1, "last_sync": NOW.isoformat()}

    request = provider.requests_to("GET", GRAPH_CALENDAR_VIEW_URL)[0]
    assert request.headers["Authorization"] == "Bearer access-old"
    assert request.headers["Prefer"] == 'outlook.timezone="UTC"'
    assert request.url.params["startDateTime"] == (NOW - timedelta(days=settings.calendar_lookback_days)).isoformat()
    assert request.url.params["endDateTime"] == (NOW + timedelta(days=settings.calendar_lookahead_days)).isoformat()

    rows = {r["calendar_event_id"]: r for r in fake_supabase.rows(APPOINTMENTS_TABLE)}
    assert rows["o-1"]["start_time"] == "2026-03-02T15:00:00+00:00"
    assert rows["o-1"]["location"] == "12 Main St"
    assert rows["o-1"]["attendees"] == ["client@example.com"]
    assert rows["o-1"]["calendar_provider"] == "outlook"
    assert rows["o-2"]["status"] == "cancelled"
    assert rows["o-2"]["location"] is None


async def test_outlook_calendar_sync_is_idempotent(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_CALENDAR_VIEW_URL, json={"value": [graph_event("o-1")]})

    await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)
    await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)

    assert len(fake_supabase.rows(APPOINTMENTS_TABLE)) == 1


async def test_outlook_calendar_sync_refreshes_expired_token(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(token_expiry=None)
    provider.add("POST", settings.azure_token_url, json={"access_token": "access-new", "expires_in": 3600})
    provider.add("GET", GRAPH_CALENDAR_VIEW_URL, json={"value": []})

    result = await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)

    assert result["synced"] == 0
    assert provider.requests_to("GET", GRAPH_CALENDAR_VIEW_URL)[0].headers["Authorization"] == "Bearer access-new"


async def test_outlook_calendar_view_error_is_raised(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_CALENDAR_VIEW_URL, status=403, text="Calendars.Read not granted")

    with pytest.raises(UpstreamError) as exc_info:
        await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)
    assert "Calendars.Read not granted" in exc_info.value.message
    assert fake_supabase.rows(APPOINTMENTS_TABLE) == []


async def test_google_calendar_sync_reads_primary_calendar(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    provider.add("GET", GOOGLE_CALENDAR_LIST_URL, json={"items": [
        {"id": "primary-cal", "summary": "Owner", "primary": True},
        {"id": "holidays", "summary": "Holidays"},
    ]})
    provider.add("GET", google_events_url("primary-cal"), json={"items": [
        google_event("g-1"),
        google_event("g-2", start={"date": "2026-03-05"}, end={"date": "2026-03-06"}, status="cancelled"),
        google_event("g-broken", start={}),
    ]})

    result = await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)

    assert result == {"synced": 2, "failed": 1, "calendars_count": 2, "last_sync": NOW.isoformat()}

    event_requests = [r for r in provider.requests if r.url.path.endswith("/events")]
    assert len(event_requests) == 1
    params = event_requests[0].url.params
    assert params["singleEvents"] == "true"
    assert params["orderBy"] == "startTime"
    assert params["timeMin"] == (NOW - timedelta(days=settings.calendar_lookback_days)).isoformat()

    rows = {r["calendar_event_id"]: r for r in fake_supabase.rows(APPOINTMENTS_TABLE)}
    assert rows["g-1"]["start_time"] == "2026-03-03T14:00:00+00:00"
    assert rows["g-1"]["attendees"] == ["client@example.com"]
    assert rows["g-1"]["calendar_provider"] == "gmail"
    assert rows["g-2"]["start_time"] == "2026-03-05T00:00:00+00:00"
    assert rows["g-2"]["status"] == "cancelled"


async def test_google_calendar_sync_falls_back_to_first_calendar(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    provider.add("GET", GOOGLE_CALENDAR_LIST_URL, json={"items": [{"id": "team"}, {"id": "other"}]})
    provider.add("GET", google_events_url("team"), json={"items": [google_event("g-1")]})

    result = await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)

    assert result["synced"] == 1
    assert provider.requests_to("GET", google_events_url("other")) == []


async def test_google_calendar_sync_skips_failing_calendar(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    provider.add("GET", GOOGLE_CALENDAR_LIST_URL, json={"items": [
        {"id": "work", "primary": True},
        {"id": "personal", "primary": True},
    ]})
    provider.add("GET", google_events_url("work"), status=500, text="backend error")
    provider.add("GET", google_events_url("personal"), json={"items": [google_event("g-1")]})

    result = await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID, now=NOW)

    assert result["synced"] == 1
    assert result["calendars_count"] == 2


@pytest.mark.parametrize("overrides", [
    {"provider": "gmail", "nylas_grant_id": GRANT},
    {"provider": "imap"},
])
async def test_direct_calendar_sync_rejects_other_accounts(http_client, provider, fake_supabase, settings, add_account, overrides):
    account = add_account(**overrides)

    with pytest.raises(BadRequestError) as exc_info:
        await run_direct_calendar_sync(http_client, fake_supabase, settings, account, ORG_ID)
    assert exc_info.value.message == "Calendar sync requires an Outlook or Gmail account connected by OAuth"
    assert provider.requests == []


# ============================================================================
# WEBHOOK DELTAS
# ============================================================================

async def test_message_created_delta_upserts(http_client, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "messages/m-1"), json={"data": {"id": "m-1", "subject": "New"}})
    delta = {"type": "message.created", "object": "message", "object_data": {"id": "m-1", "grant_id": GRANT}}

    assert await apply_nylas_delta(http_client, fake_supabase, settings, delta) == "upserted"
    assert await apply_nylas_delta(http_client, fake_supabase, settings, delta) == "upserted"

    rows = fake_supabase.rows(EMAILS_TABLE)
    assert len(rows) == 1
    assert rows[0]["subject"] == "New"
    assert rows[0]["organization_id"] == ORG_ID


async def test_message_deleted_delta_removes_row(http_client, fake_supabase, settings, nylas_account):
    fake_supabase.tables[EMAILS_TABLE] = [
        {"account_id": nylas_account.id, "message_id": "m-1"},
        {"account_id": nylas_account.id, "message_id": "m-2"},
    ]
    delta = {"type": "message.deleted", "object_data": {"id": "m-1", "grant_id": GRANT}}

    assert await apply_nylas_delta(http_client, fake_supabase, settings, delta) == "deleted"
    assert [r["message_id"] for r in fake_supabase.rows(EMAILS_TABLE)] == ["m-2"]


async def test_event_updated_delta_fetches_with_calendar(http_client, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "events/evt-1"), json={"data": timespan_event("evt-1", title="Moved")})
    delta = {
        "type": "event.updated",
        "object": "event",
        "object_data": {"id": "evt-1", "grant_id": GRANT, "calendar_id": "cal-primary"},
    }

    assert await apply_nylas_delta(http_client, fake_supabase, settings, delta) == "upserted"
    assert provider.requests[0].url.params["calendar_id"] == "cal-primary"
    assert fake_supabase.rows(APPOINTMENTS_TABLE)[0]["title"] == "Moved"


async def test_event_deleted_delta(http_client, fake_supabase, settings, nylas_account):
    fake_supabase.tables[APPOINTMENTS_TABLE] = [{"account_id": nylas_account.id, "calendar_event_id": "evt-1"}]
    delta = {"type": "event.deleted", "object_data": {"id": "evt-1", "grant_id": GRANT}}

    assert await apply_nylas_delta(http_client, fake_supabase, settings, delta) == "deleted"
    assert fake_supabase.rows(APPOINTMENTS_TABLE) == []


@pytest.mark.parametrize("delta", [
    {"type": "message.created", "object_data": {"id": "m-1", "grant_id": "unknown-grant"}},
    {"type": "message.created", "object_data": {"grant_id": GRANT}},
    {"type": "grant.expired", "object_data": {"id": "x", "grant_id": GRANT}},
])
async def test_unhandled_deltas_are_skipped(http_client, provider, fake_supabase, settings, nylas_account, delta):
    assert await apply_nylas_delta(http_client, fake_supabase, settings, delta) == "skipped"
    assert provider.requests == []


# ============================================================================
# WORKER TASK
# ============================================================================

def test_delta_task_counts_outcomes_and_closes_client(monkeypatch, provider, fake_supabase, settings, nylas_account):
    provider.add("GET", grant_url(settings, "messages/m-ok"), json={"data": {"id": "m-ok"}})
    provider.add("GET", grant_url(settings, "messages/m-gone"), status=404, text="not found")
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider))
    monkeypatch.setattr(tasks, "get_worker_dependencies", lambda: (settings, client, fake_supabase))

    outcomes = tasks.process_nylas_deltas_task([
        {"type": "message.created", "object_data": {"id": "m-ok", "grant_id": GRANT}},
        {"type": "message.created", "object_data": {"id": "m-gone", "grant_id": GRANT}},
        {"type": "message.deleted", "object_data": {"id": "m-ok", "grant_id": GRANT}},
        {"type": "calendar.created", "object_data": {"id": "c", "grant_id": GRANT}},
    ])

    assert outcomes == {"upserted": 1, "deleted": 1, "skipped": 1, "failed": 1}
    assert client.is_closed
    assert fake_supabase.rows(EMAILS_TABLE) == []

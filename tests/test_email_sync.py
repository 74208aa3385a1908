import httpx
import pytest

from app.core.errors import BadRequestError, TokenRefreshError, UpstreamError
from app.services.sync.database import ACCOUNTS_TABLE
from app.services.sync.oauth import GOOGLE_TOKEN_URL
from app.services.sync.orchestration.email_sync import (
    normalize_batch,
    run_gmail_sync,
    run_nylas_email_sync,
    run_outlook_sync,
)
from app.services.sync.persistence import EMAILS_TABLE, record_sent_message, upsert_messages
from app.services.sync.providers import gmail, google_calendar, microsoft_graph, nylas
from app.services.sync.providers.gmail import GMAIL_API_URL
from tests.conftest import NOW, ORG_ID
from tests.test_providers import gmail_message, graph_message

GRAPH_MESSAGES_URL = f"{microsoft_graph.GRAPH_BASE_URL}/me/messages"


def graph_page(count, next_link=None):
    page = {"value": [graph_message(id=f"msg-{i}") for i in range(count)]}
    if next_link:
        page["@odata.nextLink"] = next_link
    return page


# ============================================================================
# OUTLOOK
# ============================================================================

async def test_outlook_sync_with_empty_mailbox(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_MESSAGES_URL, json={"value": []})

    result = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 0
    assert result["total"] == 0
    assert result["next_cursor"] is None
    assert fake_supabase.rows(EMAILS_TABLE) == []
    assert fake_supabase.rows(ACCOUNTS_TABLE)[0]["last_sync"] == result["last_sync"]


async def test_outlook_sync_is_idempotent(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_MESSAGES_URL, json=graph_page(3))

    first = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)
    second = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert first["synced"] == second["synced"] == 3
    rows = fake_supabase.rows(EMAILS_TABLE)
    assert sorted(r["message_id"] for r in rows) == ["msg-0", "msg-1", "msg-2"]


async def test_outlook_sync_uses_default_limit_and_returns_cursor(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    next_link = f"{GRAPH_MESSAGES_URL}?$skip=50"
    provider.add("GET", GRAPH_MESSAGES_URL, json=graph_page(1, next_link))

    result = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["next_cursor"] == next_link
    assert provider.requests[0].url.params["$top"] == str(settings.default_sync_limit)


async def test_outlook_partial_failure_counts_rows_written(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_MESSAGES_URL, json=graph_page(10))
    failing = {"msg-2", "msg-5", "msg-8"}
    fake_supabase.fail_when = lambda table, op, payload: (
        table == EMAILS_TABLE and op == "upsert" and payload["message_id"] in failing
    )

    result = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 7
    assert result["failed"] == 3
    assert len(fake_supabase.rows(EMAILS_TABLE)) == 7


async def test_outlook_sync_skips_unparseable_messages(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    page = graph_page(7)
    page["value"] += [{"subject": "no id"}, {"id": None}, {"id": "bad-date", "receivedDateTime": "yesterday"}]
    provider.add("GET", GRAPH_MESSAGES_URL, json=page)

    result = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["total"] == 10
    assert result["synced"] == 7
    assert result["failed"] == 3
    assert len(fake_supabase.rows(EMAILS_TABLE)) == 7


async def test_outlook_message_with_string_sender_is_skipped(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_MESSAGES_URL, json={"value": [
        graph_message(id="msg-ok"),
        graph_message(id="msg-bad", **{"from": "someone@example.com"}),
    ]})

    result = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 1
    assert result["failed"] == 1
    assert [r["message_id"] for r in fake_supabase.rows(EMAILS_TABLE)] == ["msg-ok"]


async def test_outlook_sync_refreshes_expired_token_first(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(token_expiry=NOW.isoformat())
    provider.add("POST", settings.azure_token_url, json={"access_token": "access-new", "expires_in": 3600})

    def messages(request):
        assert request.headers["Authorization"] == "Bearer access-new"
        return httpx.Response(200, json=graph_page(1))

    provider.add("GET", GRAPH_MESSAGES_URL, handler=messages)

    result = await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 1
    assert [r.method for r in provider.requests] == ["POST", "GET"]


async def test_outlook_refresh_failure_aborts_sync(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(token_expiry=NOW.isoformat())
    provider.add("POST", settings.azure_token_url, status=401, text="AADSTS70008: expired")

    with pytest.raises(TokenRefreshError):
        await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert provider.requests_to("GET", GRAPH_MESSAGES_URL) == []
    assert fake_supabase.rows(ACCOUNTS_TABLE)[0].get("last_sync") is None


async def test_outlook_upstream_error_surfaces_body(http_client, provider, fake_supabase, settings, add_account):
    account = add_account()
    provider.add("GET", GRAPH_MESSAGES_URL, status=403, text="ErrorAccessDenied")

    with pytest.raises(UpstreamError) as exc_info:
        await run_outlook_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert exc_info.value.status_code == 400
    assert "ErrorAccessDenied" in exc_info.value.message


# ============================================================================
# GMAIL
# ============================================================================

def stub_gmail(provider, ids, next_token=None, failing=()):
    listing = {"messages": [{"id": i, "threadId": f"t-{i}"} for i in ids]}
    if next_token:
        listing["nextPageToken"] = next_token
    provider.add("GET", f"{GMAIL_API_URL}/messages", json=listing)
    for message_id in ids:
        if message_id in failing:
            provider.add("GET", f"{GMAIL_API_URL}/messages/{message_id}", status=500, text="backend error")
        else:
            provider.add("GET", f"{GMAIL_API_URL}/messages/{message_id}", json=gmail_message(id=message_id))


async def test_gmail_sync_page_smaller_than_max_results(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    stub_gmail(provider, ["g-1", "g-2", "g-3"])

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID, max_results=5)

    assert result["synced"] == 3
    assert result["total"] == 3
    assert result["next_cursor"] is None
    assert len(fake_supabase.rows(EMAILS_TABLE)) == 3

    listing = provider.requests_to("GET", f"{GMAIL_API_URL}/messages")[0]
    assert listing.url.params["maxResults"] == "5"
    assert listing.url.params["q"] == "in:inbox OR in:sent"


async def test_gmail_sync_passes_page_token(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    stub_gmail(provider, ["g-1"], next_token="page-2")

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID, cursor="page-1")

    assert result["next_cursor"] == "page-2"
    assert provider.requests_to("GET", f"{GMAIL_API_URL}/messages")[0].url.params["pageToken"] == "page-1"


async def test_gmail_failed_fetch_is_skipped(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    stub_gmail(provider, ["g-1", "g-2", "g-3"], failing={"g-2"})

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 2
    assert result["failed"] == 1
    assert result["total"] == 3


async def test_gmail_message_with_null_payload_is_skipped(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    stub_gmail(provider, ["g-1", "g-2"])
    provider.add("GET", f"{GMAIL_API_URL}/messages/g-2", json=gmail_message(id="g-2", payload=None))

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 1
    assert result["failed"] == 1
    assert [r["message_id"] for r in fake_supabase.rows(EMAILS_TABLE)] == ["g-1"]


async def test_gmail_fetch_timeout_is_skipped(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    stub_gmail(provider, ["g-1", "g-2"])

    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    provider.add("GET", f"{GMAIL_API_URL}/messages/g-2", handler=timeout)

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 1
    assert result["failed"] == 1
    assert fake_supabase.rows(ACCOUNTS_TABLE)[0]["last_sync"] == result["last_sync"]


async def test_gmail_fetch_with_non_json_body_is_skipped(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail")
    stub_gmail(provider, ["g-1", "g-2"])
    provider.add("GET", f"{GMAIL_API_URL}/messages/g-2", text="<html>proxy error</html>")

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 1
    assert result["failed"] == 1


async def test_gmail_sync_refreshes_against_google(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail", token_expiry=None)
    provider.add("POST", GOOGLE_TOKEN_URL, json={"access_token": "g-access", "expires_in": 3599})
    stub_gmail(provider, [])

    result = await run_gmail_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 0
    assert provider.requests_to("GET", f"{GMAIL_API_URL}/messages")[0].headers["Authorization"] == "Bearer g-access"


# ============================================================================
# NYLAS
# ============================================================================

async def test_nylas_sync_reads_one_page(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail", nylas_grant_id="grant-1", access_token=None, refresh_token=None)
    url = f"{settings.nylas_api_uri}/v3/grants/grant-1/messages"
    provider.add("GET", url, json={
        "data": [{"id": "n-1", "from": [{"email": "a@example.com"}]}, {"id": "n-2"}],
        "next_cursor": "cur-2",
    })

    result = await run_nylas_email_sync(http_client, fake_supabase, settings, account, ORG_ID, limit=2, cursor="cur-1")

    assert result["synced"] == 2
    assert result["next_cursor"] == "cur-2"
    request = provider.requests[0]
    assert request.url.params["limit"] == "2"
    assert request.url.params["page_token"] == "cur-1"
    assert request.headers["Authorization"] == "Bearer nylas-key"


async def test_nylas_sync_for_imap_reports_zero(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="imap", access_token=None, imap_host="imap.example.com")

    result = await run_nylas_email_sync(http_client, fake_supabase, settings, account, ORG_ID)

    assert result["synced"] == 0
    assert result["last_sync"]
    assert provider.requests == []


async def test_nylas_sync_rejects_unwrapped_account(http_client, fake_supabase, settings, add_account):
    account = add_account(provider="outlook")

    with pytest.raises(BadRequestError) as exc_info:
        await run_nylas_email_sync(http_client, fake_supabase, settings, account, ORG_ID)
    assert exc_info.value.message == "Email account not properly configured"


async def test_nylas_upstream_error_message(http_client, provider, fake_supabase, settings, add_account):
    account = add_account(provider="gmail", nylas_grant_id="grant-1")
    provider.add(
        "GET", f"{settings.nylas_api_uri}/v3/grants/grant-1/messages",
        status=404, json={"error": {"message": "grant not found"}},
    )

    with pytest.raises(UpstreamError) as exc_info:
        await run_nylas_email_sync(http_client, fake_supabase, settings, account, ORG_ID)
    assert exc_info.value.message.startswith("Failed to sync emails")


# ============================================================================
# HELPERS
# ============================================================================

def test_normalize_batch_counts_skips(add_account):
    account = add_account()
    rows, skipped = normalize_batch(
        [graph_message(id="ok"), {"id": None}, {"subject": "no id"}],
        microsoft_graph.normalize_message, account, ORG_ID
    )
    assert [r["message_id"] for r in rows] == ["ok"]
    assert skipped == 2


NYLAS_EVENT = {"id": "evt-ok", "when": {"start_time": 1772366400, "end_time": 1772370000}}
GOOGLE_EVENT = {"id": "g-evt-ok", "start": {"dateTime": "2026-03-02T10:00:00Z"}, "end": {"dateTime": "2026-03-02T11:00:00Z"}}
GRAPH_EVENT = {"id": "o-evt-ok", "start": {"dateTime": "2026-03-02T10:00:00.0000000"}, "end": {"dateTime": "2026-03-02T11:00:00.0000000"}}


@pytest.mark.parametrize("normalizer, good, bad", [
    (gmail.parse_gmail_message, gmail_message(), gmail_message(id="g-bad", payload=None)),
    (microsoft_graph.normalize_message, graph_message(), graph_message(id="o-bad", **{"from": "someone@example.com"})),
    (microsoft_graph.normalize_message, graph_message(), "not a message"),
    (nylas.normalize_event, NYLAS_EVENT, {"id": "evt-bad", "when": [1772366400, 1772370000]}),
    (google_calendar.normalize_event, GOOGLE_EVENT, {"id": "g-evt-bad", "start": "2026-03-02", "end": "2026-03-03"}),
    (microsoft_graph.normalize_event, GRAPH_EVENT, {"id": "o-evt-bad", "start": "2026-03-02T10:00:00"}),
])
def test_normalize_batch_skips_wrong_typed_fields(add_account, normalizer, good, bad):
    account = add_account()

    rows, skipped = normalize_batch([bad, good], normalizer, account, ORG_ID)

    assert len(rows) == 1
    assert skipped == 1


async def test_upsert_messages_reports_written_and_failed(fake_supabase):
    fake_supabase.fail_when = lambda table, op, payload: payload["message_id"] == "bad"
    result = await upsert_messages(fake_supabase, [
        {"account_id": "a", "message_id": "good"},
        {"account_id": "a", "message_id": "bad"},
    ])
    assert (result.written, result.failed) == (1, 1)


async def test_sent_copy_failure_is_not_raised(fake_supabase, add_account):
    account = add_account()
    fake_supabase.fail_when = lambda table, op, payload: table == EMAILS_TABLE

    stored = await record_sent_message(fake_supabase, account, ORG_ID, "sent-1", ["x@example.com"], "s", "<p>b</p>")

    assert stored is False

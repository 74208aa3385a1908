"""
Shared fixtures.

Environment variables are set before any app module is imported: Settings
is read once at import time by the broker and the rate limiter.
"""
import os

os.environ.update({
    "ENVIRONMENT": "test",
    "SUPABASE_URL": "https://project.supabase.co",
    "SUPABASE_SERVICE_KEY": "service-key",
    "APP_URL": "https://app.example.com",
    "AZURE_CLIENT_ID": "azure-client",
    "AZURE_CLIENT_SECRET": "azure-secret",
    "AZURE_REDIRECT_URI": "https://api.example.com/azure-oauth-callback",
    "GOOGLE_CLIENT_ID": "google-client",
    "GOOGLE_CLIENT_SECRET": "google-secret",
    "GMAIL_REDIRECT_URI": "https://api.example.com/gmail-oauth-callback",
    "NYLAS_API_KEY": "nylas-key",
    "NYLAS_CALLBACK_URI": "https://api.example.com/nylas-callback",
    "RATE_LIMIT_ENABLED": "false",
})
os.environ.pop("REDIS_URL", None)
os.environ.pop("NYLAS_WEBHOOK_SECRET", None)

from datetime import datetime, timedelta, timezone  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.config import get_settings  # noqa: E402
from app.core.dependencies import get_http_client, get_supabase  # noqa: E402
from app.models.schemas import Account  # noqa: E402
from app.services.sync.canonical import to_iso, utc_now  # noqa: E402
from app.services.sync.database import ACCOUNTS_TABLE, PROFILES_TABLE  # noqa: E402
from tests.fakes import FakeSupabase, ProviderStub  # noqa: E402

USER_ID = "user-1"
ORG_ID = "org-1"
TOKEN = "user-jwt"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def fake_supabase():
    supabase = FakeSupabase()
    supabase.auth.add_user(TOKEN, USER_ID, "owner@example.com")
    supabase.tables[PROFILES_TABLE] = [{"id": USER_ID, "user_id": USER_ID, "organization_id": ORG_ID}]
    return supabase


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
async def http_client(provider):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider)) as client:
        yield client


@pytest.fixture
def add_account(fake_supabase):
    """Insert an email_accounts row and return it as an Account."""

    def _add(**overrides) -> Account:
        row = {
            "id": "acct-1",
            "user_id": USER_ID,
            "organization_id": ORG_ID,
            "provider": "outlook",
            "email": "owner@example.com",
            "access_token": "access-old",
            "refresh_token": "refresh-old",
            "token_expiry": to_iso(utc_now() + timedelta(hours=1)),
            "connected": True,
        }
        row.update(overrides)
        fake_supabase.tables.setdefault(ACCOUNTS_TABLE, []).append(row)
        return Account(**row)

    return _add


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def api(fake_supabase, provider):
    """TestClient with Supabase and provider HTTP swapped for in-memory doubles."""
    from main import app

    async def _http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(provider)) as client:
            yield client

    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_http_client] = _http_client
    yield TestClient(app)
    app.dependency_overrides.clear()

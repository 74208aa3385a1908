"""
OAuth token lifecycle
Authorization URLs, code exchange and refresh for Microsoft (Azure AD) and Google

Nylas accounts never pass through here: the grant id stands in for tokens.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from supabase import Client

from app.core.config import Settings
from app.core.errors import ConfigurationError, TokenRefreshError, UpstreamError
from app.models.schemas import Account, EmailProvider
from app.services.sync.canonical import utc_now
from app.services.sync.database import update_tokens

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

AZURE_SCOPES = ["offline_access", "Mail.Read", "Mail.ReadWrite", "Mail.Send", "Calendars.Read", "User.Read"]
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]


# ============================================================================
# AUTHORIZATION URLS
# ============================================================================

def build_azure_authorize_url(settings: Settings, state: str) -> str:
    if not settings.azure_client_id or not settings.azure_redirect_uri:
        raise ConfigurationError(
            "Azure OAuth not configured. Set AZURE_CLIENT_ID and AZURE_REDIRECT_URI."
        )

    params = {
        "client_id": settings.azure_client_id,
        "response_type": "code",
        "redirect_uri": settings.azure_redirect_uri,
        "response_mode": "query",
        "scope": " ".join(AZURE_SCOPES),
        "state": state,
        "prompt": "consent",
    }
    return f"{settings.azure_authorize_url}?{urlencode(params)}"


def build_google_authorize_url(settings: Settings, state: str) -> str:
    if not settings.google_client_id or not settings.gmail_redirect_uri:
        raise ConfigurationError(
            "Gmail OAuth not configured. Set GOOGLE_CLIENT_ID and GMAIL_REDIRECT_URI."
        )

    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.gmail_redirect_uri,
        "response_type": "code",
        "scope": " ".join(GMAIL_SCOPES),
        "state": state,
        "access_type": "offline",  # refresh token
        "prompt": "consent",
    }
    return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"


# ============================================================================
# TOKEN ENDPOINT CALLS
# ============================================================================

async def post_token_form(
    http_client: httpx.AsyncClient,
    url: str,
    form: Dict[str, str],
    error_message: str,
    error_class=UpstreamError
) -> Dict[str, Any]:
    """
    POST an application/x-www-form-urlencoded body to a token endpoint.

    Raises:
        error_class: non-2xx response (upstream body embedded in the message)
    """
    response = await http_client.post(
        url,
        data=form,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    if not response.is_success:
        logger.error(f"❌ Token endpoint error {response.status_code}: {response.text[:500]}")
        raise error_class(error_message, upstream_status=response.status_code, upstream_body=response.text)

    return response.json()


async def exchange_authorization_code(
    http_client: httpx.AsyncClient,
    token_url: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    scope: Optional[str] = None
) -> Dict[str, Any]:
    """
    Exchange an authorization code for tokens.

    Returns:
        Token response (access_token, refresh_token, expires_in, ...)
    """
    form = {
        "client_id": client_id,
        "client_secret": client_secret,
        "code": code,
        "redirect_uri": redirect_uri,
        "grant_type": "authorization_code",
    }
    if scope:
        form["scope"] = scope

    return await post_token_form(http_client, token_url, form, "Failed to exchange code for tokens")


async def refresh_access_token(
    http_client: httpx.AsyncClient,
    token_url: str,
    client_id: str,
    client_secret: str,
    refresh_token: str
) -> Dict[str, Any]:
    form = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    return await post_token_form(
        http_client, token_url, form, "Failed to refresh access token", error_class=TokenRefreshError
    )


# ============================================================================
# EXPIRY
# ============================================================================

def token_is_expired(account: Account, now: Optional[datetime] = None) -> bool:
    """True exactly when token_expiry <= now. A missing expiry counts as expired."""
    if account.token_expiry is None:
        return True
    return account.token_expiry <= (now or utc_now())


def compute_token_expiry(expires_in: Any, now: Optional[datetime] = None) -> datetime:
    """now + expires_in seconds; missing or non-positive values fall back to one hour."""
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = DEFAULT_EXPIRES_IN
    if seconds <= 0:
        seconds = DEFAULT_EXPIRES_IN
    return (now or utc_now()) + timedelta(seconds=seconds)


def token_endpoint_for(provider: EmailProvider, settings: Settings) -> Tuple[str, str, str]:
    """
    Token URL and client credentials for a direct-OAuth provider.

    Raises:
        ConfigurationError: credentials missing for the provider
    """
    if provider == EmailProvider.OUTLOOK:
        if not settings.azure_configured:
            raise ConfigurationError("Azure credentials not configured")
        return settings.azure_token_url, settings.azure_client_id, settings.azure_client_secret

    if provider == EmailProvider.GMAIL:
        if not settings.google_configured:
            raise ConfigurationError("Google OAuth credentials not configured")
        return GOOGLE_TOKEN_URL, settings.google_client_id, settings.google_client_secret

    raise ConfigurationError(f"No token endpoint for provider {provider.value}")


async def ensure_fresh_access_token(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    account: Account,
    now: Optional[datetime] = None
) -> str:
    """
    Return a usable access token, refreshing and persisting it first if expired.

    Two concurrent calls on the same expired account may both refresh; the
    later write wins. Nothing is locked.

    Raises:
        TokenRefreshError: no refresh token, or the provider rejected the refresh
        ConfigurationError: provider credentials missing
    """
    now = now or utc_now()

    if not token_is_expired(account, now):
        return account.access_token

    logger.info(f"🔄 Token expired for account {account.id} ({account.provider.value}), refreshing...")

    if not account.refresh_token:
        raise TokenRefreshError("No refresh token available, please reconnect the account")

    token_url, client_id, client_secret = token_endpoint_for(account.provider, settings)
    tokens = await refresh_access_token(http_client, token_url, client_id, client_secret, account.refresh_token)

    access_token = tokens.get("access_token")
    if not access_token:
        raise TokenRefreshError("Token refresh response did not include an access token")

    refresh_token = tokens.get("refresh_token") or account.refresh_token
    token_expiry = compute_token_expiry(tokens.get("expires_in"), now)

    await update_tokens(supabase, account.id, access_token, refresh_token, token_expiry)

    account.access_token = access_token
    account.refresh_token = refresh_token
    account.token_expiry = token_expiry

    return access_token

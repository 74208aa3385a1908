"""
OAuth Routes
Connect flows for Outlook (Azure AD), Gmail (Google) and Nylas hosted auth

Flow (per provider):
    init      -> issue single-use state, return provider authorization URL
    callback  -> consume state, exchange code, fetch mailbox address,
                 upsert email_accounts on (user_id, email), redirect to APP_URL

SECURITY:
- Init endpoints require a Supabase JWT and are rate limited
- Callbacks are unauthenticated browser redirects; the state row binds them
  to the initiating user and expires after OAUTH_STATE_TTL_SECONDS
- Callback failures redirect with an error parameter instead of returning JSON
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from supabase import Client

from app.core.config import Settings, get_settings
from app.core.dependencies import get_http_client, get_supabase
from app.core.errors import BadRequestError, ConfigurationError, IntegrationError
from app.core.security import get_current_user_context, sanitize_for_logging
from app.middleware.rate_limit import limiter, oauth_init_limit
from app.models.schemas import EmailProvider, NylasConnectRequest, OAuthProvider
from app.services.sync.canonical import to_iso, utc_now
from app.services.sync.database import (
    consume_oauth_state,
    issue_oauth_state,
    resolve_organization_id,
    upsert_account,
)
from app.services.sync.oauth import (
    AZURE_SCOPES,
    GOOGLE_TOKEN_URL,
    build_azure_authorize_url,
    build_google_authorize_url,
    compute_token_expiry,
    exchange_authorization_code,
)
from app.services.sync.providers import gmail, microsoft_graph, nylas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["oauth"])


def _redirect(settings: Settings, params: Dict[str, str]) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_url}?{urlencode(params)}", status_code=302)


async def _store_oauth_account(
    supabase: Client,
    user_id: str,
    provider: EmailProvider,
    email: str,
    tokens: Dict[str, Any]
) -> Dict[str, Any]:
    """Upsert a direct-OAuth account from a token response."""
    organization_id = await resolve_organization_id(supabase, {"user_id": user_id})

    payload = {
        "user_id": user_id,
        "organization_id": organization_id,
        "provider": provider.value,
        "email": email,
        "access_token": tokens["access_token"],
        "token_expiry": to_iso(compute_token_expiry(tokens.get("expires_in"))),
        "connected": True,
    }
    # Google omits refresh_token on re-consent; keep the stored one
    if tokens.get("refresh_token"):
        payload["refresh_token"] = tokens["refresh_token"]

    return await upsert_account(supabase, payload)


# ============================================================================
# AZURE (OUTLOOK)
# ============================================================================

@router.post("/azure-oauth-init")
@limiter.limit(oauth_init_limit)
async def azure_oauth_init(
    request: Request,  # Required for rate limiting
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase)
):
    """Generate the Microsoft authorization URL for the caller."""
    if not settings.azure_client_id or not settings.azure_redirect_uri:
        raise ConfigurationError("Azure OAuth not configured. Set AZURE_CLIENT_ID and AZURE_REDIRECT_URI.")

    state = await issue_oauth_state(
        supabase, user_context["user_id"], OAuthProvider.AZURE.value, settings.oauth_state_ttl_seconds
    )
    auth_url = build_azure_authorize_url(settings, state)

    logger.info(f"[AZURE_INIT] Authorization URL generated for user {user_context['user_id']}")
    return {"success": True, "authUrl": auth_url}


@router.get("/azure-oauth-callback")
async def azure_oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Complete the Outlook connection and redirect back to the app."""
    if error:
        logger.warning(f"[AZURE_CALLBACK] Provider returned error: {error}")
        return _redirect(settings, {"oauth_error": error_description or error})

    try:
        if not code:
            raise BadRequestError("Missing authorization code")

        state_row = await consume_oauth_state(supabase, state, OAuthProvider.AZURE.value)

        if not settings.azure_configured:
            raise ConfigurationError("Azure OAuth not configured")

        tokens = await exchange_authorization_code(
            http_client,
            settings.azure_token_url,
            settings.azure_client_id,
            settings.azure_client_secret,
            code,
            settings.azure_redirect_uri,
            scope=" ".join(AZURE_SCOPES),
        )
        email = await microsoft_graph.get_profile_email(http_client, tokens["access_token"])

        await _store_oauth_account(supabase, state_row["user_id"], EmailProvider.OUTLOOK, email, tokens)

        logger.info(f"✅ [AZURE_CALLBACK] Outlook connected: {sanitize_for_logging(email)}")
        return _redirect(settings, {"oauth_success": "true", "provider": "outlook", "email": email})

    except IntegrationError as e:
        logger.error(f"❌ [AZURE_CALLBACK] {e.message}")
        return _redirect(settings, {"oauth_error": e.message})
    except Exception as e:
        logger.exception("❌ [AZURE_CALLBACK] Unexpected error")
        return _redirect(settings, {"oauth_error": str(e) or type(e).__name__})


# ============================================================================
# GMAIL
# ============================================================================

@router.post("/gmail-oauth-init")
@limiter.limit(oauth_init_limit)
async def gmail_oauth_init(
    request: Request,  # Required for rate limiting
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase)
):
    """Generate the Google authorization URL (offline access) for the caller."""
    if not settings.google_client_id or not settings.gmail_redirect_uri:
        raise ConfigurationError("Gmail OAuth not configured. Set GOOGLE_CLIENT_ID and GMAIL_REDIRECT_URI.")

    state = await issue_oauth_state(
        supabase, user_context["user_id"], OAuthProvider.GMAIL.value, settings.oauth_state_ttl_seconds
    )
    auth_url = build_google_authorize_url(settings, state)

    logger.info(f"[GMAIL_INIT] Authorization URL generated for user {user_context['user_id']}")
    return {"authUrl": auth_url, "state": state}


@router.get("/gmail-oauth-callback")
async def gmail_oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Complete the Gmail connection and redirect back to the app."""
    if error:
        logger.warning(f"[GMAIL_CALLBACK] Provider returned error: {error}")
        return _redirect(settings, {"oauth_error": error})

    try:
        if not code:
            raise BadRequestError("Missing authorization code")

        state_row = await consume_oauth_state(supabase, state, OAuthProvider.GMAIL.value)

        if not settings.google_configured:
            raise ConfigurationError("Google OAuth credentials not configured")

        tokens = await exchange_authorization_code(
            http_client,
            GOOGLE_TOKEN_URL,
            settings.google_client_id,
            settings.google_client_secret,
            code,
            settings.gmail_redirect_uri,
        )
        email = await gmail.get_profile_email(http_client, tokens["access_token"])

        await _store_oauth_account(supabase, state_row["user_id"], EmailProvider.GMAIL, email, tokens)

        logger.info(f"✅ [GMAIL_CALLBACK] Gmail connected: {sanitize_for_logging(email)}")
        return _redirect(settings, {"oauth_success": "true", "provider": "gmail", "email": email})

    except IntegrationError as e:
        logger.error(f"❌ [GMAIL_CALLBACK] {e.message}")
        return _redirect(settings, {"oauth_error": e.message})
    except Exception as e:
        logger.exception("❌ [GMAIL_CALLBACK] Unexpected error")
        return _redirect(settings, {"oauth_error": str(e) or type(e).__name__})


# ============================================================================
# NYLAS
# ============================================================================

@router.post("/nylas-connect")
@limiter.limit(oauth_init_limit)
async def nylas_connect(
    request: Request,  # Required for rate limiting
    body: NylasConnectRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Connect a mailbox through Nylas hosted auth, or register an IMAP account.

    IMAP accounts are stored directly and returned; no provider call is made.
    """
    provider = body.provider.lower()
    logger.info(f"[NYLAS_CONNECT] provider={provider}, imap_config={'yes' if body.imapConfig else 'no'}")

    if provider == EmailProvider.IMAP.value:
        if not body.imapConfig or not body.email:
            raise BadRequestError("IMAP connections require email and imapConfig")

        organization_id = await resolve_organization_id(supabase, user_context)
        account = await upsert_account(supabase, {
            "user_id": user_context["user_id"],
            "organization_id": organization_id,
            "provider": EmailProvider.IMAP.value,
            "email": body.email,
            "imap_host": body.imapConfig.host,
            "imap_port": body.imapConfig.port,
            "imap_username": body.imapConfig.username,
            "imap_password": body.imapConfig.password,
            "connected": True,
            "last_sync": to_iso(utc_now()),
        })
        return {
            "success": True,
            "account": {
                "id": account.get("id"),
                "email": account.get("email"),
                "provider": account.get("provider"),
                "last_sync": account.get("last_sync"),
            },
        }

    if provider not in nylas.PROVIDER_MAP:
        raise BadRequestError("Invalid provider specified")
    if not settings.nylas_configured:
        raise ConfigurationError("NYLAS_API_KEY not configured")

    state = await issue_oauth_state(
        supabase, user_context["user_id"], OAuthProvider.NYLAS.value, settings.oauth_state_ttl_seconds
    )
    auth_url = await nylas.create_hosted_auth_url(http_client, settings, provider, state, login_hint=body.email)

    logger.info(f"[NYLAS_CONNECT] Hosted auth URL generated for user {user_context['user_id']}")
    return {"success": True, "authUrl": auth_url}


@router.get("/nylas-callback")
async def nylas_callback(
    code: Optional[str] = Query(default=None),
    grant_id: Optional[str] = Query(default=None),
    email: Optional[str] = Query(default=None),
    provider: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Complete a Nylas hosted-auth connection.

    Accepts either an authorization code (exchanged for a grant) or a
    grant_id delivered directly on the redirect.
    """
    if error:
        logger.warning(f"[NYLAS_CALLBACK] Provider returned error: {error}")
        return _redirect(settings, {"calendar_connected": "error", "message": error})

    try:
        state_row = await consume_oauth_state(supabase, state, OAuthProvider.NYLAS.value)

        if code:
            grant = await nylas.exchange_code_for_grant(http_client, settings, code)
            grant_id = grant["grant_id"]
            email = grant.get("email") or email
            provider = grant.get("provider") or provider

        if not grant_id or not email:
            raise BadRequestError("Missing grant_id or email in Nylas callback")

        account_provider = nylas.account_provider_for(provider)
        organization_id = await resolve_organization_id(supabase, {"user_id": state_row["user_id"]})

        await upsert_account(supabase, {
            "user_id": state_row["user_id"],
            "organization_id": organization_id,
            "provider": account_provider,
            "email": email,
            "nylas_grant_id": grant_id,
            "connected": True,
            "last_sync": to_iso(utc_now()),
        })

        logger.info(f"✅ [NYLAS_CALLBACK] {account_provider} connected via Nylas: {sanitize_for_logging(email)}")
        return _redirect(settings, {"calendar_connected": "success", "email": email})

    except IntegrationError as e:
        logger.error(f"❌ [NYLAS_CALLBACK] {e.message}")
        return _redirect(settings, {"calendar_connected": "error", "message": e.message})
    except Exception as e:
        logger.exception("❌ [NYLAS_CALLBACK] Unexpected error")
        return _redirect(settings, {"calendar_connected": "error", "message": str(e) or type(e).__name__})

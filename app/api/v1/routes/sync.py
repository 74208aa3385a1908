"""
Sync Routes
Manual, resumable mailbox and calendar syncs

Every sync reads one provider page. When the response carries a non-null
nextCursor, call again with {"cursor": nextCursor} to continue.
"""
import logging
import httpx
from fastapi import APIRouter, Depends
from supabase import Client

from app.core.config import Settings, get_settings
from app.core.dependencies import get_http_client, get_supabase
from app.core.security import get_current_user_context
from app.models.schemas import CalendarSyncRequest, EmailProvider, GmailSyncRequest, SyncEmailsRequest
from app.services.sync.database import get_account, resolve_organization_id
from app.services.sync.orchestration.calendar_sync import run_direct_calendar_sync, run_nylas_calendar_sync
from app.services.sync.orchestration.email_sync import run_gmail_sync, run_nylas_email_sync, run_outlook_sync

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


@router.post("/azure-sync-emails")
async def azure_sync_emails(
    body: SyncEmailsRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Sync one page of an Outlook mailbox via Microsoft Graph."""
    account = await get_account(supabase, user_context["user_id"], body.accountId, EmailProvider.OUTLOOK)
    organization_id = await resolve_organization_id(supabase, user_context)

    result = await run_outlook_sync(
        http_client, supabase, settings, account, organization_id,
        limit=body.limit, cursor=body.cursor
    )

    return {
        "success": True,
        "syncedCount": result["synced"],
        "message": f"Synced {result['synced']} emails",
        "nextCursor": result["next_cursor"],
    }


@router.post("/gmail-sync")
async def gmail_sync(
    body: GmailSyncRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Sync one page of a Gmail mailbox (inbox and sent)."""
    account = await get_account(supabase, user_context["user_id"], body.accountId, EmailProvider.GMAIL)
    organization_id = await resolve_organization_id(supabase, user_context)

    result = await run_gmail_sync(
        http_client, supabase, settings, account, organization_id,
        max_results=body.maxResults, cursor=body.cursor
    )

    return {
        "success": True,
        "synced": result["synced"],
        "total": result["total"],
        "nextCursor": result["next_cursor"],
    }


@router.post("/nylas-sync-emails")
async def nylas_sync_emails(
    body: SyncEmailsRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Sync one page of messages for a Nylas-wrapped (or IMAP) account."""
    account = await get_account(supabase, user_context["user_id"], body.accountId)
    organization_id = await resolve_organization_id(supabase, user_context)

    result = await run_nylas_email_sync(
        http_client, supabase, settings, account, organization_id,
        limit=body.limit, cursor=body.cursor
    )

    return {
        "success": True,
        "syncedCount": result["synced"],
        "lastSync": result["last_sync"],
        "nextCursor": result["next_cursor"],
    }


@router.post("/nylas-sync-calendar")
async def nylas_sync_calendar(
    body: CalendarSyncRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Sync the primary calendar window into appointments."""
    account = await get_account(supabase, user_context["user_id"], body.accountId)
    organization_id = await resolve_organization_id(supabase, user_context)

    result = await run_nylas_calendar_sync(http_client, supabase, settings, account, organization_id)

    return {
        "success": True,
        "syncedCount": result["synced"],
        "calendarsCount": result["calendars_count"],
        "lastSync": result["last_sync"],
    }


@router.post("/calendar-sync")
async def calendar_sync(
    body: CalendarSyncRequest,
    user_context: dict = Depends(get_current_user_context),
    settings: Settings = Depends(get_settings),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Sync the calendar window of an Outlook or Gmail account connected by OAuth."""
    account = await get_account(supabase, user_context["user_id"], body.accountId)
    organization_id = await resolve_organization_id(supabase, user_context)

    result = await run_direct_calendar_sync(http_client, supabase, settings, account, organization_id)

    return {
        "success": True,
        "syncedCount": result["synced"],
        "calendarsCount": result["calendars_count"],
        "lastSync": result["last_sync"],
    }

"""
Email sync orchestration engine
Coordinates Outlook (Graph), Gmail and Nylas message syncs

Each run reads exactly one provider page, upserts it, stamps last_sync and
hands back the provider cursor so the caller can resume with the next page.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from supabase import Client

from app.core.config import Settings
from app.core.errors import BadRequestError, IntegrationError
from app.models.schemas import Account, EmailProvider
from app.services.sync.database import mark_synced
from app.services.sync.oauth import ensure_fresh_access_token
from app.services.sync.persistence import upsert_messages
from app.services.sync.providers import gmail, microsoft_graph, nylas

logger = logging.getLogger(__name__)

Normalizer = Callable[[Dict[str, Any], Account, str], Dict[str, Any]]


def normalize_batch(
    raw_records: Iterable[Dict[str, Any]],
    normalizer: Normalizer,
    account: Account,
    organization_id: str
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Normalize raw provider records, skipping the ones that fail to parse.

    Any exception raised by the normalizer for one record counts that
    record as skipped; the rest of the batch continues.

    Returns:
        (rows, number of records skipped)
    """
    rows = []
    skipped = 0
    for record in raw_records:
        try:
            rows.append(normalizer(record, account, organization_id))
        except Exception as e:
            skipped += 1
            record_id = record.get("id") if isinstance(record, dict) else None
            logger.warning(f"⏭️  Skipping unparseable {account.provider.value} record {record_id}: {e}")
    return rows, skipped


def _summary(total: int, written: int, failed: int, next_cursor: Optional[str], last_sync: str) -> Dict[str, Any]:
    return {
        "total": total,
        "synced": written,
        "failed": failed,
        "next_cursor": next_cursor,
        "last_sync": last_sync,
    }


# ============================================================================
# OUTLOOK SYNC
# ============================================================================

async def run_outlook_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    account: Account,
    organization_id: str,
    limit: Optional[int] = None,
    cursor: Optional[str] = None
) -> Dict[str, Any]:
    """
    Sync one page of an Outlook mailbox via Microsoft Graph.

    Args:
        http_client: Async HTTP client instance
        supabase: Supabase client instance
        settings: Application settings (token endpoint credentials, default page size)
        account: Outlook account owned by the caller
        organization_id: Organization stamped on every row
        limit: Page size (defaults to DEFAULT_SYNC_LIMIT)
        cursor: @odata.nextLink from a previous run

    Returns:
        Dictionary with sync statistics (total, synced, failed, next_cursor, last_sync)
    """
    logger.info(f"🚀 Starting Outlook sync for account {account.id}")

    access_token = await ensure_fresh_access_token(http_client, supabase, settings, account)
    raw_messages, next_cursor = await microsoft_graph.list_messages(
        http_client, access_token, limit or settings.default_sync_limit, cursor
    )

    rows, skipped = normalize_batch(raw_messages, microsoft_graph.normalize_message, account, organization_id)
    result = await upsert_messages(supabase, rows)
    last_sync = await mark_synced(supabase, account.id)

    logger.info(f"✅ Outlook sync complete: {result.written}/{len(raw_messages)} emails for account {account.id}")
    return _summary(len(raw_messages), result.written, skipped + result.failed, next_cursor, last_sync)


# ============================================================================
# GMAIL SYNC
# ============================================================================

async def run_gmail_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    account: Account,
    organization_id: str,
    max_results: Optional[int] = None,
    cursor: Optional[str] = None
) -> Dict[str, Any]:
    """
    Sync one page of a Gmail mailbox.

    Lists message ids, then fetches each message in full one at a time.
    A message whose fetch or parse fails is logged and skipped.

    Returns:
        Dictionary with sync statistics (total, synced, failed, next_cursor, last_sync)
    """
    logger.info(f"🚀 Starting Gmail sync for account {account.id}")

    access_token = await ensure_fresh_access_token(http_client, supabase, settings, account)
    message_ids, next_cursor = await gmail.list_message_ids(
        http_client, access_token, max_results or settings.default_sync_limit, cursor
    )

    full_messages = []
    fetch_failed = 0
    for message_id in message_ids:
        try:
            full_messages.append(await gmail.get_message(http_client, access_token, message_id))
        except (IntegrationError, httpx.HTTPError, ValueError) as e:
            fetch_failed += 1
            logger.warning(f"⏭️  Skipping Gmail message {message_id}: {e}")

    rows, skipped = normalize_batch(full_messages, gmail.parse_gmail_message, account, organization_id)
    result = await upsert_messages(supabase, rows)
    last_sync = await mark_synced(supabase, account.id)

    logger.info(f"✅ Gmail sync complete: {result.written}/{len(message_ids)} emails for account {account.id}")
    return _summary(len(message_ids), result.written, fetch_failed + skipped + result.failed, next_cursor, last_sync)


# ============================================================================
# NYLAS SYNC
# ============================================================================

async def run_nylas_email_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    settings: Settings,
    account: Account,
    organization_id: str,
    limit: Optional[int] = None,
    cursor: Optional[str] = None
) -> Dict[str, Any]:
    """
    Sync one page of messages for a Nylas-wrapped account.

    IMAP accounts are stored but not fetched; they report zero messages.

    Raises:
        BadRequestError: account is neither IMAP nor Nylas-wrapped
    """
    if account.provider == EmailProvider.IMAP:
        logger.info(f"IMAP account {account.id}: message fetching not supported, reporting 0")
        last_sync = await mark_synced(supabase, account.id)
        return _summary(0, 0, 0, None, last_sync)

    if not account.is_nylas:
        raise BadRequestError("Email account not properly configured")

    logger.info(f"🚀 Starting Nylas email sync for account {account.id}")

    raw_messages, next_cursor = await nylas.list_messages(
        http_client, settings, account.nylas_grant_id, limit or settings.default_sync_limit, cursor
    )

    rows, skipped = normalize_batch(raw_messages, nylas.normalize_message, account, organization_id)
    result = await upsert_messages(supabase, rows)
    last_sync = await mark_synced(supabase, account.id)

    logger.info(f"✅ Nylas email sync complete: {result.written}/{len(raw_messages)} emails for account {account.id}")
    return _summary(len(raw_messages), result.written, skipped + result.failed, next_cursor, last_sync)

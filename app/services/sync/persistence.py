"""
Sync persistence helpers
Writes normalized rows into the shared emails / appointments tables

Every write is a single atomic upsert keyed on the provider id, so repeated
or overlapping syncs never duplicate rows. Batches are not transactional:
a failed record is logged and counted, and the loop moves on.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from supabase import Client

from app.core.errors import BadRequestError
from app.models.schemas import Account, MessageFolder
from app.services.sync.canonical import to_iso, utc_now

logger = logging.getLogger(__name__)

EMAILS_TABLE = "emails"
APPOINTMENTS_TABLE = "appointments"

EMAIL_CONFLICT_KEY = "account_id,message_id"
APPOINTMENT_CONFLICT_KEY = "calendar_event_id"


@dataclass
class UpsertResult:
    written: int = 0
    failed: int = 0

    def add(self, other: "UpsertResult") -> "UpsertResult":
        return UpsertResult(self.written + other.written, self.failed + other.failed)


def _upsert_rows(
    supabase: Client,
    table: str,
    rows: Iterable[Dict[str, Any]],
    on_conflict: str,
    key: str
) -> UpsertResult:
    result = UpsertResult()

    for row in rows:
        try:
            supabase.table(table).upsert(row, on_conflict=on_conflict).execute()
            result.written += 1
        except Exception as e:
            result.failed += 1
            logger.error(f"❌ Failed to upsert {table} row {row.get(key)}: {e}")

    if result.failed:
        logger.warning(f"⚠️  {table}: {result.written} written, {result.failed} failed")
    else:
        logger.info(f"💾 {table}: {result.written} written")

    return result


# ============================================================================
# EMAILS
# ============================================================================

async def upsert_messages(supabase: Client, rows: Iterable[Dict[str, Any]]) -> UpsertResult:
    """Insert-or-update each message on (account_id, message_id)."""
    return _upsert_rows(supabase, EMAILS_TABLE, rows, EMAIL_CONFLICT_KEY, "message_id")


async def delete_message(supabase: Client, account_id: str, message_id: str):
    supabase.table(EMAILS_TABLE).delete().eq("account_id", account_id).eq("message_id", message_id).execute()
    logger.info(f"🗑️  Deleted email {message_id} for account {account_id}")


async def record_sent_message(
    supabase: Client,
    account: Account,
    organization_id: Optional[str],
    message_id: str,
    to: List[str],
    subject: str,
    body_html: str,
    cc: Optional[List[str]] = None,
    bcc: Optional[List[str]] = None
) -> bool:
    """
    Store an outgoing message in the sent folder.

    The provider has already accepted the message, so a storage failure is
    logged and reported as False rather than raised.
    """
    row = {
        "account_id": account.id,
        "organization_id": organization_id,
        "user_id": account.user_id,
        "message_id": message_id,
        "thread_id": None,
        "subject": subject,
        "from_email": account.email,
        "to_emails": to,
        "cc_emails": cc or [],
        "bcc_emails": bcc or [],
        "body_text": None,
        "body_html": body_html,
        "folder": MessageFolder.SENT.value,
        "is_read": True,
        "is_starred": False,
        "has_attachments": False,
        "received_at": to_iso(utc_now()),
    }

    try:
        supabase.table(EMAILS_TABLE).upsert(row, on_conflict=EMAIL_CONFLICT_KEY).execute()
        return True
    except Exception as e:
        logger.warning(f"⚠️  Email sent but failed to store sent copy {message_id}: {e}")
        return False


# ============================================================================
# APPOINTMENTS
# ============================================================================

async def upsert_appointments(supabase: Client, rows: Iterable[Dict[str, Any]]) -> UpsertResult:
    """Insert-or-update each appointment on calendar_event_id."""
    return _upsert_rows(supabase, APPOINTMENTS_TABLE, rows, APPOINTMENT_CONFLICT_KEY, "calendar_event_id")


async def store_appointment(supabase: Client, row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Upsert a single appointment and return the stored row.

    Raises:
        BadRequestError: nothing was returned by the write
    """
    result = supabase.table(APPOINTMENTS_TABLE).upsert(row, on_conflict=APPOINTMENT_CONFLICT_KEY).execute()
    if not result.data:
        raise BadRequestError("Failed to store appointment")
    return result.data[0]


async def delete_appointment(supabase: Client, account_id: str, calendar_event_id: str):
    (
        supabase.table(APPOINTMENTS_TABLE)
        .delete()
        .eq("account_id", account_id)
        .eq("calendar_event_id", calendar_event_id)
        .execute()
    )
    logger.info(f"🗑️  Deleted appointment {calendar_event_id} for account {account_id}")

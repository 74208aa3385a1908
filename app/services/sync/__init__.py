"""
Mail & Calendar Sync System
Token lifecycle, provider adapters and upserts for Outlook, Gmail and Nylas
"""
from app.services.sync.database import consume_oauth_state, get_account, issue_oauth_state
from app.services.sync.oauth import ensure_fresh_access_token, token_is_expired
from app.services.sync.orchestration.calendar_sync import run_nylas_calendar_sync
from app.services.sync.orchestration.email_sync import run_gmail_sync, run_nylas_email_sync, run_outlook_sync
from app.services.sync.persistence import UpsertResult, upsert_appointments, upsert_messages

__all__ = [
    "consume_oauth_state",
    "get_account",
    "issue_oauth_state",
    "ensure_fresh_access_token",
    "token_is_expired",
    "run_nylas_calendar_sync",
    "run_gmail_sync",
    "run_nylas_email_sync",
    "run_outlook_sync",
    "UpsertResult",
    "upsert_appointments",
    "upsert_messages",
]

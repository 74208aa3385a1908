"""
Credential Store
Supabase access for connected accounts, OAuth states and organization lookup

Tables:
- email_accounts: one row per connected mailbox/calendar (unique on user_id,email)
- oauth_states: short-lived CSRF correlation rows, consumed exactly once
- profiles: maps auth users to their organization
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from supabase import Client

from app.core.errors import AccountNotFoundError, BadRequestError, InvalidStateError
from app.models.schemas import Account, EmailProvider
from app.services.sync.canonical import parse_timestamp, to_iso, utc_now

logger = logging.getLogger(__name__)

ACCOUNTS_TABLE = "email_accounts"
OAUTH_STATES_TABLE = "oauth_states"
PROFILES_TABLE = "profiles"


# ============================================================================
# ACCOUNTS
# ============================================================================

async def get_account(
    supabase: Client,
    user_id: str,
    account_id: str,
    provider: Optional[EmailProvider] = None
) -> Account:
    """
    Load an account owned by the caller.

    Args:
        supabase: Supabase client
        user_id: Authenticated user (accounts are never shared across users)
        account_id: email_accounts.id
        provider: If given, the account must be of this provider

    Raises:
        BadRequestError: accountId missing, or provider mismatch
        AccountNotFoundError: no such account for this user
    """
    if not account_id:
        raise BadRequestError("Missing accountId")

    result = (
        supabase.table(ACCOUNTS_TABLE)
        .select("*")
        .eq("id", account_id)
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )

    if not result.data:
        logger.warning(f"Account {account_id} not found for user {user_id}")
        raise AccountNotFoundError("Email account not found")

    account = Account(**result.data[0])

    if provider is not None and account.provider != provider:
        raise BadRequestError(f"This function only works with {provider.value} accounts")

    return account


async def find_account_by_grant(supabase: Client, grant_id: str) -> Optional[Account]:
    """Look up the account wrapping a Nylas grant (webhook deltas carry only the grant)."""
    if not grant_id:
        return None

    result = (
        supabase.table(ACCOUNTS_TABLE)
        .select("*")
        .eq("nylas_grant_id", grant_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return Account(**result.data[0])


async def upsert_account(supabase: Client, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert or replace an account keyed on (user_id, email).

    Reconnecting the same mailbox replaces its tokens instead of creating a
    second row.

    Returns:
        The stored row
    """
    if not payload.get("user_id") or not payload.get("email"):
        raise BadRequestError("user_id and email are required to store an account")

    logger.info(
        f"[UPSERT_ACCOUNT] provider={payload.get('provider')}, user_id={payload.get('user_id')}, "
        f"nylas={'yes' if payload.get('nylas_grant_id') else 'no'}"
    )

    result = (
        supabase.table(ACCOUNTS_TABLE)
        .upsert(payload, on_conflict="user_id,email")
        .execute()
    )

    if not result.data:
        raise BadRequestError("Failed to save email account")

    logger.info(f"✅ [UPSERT_ACCOUNT] Stored account {result.data[0].get('id')}")
    return result.data[0]


async def update_tokens(
    supabase: Client,
    account_id: str,
    access_token: str,
    refresh_token: Optional[str],
    token_expiry: datetime
):
    """Persist a refreshed token set."""
    update = {
        "access_token": access_token,
        "token_expiry": to_iso(token_expiry),
    }
    if refresh_token:
        update["refresh_token"] = refresh_token

    supabase.table(ACCOUNTS_TABLE).update(update).eq("id", account_id).execute()
    logger.info(f"🔑 Saved refreshed tokens for account {account_id} (expires {update['token_expiry']})")


async def mark_synced(supabase: Client, account_id: str, now: Optional[datetime] = None) -> str:
    """
    Stamp last_sync on the account.

    Returns:
        The ISO timestamp written (echoed back to API callers as lastSync)
    """
    synced_at = to_iso(now or utc_now())
    supabase.table(ACCOUNTS_TABLE).update({"last_sync": synced_at}).eq("id", account_id).execute()
    return synced_at


# ============================================================================
# ORGANIZATION
# ============================================================================

async def resolve_organization_id(supabase: Client, user_context: Dict[str, Any]) -> str:
    """
    Resolve the caller's organization.

    profiles.organization_id wins; user_metadata.organizationId is the
    fallback for users whose profile row is missing or incomplete.

    Raises:
        BadRequestError: neither source has an organization
    """
    user_id = user_context["user_id"]

    result = (
        supabase.table(PROFILES_TABLE)
        .select("organization_id")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    if result.data and result.data[0].get("organization_id"):
        return result.data[0]["organization_id"]

    metadata_org = (user_context.get("user_metadata") or {}).get("organizationId")
    if metadata_org:
        logger.info(f"Using user_metadata organization for user {user_id}")
        return metadata_org

    raise BadRequestError("Could not determine organization for user")


# ============================================================================
# OAUTH STATES
# ============================================================================

async def issue_oauth_state(
    supabase: Client,
    user_id: str,
    provider: str,
    ttl_seconds: int,
    now: Optional[datetime] = None
) -> str:
    """
    Create a single-use OAuth state bound to the initiating user.

    Returns:
        The random state token to embed in the authorization URL
    """
    now = now or utc_now()
    state = secrets.token_urlsafe(32)

    supabase.table(OAUTH_STATES_TABLE).insert({
        "state": state,
        "user_id": user_id,
        "provider": provider,
        "created_at": to_iso(now),
        "expires_at": to_iso(now + timedelta(seconds=ttl_seconds)),
    }).execute()

    logger.info(f"Issued {provider} OAuth state for user {user_id}")
    return state


async def consume_oauth_state(
    supabase: Client,
    state: Optional[str],
    provider: str,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Atomically delete and return the matching OAuth state.

    The delete is the lookup, so two callbacks racing on the same state
    cannot both succeed. Expired rows are deleted and then rejected.

    Returns:
        The consumed row (user_id, provider, ...)

    Raises:
        InvalidStateError: missing, unknown, replayed or expired state
    """
    if not state:
        raise InvalidStateError("Missing state parameter")

    result = (
        supabase.table(OAUTH_STATES_TABLE)
        .delete()
        .eq("state", state)
        .eq("provider", provider)
        .execute()
    )

    if not result.data:
        logger.warning(f"⚠️  Unknown or already used {provider} OAuth state")
        raise InvalidStateError("Invalid or expired state parameter")

    row = result.data[0]
    expires_at = parse_timestamp(row.get("expires_at"))
    if expires_at is None or expires_at <= (now or utc_now()):
        logger.warning(f"⚠️  Expired {provider} OAuth state for user {row.get('user_id')}")
        raise InvalidStateError("OAuth state expired, please try connecting again")

    return row

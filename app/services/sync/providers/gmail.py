"""
Gmail API helpers
Handles message listing, full message fetches, profile lookup and parsing
"""
import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.core.errors import BadRequestError, raise_for_upstream
from app.models.schemas import Account, MessageFolder
from app.services.sync.canonical import extract_address, from_epoch_millis, split_address_list, to_iso

logger = logging.getLogger(__name__)

GMAIL_API_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
SYNC_QUERY = "in:inbox OR in:sent"


def _auth_headers(access_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


# ============================================================================
# GMAIL API
# ============================================================================

async def list_message_ids(
    http_client: httpx.AsyncClient,
    access_token: str,
    max_results: int,
    cursor: Optional[str] = None
) -> Tuple[List[str], Optional[str]]:
    """
    List one page of message ids from inbox and sent.

    Returns:
        (message ids, nextPageToken or None)
    """
    params: Dict[str, Any] = {"maxResults": max_results, "q": SYNC_QUERY}
    if cursor:
        params["pageToken"] = cursor

    response = await http_client.get(
        f"{GMAIL_API_URL}/messages",
        headers=_auth_headers(access_token),
        params=params,
    )
    raise_for_upstream(response, "Failed to fetch messages from Gmail")

    data = response.json()
    ids = [m["id"] for m in data.get("messages", []) if m.get("id")]
    logger.info(f"📬 Gmail listed {len(ids)} messages (page token: {'yes' if cursor else 'none'})")
    return ids, data.get("nextPageToken")


async def get_message(http_client: httpx.AsyncClient, access_token: str, message_id: str) -> Dict[str, Any]:
    """Fetch one message with headers, payload and labels (format=full)."""
    response = await http_client.get(
        f"{GMAIL_API_URL}/messages/{message_id}",
        headers=_auth_headers(access_token),
        params={"format": "full"},
    )
    raise_for_upstream(response, f"Failed to fetch Gmail message {message_id}")
    return response.json()


async def get_profile_email(http_client: httpx.AsyncClient, access_token: str) -> str:
    response = await http_client.get(USERINFO_URL, headers=_auth_headers(access_token))
    raise_for_upstream(response, "Failed to get user info")

    email = response.json().get("email")
    if not email:
        raise BadRequestError("Google account has no email address")
    return email


# ============================================================================
# PARSING
# ============================================================================

def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 body data (padding is often stripped)."""
    padding = len(data) % 4
    if padding:
        data += "=" * (4 - padding)
    return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")


def _headers(payload: Dict[str, Any]) -> Dict[str, str]:
    # Header names are case-insensitive; last occurrence wins
    return {h["name"].lower(): h.get("value", "") for h in payload.get("headers", []) if h.get("name")}


def _collect_bodies(part: Dict[str, Any], bodies: Dict[str, str]):
    mime_type = part.get("mimeType", "")
    data = (part.get("body") or {}).get("data")

    if data and mime_type == "text/plain" and "text" not in bodies:
        bodies["text"] = decode_base64url(data)
    elif data and mime_type == "text/html" and "html" not in bodies:
        bodies["html"] = decode_base64url(data)

    for child in part.get("parts") or []:
        _collect_bodies(child, bodies)


def _has_attachments(part: Dict[str, Any]) -> bool:
    if part.get("filename"):
        return True
    return any(_has_attachments(child) for child in part.get("parts") or [])


def folder_from_labels(labels: List[str]) -> MessageFolder:
    if "SENT" in labels:
        return MessageFolder.SENT
    if "TRASH" in labels:
        return MessageFolder.TRASH
    if "SPAM" in labels:
        return MessageFolder.SPAM
    return MessageFolder.INBOX


def parse_gmail_message(
    gmail_message: Dict[str, Any],
    account: Account,
    organization_id: str
) -> Dict[str, Any]:
    """
    Parse a format=full Gmail message into an emails row.

    Raises:
        ValueError/KeyError: id, payload or internalDate missing or malformed
    """
    message_id = gmail_message["id"]
    payload = gmail_message["payload"]
    labels = gmail_message.get("labelIds") or []
    headers = _headers(payload)

    bodies: Dict[str, str] = {}
    _collect_bodies(payload, bodies)

    return {
        "account_id": account.id,
        "organization_id": organization_id,
        "user_id": account.user_id,
        "message_id": message_id,
        "thread_id": gmail_message.get("threadId"),
        "subject": headers.get("subject") or "(No Subject)",
        "from_email": extract_address(headers.get("from")),
        "to_emails": split_address_list(headers.get("to")),
        "cc_emails": split_address_list(headers.get("cc")),
        "bcc_emails": split_address_list(headers.get("bcc")),
        "body_text": bodies.get("text") or gmail_message.get("snippet", ""),
        "body_html": bodies.get("html"),
        "folder": folder_from_labels(labels).value,
        "is_read": "UNREAD" not in labels,
        "is_starred": "STARRED" in labels,
        "has_attachments": _has_attachments(payload),
        "received_at": to_iso(from_epoch_millis(gmail_message["internalDate"])),
    }

"""
Connector Schemas
Models for account connection requests and Nylas webhook events
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict

from .accounts import ImapConfig


class NylasConnectRequest(BaseModel):
    """
    Body for /nylas-connect.

    provider is one of gmail | outlook | icloud (Nylas hosted auth) or imap,
    in which case imapConfig is required and the account is stored directly.
    """
    provider: str
    email: Optional[str] = None
    imapConfig: Optional[ImapConfig] = None


class NylasDelta(BaseModel):
    """
    One change notification.

    Legacy payloads wrap these in {"deltas": [...]}; v3 payloads send one
    notification per request as {"type", "data": {"object": {...}}}. Both
    are normalized into this shape by the webhook route.
    """

    model_config = ConfigDict(extra="allow")

    type: str  # e.g. "message.created", "event.deleted"
    object: Optional[str] = None  # "message" | "event"
    object_data: Dict[str, Any] = {}


class NylasWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    deltas: List[NylasDelta] = []

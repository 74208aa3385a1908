"""
Account Schemas
Connected mailbox/calendar accounts and the enumerations shared by sync rows
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class EmailProvider(str, Enum):
    OUTLOOK = "outlook"
    GMAIL = "gmail"
    IMAP = "imap"
    ICLOUD = "icloud"


class OAuthProvider(str, Enum):
    """Provider tag stored on oauth_states rows."""
    AZURE = "azure"
    GMAIL = "gmail"
    NYLAS = "nylas"


class MessageFolder(str, Enum):
    INBOX = "inbox"
    SENT = "sent"
    TRASH = "trash"
    SPAM = "spam"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class Account(BaseModel):
    """
    Row of the email_accounts table.

    Direct OAuth accounts (Outlook, Gmail) carry access/refresh tokens and a
    token_expiry. Nylas-wrapped accounts carry a nylas_grant_id instead and
    are never refreshed by us.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    organization_id: Optional[str] = None
    provider: EmailProvider
    email: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    connected: bool = True
    nylas_grant_id: Optional[str] = None
    imap_host: Optional[str] = None
    imap_port: Optional[int] = None
    imap_username: Optional[str] = None

    @property
    def is_nylas(self) -> bool:
        return bool(self.nylas_grant_id)


class ImapConfig(BaseModel):
    host: str
    port: int = 993
    username: str
    password: str

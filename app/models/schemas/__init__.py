"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Account schemas
from .accounts import (
    Account,
    AppointmentStatus,
    EmailProvider,
    ImapConfig,
    MessageFolder,
    OAuthProvider,
)

# Connector schemas (connect, webhooks)
from .connector import NylasConnectRequest, NylasDelta, NylasWebhook

# Email / calendar action schemas
from .email import CreateEventRequest, SendEmailRequest, as_address_list

# Sync schemas
from .sync import CalendarSyncRequest, GmailSyncRequest, SyncEmailsRequest

__all__ = [
    # Accounts
    "Account",
    "AppointmentStatus",
    "EmailProvider",
    "ImapConfig",
    "MessageFolder",
    "OAuthProvider",
    # Connector
    "NylasConnectRequest",
    "NylasDelta",
    "NylasWebhook",
    # Actions
    "CreateEventRequest",
    "SendEmailRequest",
    "as_address_list",
    # Sync
    "CalendarSyncRequest",
    "GmailSyncRequest",
    "SyncEmailsRequest",
]

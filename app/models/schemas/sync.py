"""
Sync Schemas
Request bodies for the email/calendar sync endpoints
"""
from typing import Optional
from pydantic import BaseModel, Field


class SyncEmailsRequest(BaseModel):
    """
    Body for /azure-sync-emails and /nylas-sync-emails.

    cursor is the nextCursor returned by a previous call; omit it to start
    from the newest page.
    """
    accountId: str
    limit: Optional[int] = Field(default=None, gt=0, le=500)
    cursor: Optional[str] = None


class GmailSyncRequest(BaseModel):
    """Body for /gmail-sync."""
    accountId: str
    maxResults: Optional[int] = Field(default=None, gt=0, le=500)
    cursor: Optional[str] = None


class CalendarSyncRequest(BaseModel):
    """Body for /nylas-sync-calendar and /calendar-sync."""
    accountId: str

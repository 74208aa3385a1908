"""
Email & Calendar Action Schemas
Request bodies for sending mail and creating calendar events
"""
from typing import List, Optional, Union
from pydantic import BaseModel, Field


class SendEmailRequest(BaseModel):
    """
    Body for /azure-send-email and /nylas-send-email.

    to/cc/bcc accept a single address or a list of addresses.
    body is sent as HTML.
    """
    accountId: str
    to: Union[str, List[str]]
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    cc: Optional[Union[str, List[str]]] = None
    bcc: Optional[Union[str, List[str]]] = None


class CreateEventRequest(BaseModel):
    """
    Body for /nylas-create-event. Times are ISO-8601 strings.

    calendarId defaults to the account's primary calendar.
    """
    accountId: str
    title: str = Field(min_length=1)
    startTime: str
    endTime: str
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[List[str]] = None
    calendarId: Optional[str] = None


def as_address_list(value: Optional[Union[str, List[str]]]) -> List[str]:
    """Normalize a to/cc/bcc field into a list of non-empty addresses."""
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    return [a.strip() for a in value if a and a.strip()]

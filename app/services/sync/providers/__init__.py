"""
Data Source Providers
Request/transform layer for external APIs (Microsoft Graph, Gmail, Google Calendar, Nylas)
"""
from app.services.sync.providers.gmail import parse_gmail_message
from app.services.sync.providers.google_calendar import normalize_event as normalize_google_event
from app.services.sync.providers.microsoft_graph import (
    normalize_event as normalize_graph_event,
    normalize_message as normalize_graph_message,
)
from app.services.sync.providers.nylas import (
    normalize_event as normalize_nylas_event,
    normalize_message as normalize_nylas_message,
)

__all__ = [
    "parse_gmail_message",
    "normalize_google_event",
    "normalize_graph_event",
    "normalize_graph_message",
    "normalize_nylas_message",
    "normalize_nylas_event",
]

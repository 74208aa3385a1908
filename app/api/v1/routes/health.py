"""
Health Check Routes
System status and diagnostics
"""
import logging
from fastapi import APIRouter, Depends

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get("/")
async def root(settings: Settings = Depends(get_settings)):
    """Root endpoint with API info and provider status."""
    return {
        "name": "ProSpaces Mail & Calendar Sync",
        "version": "1.0.0",
        "providers": {
            "outlook": settings.azure_configured,
            "gmail": settings.google_configured,
            "nylas": settings.nylas_configured,
        },
        "endpoints": {
            "health": "/health",
            "oauth": ["/azure-oauth-init", "/gmail-oauth-init", "/nylas-connect"],
            "sync": ["/azure-sync-emails", "/gmail-sync", "/nylas-sync-emails", "/nylas-sync-calendar", "/calendar-sync"],
            "send": ["/azure-send-email", "/nylas-send-email", "/nylas-create-event"],
            "webhook": "/nylas-webhook",
        }
    }

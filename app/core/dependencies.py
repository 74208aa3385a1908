"""
Dependency Injection
Provides reusable dependencies for FastAPI routes

DEPENDENCIES:
- Settings (validated once, see app.core.config)
- Supabase client (database + auth, service role)
- HTTP client (for provider APIs)
"""
import logging
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Depends
from supabase import create_client, Client

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

_supabase_client: Optional[Client] = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

def create_supabase_client(settings: Settings) -> Client:
    """Create a service-role Supabase client (used by the API and the worker)."""
    return create_client(settings.supabase_url, settings.supabase_service_key)


async def initialize_clients(settings: Settings):
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client

    logger.info("Initializing global clients...")

    try:
        _supabase_client = create_supabase_client(settings)
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client

    logger.info("Shutting down global clients...")

    # Supabase doesn't need explicit cleanup
    _supabase_client = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Usage:
        @router.post("/example")
        async def example(supabase: Client = Depends(get_supabase)):
            result = supabase.table("email_accounts").select("*").execute()
            return result.data

    Returns:
        Supabase client (service role)
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


async def get_http_client(
    settings: Settings = Depends(get_settings)
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Get HTTP client for provider API calls.

    Yields:
        httpx.AsyncClient (closed after the request)
    """
    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        yield client

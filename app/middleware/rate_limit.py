"""
Rate Limiting Middleware
Prevents abuse of the OAuth entry points using slowapi

RATE LIMITS:
- OAuth init / connect: OAUTH_INIT_RATE_LIMIT per IP (default 20/hour)
- Sync, send and webhook routes are not limited here

Callbacks are not limited: the provider redirects the browser there once per
issued state, and the state itself is single-use.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from app.core.config import get_settings

logger = logging.getLogger(__name__)


def rate_limit_key_func(request: Request) -> str:
    """Key requests by client IP."""
    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


def oauth_init_limit() -> str:
    return get_settings().oauth_init_rate_limit


limiter = Limiter(
    key_func=rate_limit_key_func,
    enabled=get_settings().rate_limit_enabled,
    storage_uri="memory://",  # In-memory storage (single instance)
)

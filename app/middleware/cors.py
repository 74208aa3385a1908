"""
CORS Configuration
Cross-Origin Resource Sharing settings for the CRM frontend

SECURITY:
- CORS_ALLOWED_ORIGINS="*" allows any origin without credentials
- Otherwise only the listed origins (plus APP_URL) are allowed, with credentials
- X-User-Token is an allowed header (dual-header auth)
"""
import logging
from fastapi.middleware.cors import CORSMiddleware as FastAPICORSMiddleware

from app.core.config import Settings

logger = logging.getLogger(__name__)

ALLOWED_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-user-token",
    "x-nylas-signature",
]


def get_cors_middleware(settings: Settings):
    """
    Returns the CORS middleware class and its options.

    Usage:
        middleware_class, options = get_cors_middleware(settings)
        app.add_middleware(middleware_class, **options)
    """
    origins = [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]

    if not origins or "*" in origins:
        logger.info("🌐 CORS allowing all origins (*)")
        return FastAPICORSMiddleware, {
            "allow_origins": ["*"],
            "allow_credentials": False,  # Must be False when using "*"
            "allow_methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ALLOWED_HEADERS,
            "max_age": 600,
        }

    if settings.app_url and settings.app_url not in origins:
        origins.append(settings.app_url)

    logger.info(f"🌐 CORS allowed origins: {origins}")
    return FastAPICORSMiddleware, {
        "allow_origins": origins,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": ALLOWED_HEADERS,
        "max_age": 600,  # Cache preflight requests for 10 minutes
    }

"""
ProSpaces Mail & Calendar Sync
==============================
Version: 1.0.0

FastAPI application entry point.

Architecture:
- app/core/: Configuration, logging, errors, dependencies, security
- app/middleware/: Error handling, request logging, CORS, rate limiting
- app/models/: Pydantic schemas
- app/services/sync/: Credential store, token lifecycle, provider adapters, upserts
- app/services/jobs/: Dramatiq broker and webhook delta tasks
- app/api/v1/routes/: API endpoints
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

# Startup error handling
try:
    # Import core components
    from app.core.config import get_settings
    from app.core.logging_config import configure_logging
    from app.core.dependencies import initialize_clients, shutdown_clients
    from app.core.errors import IntegrationError

    # Import middleware
    from app.middleware.error_handler import (
        ErrorHandlerMiddleware,
        integration_error_handler,
        validation_error_handler,
    )
    from app.middleware.logging import RequestLoggingMiddleware
    from app.middleware.cors import get_cors_middleware

    # Import routes
    from app.api.v1.routes.health import router as health_router
    from app.api.v1.routes.oauth import router as oauth_router
    from app.api.v1.routes.sync import router as sync_router
    from app.api.v1.routes.send import router as send_router
    from app.api.v1.routes.webhook import router as webhook_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

settings = get_settings()

configure_logging(settings)
logger = logging.getLogger(__name__)

# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,  # 10% of requests for performance monitoring
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry error tracking initialized")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# ============================================================================
# LIFECYCLE MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    # Startup
    logger.info("=" * 80)
    logger.info("Starting ProSpaces Mail & Calendar Sync")
    logger.info("=" * 80)
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Port: {settings.port}")
    logger.info(f"App URL: {settings.app_url}")

    await initialize_clients(settings)

    logger.info("=" * 80)
    logger.info("✅ Sync service started successfully")
    logger.info("=" * 80)

    yield

    # Shutdown
    logger.info("Shutting down sync service...")
    await shutdown_clients()
    logger.info("✅ Shutdown complete")


# ============================================================================
# APP INITIALIZATION
# ============================================================================

app = FastAPI(
    title="ProSpaces Sync API",
    description="OAuth connections and email/calendar sync for Outlook, Gmail and Nylas",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)

app.add_exception_handler(IntegrationError, integration_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# ============================================================================
# RATE LIMITING
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.middleware.rate_limit import limiter

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
logger.info(f"✅ Rate limiting {'enabled' if settings.rate_limit_enabled else 'disabled'}")

# ============================================================================
# MIDDLEWARE (order matters!)
# ============================================================================

cors_middleware, cors_config = get_cors_middleware(settings)
app.add_middleware(cors_middleware, **cors_config)

# Request logging
app.add_middleware(RequestLoggingMiddleware)

# Global error handler (must be last)
app.add_middleware(ErrorHandlerMiddleware)

# ============================================================================
# ROUTES
# ============================================================================

app.include_router(health_router)
app.include_router(oauth_router)
app.include_router(sync_router)
app.include_router(send_router)
app.include_router(webhook_router)

logger.info("✅ All routes registered")

# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )

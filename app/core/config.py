"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase project for auth + accounts + mail + calendar
- Provider OAuth credentials (Azure, Google, Nylas) live here, not in tables
- Settings are validated once at startup and injected via get_settings()

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
"""
from functools import lru_cache
from typing import List, Optional
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Unified application settings.
    Validates all environment variables at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    app_url: str = Field(default="http://localhost:5173", description="Frontend URL that OAuth callbacks redirect back to")

    # ============================================================================
    # LOGGING
    # ============================================================================

    log_level: str = Field(default="INFO", description="Root log level")
    suppressed_log_patterns: List[str] = Field(
        default_factory=list,
        description="Log messages containing any of these substrings are dropped"
    )
    quiet_loggers: List[str] = Field(
        default_factory=lambda: ["httpx", "httpcore", "hpack"],
        description="Third-party loggers raised to WARNING"
    )

    # ============================================================================
    # DATABASE (Supabase)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_service_key: str = Field(description="Supabase service role key (backend uses this)")

    # ============================================================================
    # OAUTH - MICROSOFT (Azure AD / Graph)
    # ============================================================================

    azure_client_id: Optional[str] = Field(default=None, description="Azure app registration client ID")
    azure_client_secret: Optional[str] = Field(default=None, description="Azure app registration client secret")
    azure_redirect_uri: Optional[str] = Field(default=None, description="Redirect URI registered for /azure-oauth-callback")
    azure_tenant: str = Field(default="common", description="Azure AD tenant segment for the authority URL")

    # ============================================================================
    # OAUTH - GOOGLE (Gmail)
    # ============================================================================

    google_client_id: Optional[str] = Field(default=None, description="Google OAuth client ID")
    google_client_secret: Optional[str] = Field(default=None, description="Google OAuth client secret")
    gmail_redirect_uri: Optional[str] = Field(default=None, description="Redirect URI registered for /gmail-oauth-callback")

    # ============================================================================
    # NYLAS (Hosted Auth)
    # ============================================================================

    nylas_api_key: Optional[str] = Field(default=None, description="Nylas v3 API key")
    nylas_client_id: Optional[str] = Field(default=None, description="Nylas application client ID (defaults to API key)")
    nylas_api_uri: str = Field(default="https://api.us.nylas.com", description="Nylas API region base URL")
    nylas_callback_uri: Optional[str] = Field(default=None, description="Redirect URI for /nylas-callback")
    nylas_webhook_secret: Optional[str] = Field(default=None, description="Secret used to verify X-Nylas-Signature")

    # ============================================================================
    # SYNC BEHAVIOUR
    # ============================================================================

    oauth_state_ttl_seconds: int = Field(default=600, description="Lifetime of an issued OAuth state")
    default_sync_limit: int = Field(default=50, description="Default page size for message syncs")
    calendar_lookback_days: int = Field(default=30, description="Calendar sync window start (days ago)")
    calendar_lookahead_days: int = Field(default=90, description="Calendar sync window end (days ahead)")
    calendar_event_limit: int = Field(default=100, description="Max events fetched per calendar")
    http_timeout: float = Field(default=30.0, description="Timeout for provider HTTP calls (seconds)")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    redis_url: Optional[str] = Field(default=None, description="Redis URL for the Dramatiq broker")
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    cors_allowed_origins: str = Field(default="*", description="Comma-separated list of allowed CORS origins")
    rate_limit_enabled: bool = Field(default=True, description="Enable slowapi rate limiting")
    oauth_init_rate_limit: str = Field(default="20/hour", description="Rate limit for OAuth init/connect endpoints")

    @property
    def azure_token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.azure_tenant}/oauth2/v2.0/token"

    @property
    def azure_authorize_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.azure_tenant}/oauth2/v2.0/authorize"

    @property
    def azure_configured(self) -> bool:
        return bool(self.azure_client_id and self.azure_client_secret and self.azure_redirect_uri)

    @property
    def google_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.gmail_redirect_uri)

    @property
    def nylas_configured(self) -> bool:
        return bool(self.nylas_api_key)

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        Missing provider credentials are not fatal (a deployment may only use
        one provider) but each gap is logged once here instead of surfacing
        as a confusing error on the first request.
        """
        if self.oauth_state_ttl_seconds <= 0:
            raise ValueError("OAUTH_STATE_TTL_SECONDS must be positive")
        if self.default_sync_limit <= 0:
            raise ValueError("DEFAULT_SYNC_LIMIT must be positive")

        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")
            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.azure_configured:
            logger.warning("⚠️  Azure OAuth not configured. Outlook connections will fail.")
        if not self.google_configured:
            logger.warning("⚠️  Google OAuth not configured. Gmail connections will fail.")
        if not self.nylas_configured:
            logger.warning("⚠️  NYLAS_API_KEY not set. Nylas connections will fail.")

        logger.info("=" * 80)
        logger.info("ProSpaces Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"App URL: {self.app_url}")
        logger.info(f"Azure: {'✅ Configured' if self.azure_configured else '❌ Not configured'}")
        logger.info(f"Google: {'✅ Configured' if self.google_configured else '❌ Not configured'}")
        logger.info(f"Nylas: {'✅ Configured' if self.nylas_configured else '❌ Not configured'}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info("=" * 80)

        return self


@lru_cache
def get_settings() -> Settings:
    """
    Load settings once per process.

    Used directly at startup (main.py, worker.py) and as a FastAPI dependency
    so handlers receive the validated object instead of reading os.environ.
    """
    return Settings()

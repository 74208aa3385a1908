"""
Security and Authentication
Validates Supabase JWTs for API callers

SECURITY FEATURES:
- JWT validation via Supabase Auth (service role client)
- Dual-header auth: X-User-Token is preferred, Authorization: Bearer is the fallback
  (the app gateway may overwrite Authorization with the anon key)
- OAuth callbacks are NOT authenticated here; they rely on the single-use OAuth state
"""
import logging
from typing import Any, Dict, Optional
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client

from app.core.dependencies import get_supabase
from app.core.errors import AuthenticationError

logger = logging.getLogger(__name__)

# auto_error=False so a missing header maps to our own 401 JSON shape
bearer_scheme = HTTPBearer(auto_error=False)


def extract_token(
    credentials: Optional[HTTPAuthorizationCredentials],
    user_token: Optional[str]
) -> Optional[str]:
    """Pick the caller's JWT from X-User-Token or the bearer header."""
    if user_token:
        return user_token.strip()
    if credentials and credentials.credentials:
        return credentials.credentials
    return None


def authenticate_token(supabase: Client, token: Optional[str]) -> Dict[str, Any]:
    """
    Validate a JWT with Supabase Auth and build the user context.

    Returns:
        dict with:
        - user_id: auth user id (owner of email accounts)
        - email: user email
        - user_metadata: raw metadata (may carry organizationId)

    Raises:
        AuthenticationError: token missing or rejected
    """
    if not token:
        logger.warning("No authorization credentials provided")
        raise AuthenticationError("No authorization header")

    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"JWT validation error: {e}")
        raise AuthenticationError("Invalid user token")

    if not response or not response.user:
        logger.warning("JWT validation failed: no user returned")
        raise AuthenticationError("Invalid user token")

    user = response.user
    logger.info(f"✅ User authenticated: {sanitize_for_logging(user.email or '')}")

    return {
        "user_id": user.id,
        "email": user.email,
        "user_metadata": user.user_metadata or {},
    }


async def get_current_user_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_user_token: Optional[str] = Header(default=None, alias="X-User-Token"),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, Any]:
    """FastAPI dependency wrapping authenticate_token()."""
    return authenticate_token(supabase, extract_token(credentials, x_user_token))


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def sanitize_for_logging(text: str, max_length: int = 50) -> str:
    """
    Sanitize sensitive data for logging (prevent PII leakage).

    Example:
        "user@example.com" -> "u***@example.com"
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length] + "..."

    if "@" in text:
        parts = text.split("@")
        if len(parts) == 2:
            local, domain = parts
            masked_local = local[0] + "***" if len(local) > 1 else local
            text = f"{masked_local}@{domain}"

    return text

"""Admin authentication for the rate limit API."""

import hmac

from fastapi import HTTPException, Request

from botguard.app.core.config import settings


def get_admin_token() -> str:
    """Get the admin token from settings.

    Raises:
        HTTPException: 503 if ADMIN_TOKEN is not configured
    """
    # Normalize accidental whitespace/newline from env/secret stores.
    token = settings.admin_token.strip()
    if not token:
        raise HTTPException(
            status_code=503,
            detail="ADMIN_TOKEN is not configured; the admin API is disabled",
        )
    return token


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    Returns:
        Admin identifier if valid

    Raises:
        HTTPException: 401 if admin token is missing or invalid
    """
    expected_token = get_admin_token()
    token = get_bearer_token(request) or ""

    # Constant-time comparison; same message for missing and wrong tokens
    if not hmac.compare_digest(token, expected_token):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    return "admin"

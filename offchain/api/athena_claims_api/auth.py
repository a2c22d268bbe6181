"""
Token-based authentication for admin endpoints.

Security model:
- Claim and proof lookup endpoints are public (users call them directly)
- Admin endpoints (root updates, pause/unpause, role changes, publishing)
  include `Depends(verify_api_token)`
- If API_TOKEN is not set, admin authentication is disabled (local development only)
- Token is accepted via X-API-Key header only (no query param, prevents log/referrer leakage)
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from .config import Settings, get_settings


api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_token(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Verify the admin API token if configured.

    Returns:
        True if authentication passes

    Raises:
        HTTPException: 401 if authentication fails
    """
    # WARNING: Never expose the API without API_TOKEN set
    if not settings.api_token:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token required. Provide via X-API-Key header.",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    if api_key != settings.api_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "X-API-Key"},
        )

    return True

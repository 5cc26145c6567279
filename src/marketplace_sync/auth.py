"""API key checks and rate limiting for the admin sync endpoints."""

import secrets
import logging

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer()


def admin_client_key(request: Request) -> str:
    """Bucket sync calls per admin token, falling back to the caller address."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return f"token:{token[-8:]}"
    return get_remote_address(request)


limiter = Limiter(key_func=admin_client_key)


def sync_rate_limit() -> str:
    """Limit applied to each sync run endpoint, from SYNC_RATE_LIMIT."""
    return get_settings().rate_limit


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> str:
    """Check the admin bearer token against API_KEY.

    Returns:
        The accepted key.

    Raises:
        HTTPException: 500 when no key is configured, 401 when it does not match.
    """
    expected = get_settings().admin_api_key
    if not expected:
        logger.error("API_KEY is not configured; refusing admin sync calls")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(credentials.credentials, expected):
        logger.warning("Rejected admin sync call with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials

"""Authentication and rate limiting helpers for the API."""

import secrets
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)

limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_settings().rate_limit_enabled,
)


@dataclass(frozen=True)
class Principal:
    """The signed-in user and the organization they act for."""
    user_id: str
    org_id: str


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """Verify the API key from the Authorization header.

    Args:
        credentials: HTTP Bearer credentials from the request.
        settings: Application settings.

    Returns:
        The verified API key.

    Raises:
        HTTPException: If API key is invalid or not configured.
    """
    api_key = credentials.credentials
    expected_key = settings.api_key
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


async def get_current_principal(
    api_key: str = Depends(verify_api_key),
    x_user_id: Optional[str] = Header(default=None),
    x_organization_id: Optional[str] = Header(default=None),
) -> Principal:
    """Resolve the caller forwarded by the authenticating front end.

    Raises:
        HTTPException: 401 if the user or organization is missing.
    """
    if not x_user_id or not x_organization_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Principal(user_id=x_user_id, org_id=x_organization_id)


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer),
    settings: Settings = Depends(get_settings),
) -> None:
    """Gate scheduled-job endpoints behind CRON_SECRET.

    The secret is mandatory in production. Elsewhere an unset secret leaves
    the endpoint open for local runs.

    Raises:
        HTTPException: 500 if unconfigured in production, 401 on a bad secret.
    """
    secret = settings.cron_secret
    if not secret:
        if settings.is_production:
            logger.error("CRON_SECRET is not configured in production")
            raise HTTPException(status_code=500, detail="Server configuration error")
        logger.warning("CRON_SECRET not set; cron endpoint is unauthenticated")
        return
    provided = credentials.credentials if credentials else ""
    if not secrets.compare_digest(provided, secret):
        logger.warning("Unauthorized cron job attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")

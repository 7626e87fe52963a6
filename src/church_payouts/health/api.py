"""Health check endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..settings import Settings, get_settings
from .cache import HealthCheckCache, InMemoryCacheBackend
from .checker import AuthProviderHealthCheck
from .notifier import SlackNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_auth_health_check: Optional[AuthProviderHealthCheck] = None


def get_auth_health_check(settings: Settings = Depends(get_settings)) -> AuthProviderHealthCheck:
    """Return the process-wide auth provider checker.

    One instance per process keeps the cached verdict and the last
    notification state between requests.
    """
    global _auth_health_check
    if _auth_health_check is None:
        _auth_health_check = AuthProviderHealthCheck(
            cache=HealthCheckCache(InMemoryCacheBackend(), service=AuthProviderHealthCheck.service),
            notifier=SlackNotifier(settings.slack_webhook_url),
            secret_key=settings.clerk_secret_key,
            api_url=settings.clerk_api_url,
        )
    return _auth_health_check


@router.get("")
async def liveness():
    """Liveness probe."""
    return {"status": "healthy", "service": "church-payouts"}


@router.get("/clerk")
def clerk_health(checker: AuthProviderHealthCheck = Depends(get_auth_health_check)):
    """
    Check the authentication provider's API.

    Returns 200 when healthy, 503 when unhealthy and 429 when the provider is
    rate limiting and no valid cached verdict exists.
    """
    result = checker.check()
    return JSONResponse(
        content=result.to_response_dict(checker.service),
        status_code=result.http_status,
    )

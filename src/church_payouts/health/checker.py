"""Health check of the authentication provider's API."""

import logging
import time
from datetime import datetime
from typing import Optional, Dict, Any

import requests
from pydantic import BaseModel

from .cache import HealthCheckCache
from .notifier import (
    SlackNotifier,
    service_health_check_failed,
    service_health_check_recovered,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10
HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
RATE_LIMITED = "rate_limited"


class HealthCheckResult(BaseModel):
    """Verdict returned to the caller, with the HTTP status to use."""
    status: str
    http_status: int
    response_time_ms: int = 0
    error: Optional[str] = None
    rate_limited: bool = False
    cached: bool = False

    def to_response_dict(self, service: str) -> Dict[str, Any]:
        messages = {
            HEALTHY: "Clerk API connection successful",
            UNHEALTHY: "Clerk API connection failed",
            RATE_LIMITED: "Clerk API rate limit exceeded and no valid cached result",
        }
        body: Dict[str, Any] = {
            "status": self.status,
            "service": service,
            "message": messages.get(self.status, self.status),
            "responseTime": f"{self.response_time_ms}ms",
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }
        if self.error:
            body["error"] = self.error
        if self.rate_limited:
            body["rateLimited"] = True
        if self.cached:
            body["cached"] = True
        return body


class AuthProviderHealthCheck:
    """Checks the auth provider's API and alerts on state transitions.

    Failure alerts go out when the service turns unhealthy after being healthy
    or unknown, unless a failure alert is already outstanding. A recovery alert
    goes out only while a failure alert is outstanding.
    """

    service = "clerk"

    def __init__(
        self,
        cache: HealthCheckCache,
        notifier: SlackNotifier,
        secret_key: Optional[str],
        api_url: str = "https://api.clerk.com/v1",
        session: Optional[requests.Session] = None,
    ):
        self.cache = cache
        self.notifier = notifier
        self.secret_key = secret_key
        self.api_url = api_url
        self._http = session or requests.Session()
        self.last_notification: Optional[str] = None

    def _probe(self) -> requests.Response:
        if not self.secret_key:
            raise ValueError("CLERK_SECRET_KEY is not configured")
        return self._http.get(
            f"{self.api_url}/users",
            params={"limit": 1},
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def check(self) -> HealthCheckResult:
        """Return the current verdict, from cache when fresh."""
        fresh = self.cache.get_fresh()
        if fresh is not None:
            return HealthCheckResult(
                status=fresh.status,
                http_status=200 if fresh.status == HEALTHY else 503,
                response_time_ms=fresh.response_time_ms,
                error=fresh.error,
                rate_limited=fresh.rate_limited,
                cached=True,
            )

        previous = self.cache.get_last()
        previous_status = previous.status if previous else None

        start = time.monotonic()
        error: Optional[str] = None
        try:
            response = self._probe()
            if response.status_code == 429:
                return self._handle_rate_limit(int((time.monotonic() - start) * 1000))
            if not response.ok:
                error = f"Clerk API returned status {response.status_code}"
        except (requests.RequestException, ValueError) as e:
            error = str(e)
        response_time_ms = int((time.monotonic() - start) * 1000)

        if error is None:
            self.cache.store(HEALTHY, response_time_ms)
            logger.debug(f"Clerk health check passed in {response_time_ms}ms")
            self._notify_transition(previous_status, HEALTHY, response_time_ms)
            return HealthCheckResult(status=HEALTHY, http_status=200, response_time_ms=response_time_ms)

        logger.error(f"Clerk health check failed: {error}")
        self.cache.store(UNHEALTHY, response_time_ms, error=error)
        self._notify_transition(previous_status, UNHEALTHY, response_time_ms, error)
        return HealthCheckResult(
            status=UNHEALTHY,
            http_status=503,
            response_time_ms=response_time_ms,
            error=error,
        )

    def _handle_rate_limit(self, response_time_ms: int) -> HealthCheckResult:
        # Concurrent checks share the backend; one may have stored a verdict while this probe was in flight
        entry = self.cache.use_during_rate_limit()
        if entry is None:
            logger.warning("Clerk API rate limited and no valid cached verdict")
            return HealthCheckResult(
                status=RATE_LIMITED,
                http_status=429,
                response_time_ms=response_time_ms,
                error="Rate limit exceeded",
            )
        logger.info("Clerk API rate limited; serving cached verdict")
        return HealthCheckResult(
            status=entry.status,
            http_status=200 if entry.status == HEALTHY else 503,
            response_time_ms=entry.response_time_ms,
            error=entry.error,
            rate_limited=True,
            cached=True,
        )

    def _notify_transition(
        self,
        previous_status: Optional[str],
        status: str,
        response_time_ms: int,
        error: Optional[str] = None,
    ) -> None:
        response_time = f"{response_time_ms}ms"
        if status == UNHEALTHY:
            if previous_status in (None, HEALTHY) and self.last_notification != UNHEALTHY:
                self.notifier.send(service_health_check_failed(self.service, error or "Unknown error", response_time))
                self.last_notification = UNHEALTHY
        elif previous_status != HEALTHY and self.last_notification == UNHEALTHY:
            self.notifier.send(service_health_check_recovered(self.service, response_time))
            self.last_notification = HEALTHY

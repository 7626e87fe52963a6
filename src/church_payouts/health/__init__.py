"""Third-party service health checks with rate-limit aware caching and Slack alerts."""

from .cache import (
    CACHE_TTL_SECONDS,
    RATE_LIMIT_CACHE_TTL_SECONDS,
    CacheBackend,
    HealthCacheEntry,
    HealthCheckCache,
    InMemoryCacheBackend,
)
from .checker import AuthProviderHealthCheck, HealthCheckResult
from .notifier import (
    Severity,
    SlackNotification,
    SlackNotifier,
    cron_job_failed,
    service_health_check_failed,
    service_health_check_recovered,
)

__all__ = [
    "CACHE_TTL_SECONDS",
    "RATE_LIMIT_CACHE_TTL_SECONDS",
    "CacheBackend",
    "HealthCacheEntry",
    "HealthCheckCache",
    "InMemoryCacheBackend",
    "AuthProviderHealthCheck",
    "HealthCheckResult",
    "Severity",
    "SlackNotification",
    "SlackNotifier",
    "cron_job_failed",
    "service_health_check_failed",
    "service_health_check_recovered",
]

"""Replay protection for mutating endpoints."""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .database import DEFAULT_IDEMPOTENCY_TTL_HOURS, IdempotencyCacheRepository

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
DEFAULT_OPERATION_PREFIX = "stripe_op_"


class CachedResponse(BaseModel):
    """A response as stored in, and replayed from, the idempotency cache."""
    body: Any = None
    status: int = 200
    headers: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_cacheable(self) -> bool:
        return self.status < 400 and self.body not in (None, "", {}, [])

    def to_response(self) -> JSONResponse:
        return JSONResponse(content=self.body, status_code=self.status, headers=self.headers)


async def require_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, alias=IDEMPOTENCY_HEADER),
) -> str:
    """FastAPI dependency returning the client's idempotency key.

    Raises:
        HTTPException: 400 if the header is missing or blank.
    """
    if not idempotency_key or not idempotency_key.strip():
        raise HTTPException(
            status_code=400,
            detail=f"{IDEMPOTENCY_HEADER} header is required",
        )
    return idempotency_key.strip()


class IdempotencyGuard:
    """Runs an operation at most once per cache key within the TTL.

    A cached response is replayed verbatim. Only successful, non-empty
    responses are cached; failures are retried on the next request.
    """

    def __init__(
        self,
        session: AsyncSession,
        ttl_hours: int = DEFAULT_IDEMPOTENCY_TTL_HOURS,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.ttl_hours = ttl_hours
        self._now = now or datetime.utcnow
        self.cache_repo = IdempotencyCacheRepository(session)

    @staticmethod
    def cache_key(prefix: Optional[str], idempotency_key: str) -> str:
        return f"{prefix or DEFAULT_OPERATION_PREFIX}{idempotency_key}"

    async def execute(
        self,
        prefix: Optional[str],
        idempotency_key: str,
        operation: Callable[[], Awaitable[CachedResponse]],
    ) -> CachedResponse:
        """Replay the cached response for the key or run ``operation`` and cache it.

        Args:
            prefix: Operation prefix scoping the key, e.g. ``createAccount_<churchId>``.
            idempotency_key: Client supplied key.
            operation: Coroutine factory producing the response.

        Returns:
            The cached or freshly produced response.
        """
        key = self.cache_key(prefix, idempotency_key)

        cached = await self.cache_repo.get_valid(key, now=self._now())
        if cached is not None:
            logger.info(f"Replaying cached response for {key}")
            return CachedResponse(**cached.response_data)

        response = await operation()
        # Persist the operation's own writes before touching the cache
        await self.session.commit()

        if not response.is_cacheable:
            logger.debug(f"Not caching response for {key} (status {response.status})")
            return response

        try:
            await self.cache_repo.store(
                key,
                response.model_dump(),
                ttl_hours=self.ttl_hours,
                now=self._now(),
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.warning(f"Race condition caching idempotent response for {key}")

        return response

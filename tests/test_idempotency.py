"""Tests for idempotent request replay."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi import HTTPException

from church_payouts.database import IdempotencyCacheRepository
from church_payouts.idempotency import (
    CachedResponse,
    IdempotencyGuard,
    require_idempotency_key,
)

NOW = datetime(2025, 1, 15, 12, 0, 0)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def guard(db_session, clock):
    return IdempotencyGuard(db_session, now=clock)


class TestIdempotencyGuard:
    """Tests for IdempotencyGuard.execute."""

    async def test_replays_first_successful_response(self, guard):
        operation = AsyncMock(return_value=CachedResponse(body={"accountId": "acct_1", "url": "https://x"}))

        first = await guard.execute("createAccount_c1", "key-1", operation)
        second = await guard.execute("createAccount_c1", "key-1", operation)

        assert operation.await_count == 1
        assert second.body == first.body
        assert second.status == first.status
        assert second.to_response().body == first.to_response().body

    async def test_prefix_scopes_the_key(self, guard):
        operation = AsyncMock(return_value=CachedResponse(body={"ok": True}))

        await guard.execute("createAccount_c1", "key-1", operation)
        await guard.execute("createAccountLink_c1", "key-1", operation)

        assert operation.await_count == 2

    async def test_default_prefix(self, guard, db_session):
        await guard.execute(None, "key-1", AsyncMock(return_value=CachedResponse(body={"url": "u"})))

        entry = await IdempotencyCacheRepository(db_session).get_valid("stripe_op_key-1", now=NOW)
        assert entry is not None
        assert entry.response_data["body"] == {"url": "u"}

    async def test_error_responses_are_not_cached(self, guard):
        operation = AsyncMock(side_effect=[
            CachedResponse(body={"error": "Stripe API error"}, status=502),
            CachedResponse(body={"url": "https://ok"}),
        ])

        first = await guard.execute(None, "key-1", operation)
        second = await guard.execute(None, "key-1", operation)

        assert first.status == 502
        assert second.body == {"url": "https://ok"}
        assert operation.await_count == 2

    async def test_empty_body_is_not_cached(self, guard):
        operation = AsyncMock(return_value=CachedResponse(body={}))

        await guard.execute(None, "key-1", operation)
        await guard.execute(None, "key-1", operation)

        assert operation.await_count == 2

    async def test_expired_entry_runs_operation_again(self, guard, clock):
        operation = AsyncMock(return_value=CachedResponse(body={"url": "https://x"}))

        await guard.execute(None, "key-1", operation)
        clock.now = NOW + timedelta(hours=25)
        await guard.execute(None, "key-1", operation)

        assert operation.await_count == 2

    async def test_within_ttl_replays(self, guard, clock):
        operation = AsyncMock(return_value=CachedResponse(body={"url": "https://x"}))

        await guard.execute(None, "key-1", operation)
        clock.now = NOW + timedelta(hours=23)
        await guard.execute(None, "key-1", operation)

        assert operation.await_count == 1


class TestIdempotencyCacheRepository:
    """Tests for IdempotencyCacheRepository."""

    async def test_delete_expired(self, db_session):
        repo = IdempotencyCacheRepository(db_session)
        await repo.store("old", {"body": 1}, ttl_hours=1, now=NOW - timedelta(hours=2))
        await repo.store("new", {"body": 2}, ttl_hours=24, now=NOW)
        await db_session.commit()

        deleted = await repo.delete_expired(NOW)
        await db_session.commit()

        assert deleted == 1
        assert await repo.get_valid("new", now=NOW) is not None

    async def test_store_replaces_expired_entry(self, db_session):
        repo = IdempotencyCacheRepository(db_session)
        await repo.store("k", {"body": "old"}, ttl_hours=1, now=NOW - timedelta(hours=2))
        await db_session.commit()

        await repo.store("k", {"body": "new"}, ttl_hours=24, now=NOW)
        await db_session.commit()

        entry = await repo.get_valid("k", now=NOW)
        assert entry.response_data == {"body": "new"}


class TestRequireIdempotencyKey:
    """Tests for the Idempotency-Key header dependency."""

    async def test_missing_header_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_idempotency_key(None)
        assert exc_info.value.status_code == 400

    async def test_blank_header_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_idempotency_key("   ")
        assert exc_info.value.status_code == 400

    async def test_key_is_stripped(self):
        assert await require_idempotency_key(" abc ") == "abc"

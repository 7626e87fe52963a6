"""Shared test fixtures and configuration."""

import os
from datetime import datetime
from typing import List

import httpx
import pytest
from unittest.mock import MagicMock

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from church_payouts.connectors import (  # noqa: E402
    BalanceTransaction,
    PaymentsClientBase,
    RemotePaymentIntent,
    RemotePayout,
)
from church_payouts.settings import Settings  # noqa: E402

TEST_API_KEY = "test_api_key_12345"
TEST_CRON_SECRET = "cron_secret_12345"
ORG_ID = "org_grace"
OTHER_ORG_ID = "org_other"
STRIPE_ACCOUNT_ID = "acct_grace123"


def make_intent(status: str, canceled_at=None, latest_charge_created=None, intent_id="pi_123") -> RemotePaymentIntent:
    return RemotePaymentIntent(
        id=intent_id,
        status=status,
        canceled_at=canceled_at,
        latest_charge_created=latest_charge_created,
    )


def make_remote_payout(
    payout_id: str = "po_123",
    status: str = "paid",
    amount: int = 10000,
    created: datetime = datetime(2025, 1, 10, 12, 0, 0),
) -> RemotePayout:
    return RemotePayout(
        id=payout_id,
        amount=amount,
        currency="usd",
        status=status,
        created=created,
        arrival_date=datetime(2025, 1, 12),
    )


def make_transactions() -> List[BalanceTransaction]:
    """Two charges, one refund, one dispute and the payout itself."""
    return [
        BalanceTransaction(id="txn_1", type="charge", amount=5000, fee=175),
        BalanceTransaction(id="txn_2", type="charge", amount=3000, fee=117),
        BalanceTransaction(id="txn_3", type="refund", amount=-1000, fee=-30),
        BalanceTransaction(id="txn_4", type="adjustment", amount=-1500, fee=0, reporting_category="dispute"),
        BalanceTransaction(id="txn_5", type="payout", amount=-5238, fee=0),
    ]


@pytest.fixture
def payments_client():
    """Stub payments client; every provider method is a MagicMock."""
    return MagicMock(spec=PaymentsClientBase)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        stripe_api_key="sk_test_dummy_key_for_testing",
        api_key=TEST_API_KEY,
        cron_secret=TEST_CRON_SECRET,
        reconcile_delay_seconds=0,
        rate_limit_enabled=False,
    )


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from church_payouts.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from church_payouts.database import make_session_factory

    return make_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def church(db_session):
    from church_payouts.database import ChurchRepository

    church = await ChurchRepository(db_session).create(name="Grace Chapel", auth_org_id=ORG_ID)
    await db_session.commit()
    return church


@pytest.fixture
async def connect_account(db_session, church):
    from church_payouts.database import StripeConnectAccountRepository

    account = await StripeConnectAccountRepository(db_session).create(
        church_id=church.id,
        stripe_account_id=STRIPE_ACCOUNT_ID,
    )
    await db_session.commit()
    return account


@pytest.fixture
def create_payout(db_session, church):
    """Factory creating a committed payout summary for the seeded church."""
    from church_payouts.database import PayoutSummaryRepository

    async def _create(
        payout_id: str = "po_123",
        status: str = "paid",
        amount: int = 10000,
        church_id: str = None,
        payout_date: datetime = datetime(2025, 1, 10),
    ):
        payout = await PayoutSummaryRepository(db_session).create(
            stripe_payout_id=payout_id,
            church_id=church_id or church.id,
            payout_date=payout_date,
            arrival_date=datetime(2025, 1, 12),
            amount=amount,
            currency="usd",
            status=status,
        )
        await db_session.commit()
        return payout

    return _create


@pytest.fixture
def create_donation(db_session, church):
    """Factory creating a committed donation for the seeded church."""
    from church_payouts.database import DonationTransactionRepository

    async def _create(
        payment_intent_id: str = "pi_123",
        transaction_date: datetime = datetime(2025, 1, 1),
        status: str = "pending",
        amount: int = 2500,
    ):
        donation = await DonationTransactionRepository(db_session).create(
            church_id=church.id,
            amount=amount,
            stripe_payment_intent_id=payment_intent_id,
            status=status,
            transaction_date=transaction_date,
        )
        await db_session.commit()
        return donation

    return _create


# API fixtures
@pytest.fixture
def auth_headers():
    """Return headers with authentication and the caller's organization."""
    return {
        "Authorization": f"Bearer {TEST_API_KEY}",
        "X-User-Id": "user_123",
        "X-Organization-Id": ORG_ID,
    }


@pytest.fixture
async def api_client(session_factory, payments_client, test_settings):
    """HTTP client against the app with the database, provider and settings overridden."""
    from church_payouts.api import app
    from church_payouts.database import get_async_session_factory, get_db
    from church_payouts.dependencies import get_stripe_client
    from church_payouts.settings import get_settings

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_client] = lambda: payments_client
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_async_session_factory] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()

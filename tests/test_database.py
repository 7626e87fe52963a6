"""Tests for models, repositories and session helpers."""

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from church_payouts.database import (
    Church,
    ChurchRepository,
    DonationTransaction,
    DonationTransactionRepository,
    PayoutSummary,
    PayoutSummaryRepository,
    StripeConnectAccountRepository,
    close_db,
    get_async_session_factory,
    get_database_url,
    get_db_context,
    init_db,
)

from conftest import ORG_ID, STRIPE_ACCOUNT_ID


class TestDatabaseUrl:
    """Tests for get_database_url."""

    def test_postgres_urls_use_asyncpg(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/payouts")
        assert get_database_url() == "postgresql+asyncpg://u:p@db/payouts"

        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/payouts")
        assert get_database_url() == "postgresql+asyncpg://u:p@db/payouts"

    def test_default_is_local_sqlite(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert get_database_url().startswith("sqlite+aiosqlite://")

    def test_factory_requires_init(self):
        with pytest.raises(RuntimeError):
            get_async_session_factory()

    async def test_global_session_lifecycle(self):
        await init_db("sqlite+aiosqlite:///:memory:")
        try:
            async with get_db_context() as session:
                session.add(Church(name="St. Mark", auth_org_id="org_mark"))

            async with get_db_context() as session:
                found = await ChurchRepository(session).get_by_auth_org_id("org_mark")
                assert found.name == "St. Mark"
        finally:
            await close_db()

        with pytest.raises(RuntimeError):
            get_async_session_factory()


class TestChurchRepositories:
    """Tests for church and connected account lookups."""

    async def test_lookup_by_org(self, db_session, church):
        found = await ChurchRepository(db_session).get_by_auth_org_id(ORG_ID)
        assert found.id == church.id
        assert await ChurchRepository(db_session).get_by_auth_org_id("org_missing") is None

    async def test_one_account_per_church(self, db_session, church, connect_account):
        repo = StripeConnectAccountRepository(db_session)
        assert (await repo.get_by_church_id(church.id)).stripe_account_id == STRIPE_ACCOUNT_ID

        with pytest.raises(IntegrityError):
            await repo.create(church_id=church.id, stripe_account_id="acct_second")


class TestDonationTransactionRepository:
    """Tests for DonationTransactionRepository."""

    async def test_list_stale_pending_filters(self, db_session, create_donation):
        stale = await create_donation(payment_intent_id="pi_stale", transaction_date=datetime(2025, 1, 1))
        await create_donation(payment_intent_id="pi_recent", transaction_date=datetime(2025, 1, 14))
        await create_donation(payment_intent_id="pi_done", transaction_date=datetime(2025, 1, 1), status="succeeded")
        await create_donation(payment_intent_id=None, transaction_date=datetime(2025, 1, 1))

        rows = await DonationTransactionRepository(db_session).list_stale_pending(datetime(2025, 1, 8))

        assert [r.id for r in rows] == [stale.id]

    async def test_terminal_status_is_final(self, db_session, create_donation):
        donation = await create_donation(status="canceled")

        with pytest.raises(ValueError):
            await DonationTransactionRepository(db_session).update_status(donation, "succeeded")

    async def test_update_keeps_processed_at_when_not_given(self, db_session, create_donation):
        repo = DonationTransactionRepository(db_session)
        donation = await create_donation()
        await repo.update_status(donation, "processing", processed_at=datetime(2025, 1, 2))

        await repo.update_status(donation, "succeeded")

        assert donation.processed_at == datetime(2025, 1, 2)
        assert donation.status == "succeeded"


class TestPayoutSummaryRepository:
    """Tests for PayoutSummaryRepository."""

    async def test_create_starts_with_net_equal_to_amount(self, db_session, church):
        payout = await PayoutSummaryRepository(db_session).create(
            stripe_payout_id="po_1",
            church_id=church.id,
            payout_date=datetime(2025, 1, 10),
            arrival_date=datetime(2025, 1, 12),
            amount=4200,
            currency="USD",
            status="paid",
            metadata={"batch": "7"},
        )

        assert payout.net_amount == 4200
        assert payout.gross_volume == 0
        assert payout.version == 0
        assert payout.currency == "usd"
        assert payout.to_dict()["metadata"] == {"batch": "7"}

    async def test_payout_ids_are_unique(self, create_payout):
        await create_payout("po_1")
        with pytest.raises(IntegrityError):
            await create_payout("po_1")

    async def test_pending_reconciliation_churches(self, db_session, church, create_payout):
        await create_payout("po_1", status="paid")
        await create_payout("po_2", status="in_transit")

        church_ids = await PayoutSummaryRepository(db_session).list_church_ids_with_pending_reconciliation()

        assert church_ids == [church.id]

    async def test_list_recent_newest_first(self, db_session, church, create_payout):
        await create_payout("po_old", payout_date=datetime(2024, 12, 1))
        await create_payout("po_new", payout_date=datetime(2025, 1, 20))

        recent = await PayoutSummaryRepository(db_session).list_recent(church.id, limit=1)

        assert [p.stripe_payout_id for p in recent] == ["po_new"]


class TestSchema:
    """Tests for the declared table layout."""

    def test_donation_columns(self):
        assert set(DonationTransaction.__table__.columns.keys()) == {
            "id",
            "church_id",
            "donor_id",
            "amount",
            "currency",
            "status",
            "stripe_payment_intent_id",
            "transaction_date",
            "processed_at",
        }

    def test_payout_columns_hold_reconciliation_state(self):
        columns = set(PayoutSummary.__table__.columns.keys())
        assert {"gross_volume", "total_fees", "total_refunds", "total_disputes",
                "net_amount", "reconciled_at", "version"} <= columns
        assert "bank_reference" not in columns

"""Tests for the stale donation sweeper."""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from church_payouts.connectors import PaymentsProviderError, ResourceMissingError
from church_payouts.database import DonationTransaction, DonationTransactionRepository
from church_payouts.reconciliation import (
    RemoteIntentStatus,
    StaleDonationSweeper,
    SweepTarget,
    map_remote_status,
)
from church_payouts.reconciliation.sweeper import ABANDONED_STATUSES

from conftest import make_intent

NOW = datetime(2025, 1, 15, 12, 0, 0)


@pytest.fixture
def sweeper(db_session, payments_client):
    return StaleDonationSweeper(db_session, payments_client, now=lambda: NOW)


async def reload(db_session, donation_id):
    db_session.expire_all()
    return await DonationTransactionRepository(db_session).get_by_id(donation_id)


class TestStatusMapping:
    """Tests for map_remote_status."""

    @pytest.mark.parametrize("status", sorted(s.value for s in ABANDONED_STATUSES))
    def test_abandoned_statuses_cancel(self, status):
        assert map_remote_status(status) is SweepTarget.CANCELED

    def test_succeeded(self):
        assert map_remote_status("succeeded") is SweepTarget.SUCCEEDED

    def test_processing_and_requires_capture(self):
        assert map_remote_status("processing") is SweepTarget.PROCESSING
        assert map_remote_status("requires_capture") is SweepTarget.PROCESSING

    def test_unknown_status_is_skipped(self):
        assert map_remote_status("some_future_status") is SweepTarget.SKIP

    def test_every_known_status_is_mapped(self):
        """Test that no provider status silently falls through to skip."""
        for status in RemoteIntentStatus:
            assert map_remote_status(status.value) is not SweepTarget.SKIP


class TestStaleDonationSweeper:
    """Tests for StaleDonationSweeper.run."""

    def test_cutoff_is_seven_days_before_now(self, sweeper):
        assert sweeper.cutoff() == datetime(2025, 1, 8, 12, 0, 0)

    async def test_cancels_abandoned_stale_donation(self, sweeper, payments_client, create_donation, db_session):
        """Test the 2025-01-01 pending donation with a canceled intent."""
        canceled_at = datetime(2025, 1, 2, 9, 30)
        donation = await create_donation(payment_intent_id="pi_old", transaction_date=datetime(2025, 1, 1))
        payments_client.retrieve_payment_intent.return_value = make_intent(
            "canceled", canceled_at=canceled_at, intent_id="pi_old",
        )

        result = await sweeper.run()

        assert result.checked == 1
        assert result.updated == 1
        assert result.canceled == 1
        assert result.errors == []
        updated = await reload(db_session, donation.id)
        assert updated.status == "canceled"
        assert updated.processed_at == canceled_at

    async def test_canceled_without_timestamp_uses_now(self, sweeper, payments_client, create_donation, db_session):
        donation = await create_donation(payment_intent_id="pi_old")
        payments_client.retrieve_payment_intent.return_value = make_intent("requires_payment_method")

        await sweeper.run()

        updated = await reload(db_session, donation.id)
        assert updated.status == "canceled"
        assert updated.processed_at == NOW

    async def test_recent_donation_never_selected(self, sweeper, payments_client, create_donation, db_session):
        """Test that a donation from 2025-01-14 is not touched."""
        donation = await create_donation(payment_intent_id="pi_new", transaction_date=datetime(2025, 1, 14))
        payments_client.retrieve_payment_intent.return_value = make_intent("canceled")

        result = await sweeper.run()

        assert result.checked == 0
        payments_client.retrieve_payment_intent.assert_not_called()
        assert (await reload(db_session, donation.id)).status == "pending"

    async def test_non_pending_donation_not_selected(self, sweeper, payments_client, create_donation):
        await create_donation(payment_intent_id="pi_done", status="succeeded")

        result = await sweeper.run()

        assert result.checked == 0
        payments_client.retrieve_payment_intent.assert_not_called()

    async def test_succeeded_uses_latest_charge_time(self, sweeper, payments_client, create_donation, db_session):
        charged_at = datetime(2025, 1, 1, 10, 0)
        donation = await create_donation()
        payments_client.retrieve_payment_intent.return_value = make_intent(
            "succeeded", latest_charge_created=charged_at,
        )

        result = await sweeper.run()

        assert result.updated == 1
        assert result.canceled == 0
        updated = await reload(db_session, donation.id)
        assert updated.status == "succeeded"
        assert updated.processed_at == charged_at

    async def test_requires_capture_moves_to_processing(self, sweeper, payments_client, create_donation, db_session):
        donation = await create_donation()
        payments_client.retrieve_payment_intent.return_value = make_intent("requires_capture")

        result = await sweeper.run()

        assert result.updated == 1
        updated = await reload(db_session, donation.id)
        assert updated.status == "processing"
        assert updated.processed_at is None

    async def test_unknown_status_left_pending(self, sweeper, payments_client, create_donation, db_session):
        donation = await create_donation()
        payments_client.retrieve_payment_intent.return_value = make_intent("some_future_status")

        result = await sweeper.run()

        assert result.checked == 1
        assert result.updated == 0
        assert result.errors == []
        assert (await reload(db_session, donation.id)).status == "pending"

    async def test_missing_intent_is_canceled_not_error(self, sweeper, payments_client, create_donation, db_session):
        donation = await create_donation(payment_intent_id="pi_gone")
        payments_client.retrieve_payment_intent.side_effect = ResourceMissingError(
            "No such payment_intent: 'pi_gone'", code="resource_missing", http_status=404,
        )

        result = await sweeper.run()

        assert result.canceled == 1
        assert result.updated == 1
        assert result.errors == []
        updated = await reload(db_session, donation.id)
        assert updated.status == "canceled"
        assert updated.processed_at == NOW

    async def test_provider_error_recorded_and_row_untouched(self, sweeper, payments_client, create_donation, db_session):
        donation = await create_donation(payment_intent_id="pi_flaky")
        payments_client.retrieve_payment_intent.side_effect = PaymentsProviderError("connection reset")

        result = await sweeper.run()

        assert result.checked == 1
        assert result.updated == 0
        assert len(result.errors) == 1
        assert result.errors[0].id == donation.id
        assert result.errors[0].payment_intent_id == "pi_flaky"
        assert "connection reset" in result.errors[0].error
        assert (await reload(db_session, donation.id)).status == "pending"

    async def test_one_failure_does_not_block_others(self, sweeper, payments_client, create_donation, db_session):
        first = await create_donation(payment_intent_id="pi_a", transaction_date=datetime(2025, 1, 1))
        second = await create_donation(payment_intent_id="pi_b", transaction_date=datetime(2025, 1, 2))

        def retrieve(payment_intent_id):
            if payment_intent_id == "pi_a":
                raise PaymentsProviderError("timeout")
            return make_intent("canceled", intent_id=payment_intent_id)

        payments_client.retrieve_payment_intent.side_effect = retrieve

        result = await sweeper.run()

        assert result.checked == 2
        assert result.canceled == 1
        assert [e.id for e in result.errors] == [first.id]
        assert (await reload(db_session, second.id)).status == "canceled"

    async def test_second_run_is_idempotent(self, sweeper, payments_client, create_donation):
        """Test that an immediate second sweep updates nothing."""
        await create_donation(payment_intent_id="pi_a")
        await create_donation(payment_intent_id="pi_b")
        payments_client.retrieve_payment_intent.return_value = make_intent("canceled")

        first = await sweeper.run()
        second = await sweeper.run()

        assert first.updated == 2
        assert second.checked == 0
        assert second.updated == 0
        assert payments_client.retrieve_payment_intent.call_count == 2

    async def test_processing_row_not_swept_again(self, sweeper, payments_client, create_donation):
        await create_donation()
        payments_client.retrieve_payment_intent.return_value = make_intent("processing")

        await sweeper.run()
        second = await sweeper.run()

        assert second.updated == 0


class TestSweepStoreErrors:
    """Tests for local write failures during a sweep."""

    async def test_failed_write_rolled_back_and_next_row_committed(
        self, sweeper, payments_client, create_donation, db_session,
    ):
        first_id = (await create_donation(payment_intent_id="pi_a", transaction_date=datetime(2025, 1, 1))).id
        second_id = (await create_donation(payment_intent_id="pi_b", transaction_date=datetime(2025, 1, 2))).id
        payments_client.retrieve_payment_intent.return_value = make_intent("canceled")
        original_update = DonationTransactionRepository.update_status

        async def update_status(repo, donation, new_status, processed_at=None):
            if donation.stripe_payment_intent_id == "pi_a":
                donation.status = new_status
                donation.processed_at = processed_at
                await repo.session.flush()
                raise SQLAlchemyError("disk I/O error")
            return await original_update(repo, donation, new_status, processed_at=processed_at)

        with patch.object(DonationTransactionRepository, "update_status", autospec=True, side_effect=update_status):
            result = await sweeper.run()

        assert result.checked == 2
        assert result.updated == 1
        assert result.canceled == 1
        assert [e.id for e in result.errors] == [first_id]
        assert "disk I/O error" in result.errors[0].error

        failed = await reload(db_session, first_id)
        assert failed.status == "pending"
        assert failed.processed_at is None
        assert (await reload(db_session, second_id)).status == "canceled"

    async def test_missing_intent_with_failed_cancel_reports_both_errors(
        self, sweeper, payments_client, create_donation, db_session,
    ):
        donation_id = (await create_donation(payment_intent_id="pi_gone")).id
        payments_client.retrieve_payment_intent.side_effect = ResourceMissingError(
            "No such payment_intent: 'pi_gone'", code="resource_missing", http_status=404,
        )

        with patch.object(
            DonationTransactionRepository, "update_status", autospec=True,
            side_effect=SQLAlchemyError("database is locked"),
        ):
            result = await sweeper.run()

        assert result.updated == 0
        assert result.canceled == 0
        assert len(result.errors) == 1
        assert result.errors[0].payment_intent_id == "pi_gone"
        assert "No such payment_intent" in result.errors[0].error
        assert "database is locked" in result.errors[0].error
        assert (await reload(db_session, donation_id)).status == "pending"

    async def test_row_resolved_after_scan_is_left_alone(
        self, sweeper, payments_client, create_donation, db_session,
    ):
        """Test a webhook write landing between the scan and the update."""
        donation_id = (await create_donation(payment_intent_id="pi_race")).id
        payments_client.retrieve_payment_intent.return_value = make_intent("canceled")
        original_list = DonationTransactionRepository.list_stale_pending

        async def list_then_resolve(repo, cutoff):
            rows = await original_list(repo, cutoff)
            await repo.session.execute(
                update(DonationTransaction)
                .where(DonationTransaction.id == donation_id)
                .values(status="succeeded")
                .execution_options(synchronize_session=False)
            )
            await repo.session.commit()
            return rows

        with patch.object(
            DonationTransactionRepository, "list_stale_pending", autospec=True, side_effect=list_then_resolve,
        ):
            result = await sweeper.run()

        assert result.checked == 1
        assert result.updated == 0
        assert result.errors == []
        assert (await reload(db_session, donation_id)).status == "succeeded"

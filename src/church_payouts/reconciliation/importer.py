"""Backfill of payout summaries from the provider's payout history."""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors import PaymentsClientBase, PaymentsProviderError, ResourceMissingError, RemotePayout
from ..database import (
    PayoutStatus,
    PayoutSummaryRepository,
    StripeConnectAccountRepository,
)
from .models import ImportResult
from .service import StripeAccountNotConnectedError

logger = logging.getLogger(__name__)

DEFAULT_IMPORT_LIMIT = 10
MAX_IMPORT_LIMIT = 100
PREVIEW_LIMIT = 100


class HistoricalPayoutImporter:
    """Creates or refreshes PayoutSummary rows from a church's provider payouts."""

    def __init__(self, session: AsyncSession, payments_client: PaymentsClientBase):
        self.session = session
        self.payments_client = payments_client
        self.payout_repo = PayoutSummaryRepository(session)
        self.account_repo = StripeConnectAccountRepository(session)

    async def _get_stripe_account(self, church_id: str) -> str:
        account = await self.account_repo.get_by_church_id(church_id)
        if account is None:
            raise StripeAccountNotConnectedError(
                "No Stripe Connect account found. Please complete onboarding first."
            )
        return account.stripe_account_id

    async def import_payouts(
        self,
        church_id: str,
        limit: int = DEFAULT_IMPORT_LIMIT,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> ImportResult:
        """Import one page of payouts.

        New payouts are created with zeroed aggregates; existing ones only get
        their status and failure reason refreshed. Paid payouts that are not yet
        reconciled are listed in ``to_reconcile`` for the caller to schedule.

        Args:
            church_id: Church whose connected account is read.
            limit: Page size, capped at 100.
            start_date: Only payouts created at or after this time.
            end_date: Only payouts created at or before this time.

        Returns:
            ImportResult with imported/skipped counts and per-payout errors.

        Raises:
            StripeAccountNotConnectedError: If the church has no connected account.
            PaymentsProviderError: If the payout list cannot be fetched.
        """
        stripe_account = await self._get_stripe_account(church_id)
        limit = max(1, min(limit, MAX_IMPORT_LIMIT))

        logger.info(f"Importing up to {limit} payouts for account {stripe_account}")
        try:
            payouts = await asyncio.to_thread(
                self.payments_client.list_payouts,
                stripe_account,
                limit,
                start_date,
                end_date,
            )
        except ResourceMissingError:
            logger.info(f"Account {stripe_account} has no payouts yet")
            return ImportResult(
                message=(
                    "No payouts found in your Stripe account yet. Payouts will appear "
                    "here once you start processing donations."
                ),
                stripe_account=stripe_account,
            )

        if not payouts:
            return ImportResult(
                message="No payouts found for the specified period.",
                stripe_account=stripe_account,
            )

        result = ImportResult(stripe_account=stripe_account, total_processed=len(payouts))
        for remote in payouts:
            try:
                needs_reconciliation = await self._import_one(church_id, remote, result)
                await self.session.commit()
            except Exception as e:
                await self.session.rollback()
                message = f"Failed to import payout {remote.id}: {e}"
                logger.error(message)
                result.errors.append(message)
                continue
            if needs_reconciliation:
                result.to_reconcile.append(remote.id)

        result.message = (
            f"Import complete: {result.imported} new payouts imported, "
            f"{result.skipped} already existed"
        )
        if result.errors:
            result.message += f", {len(result.errors)} errors"
        logger.info(result.message)
        return result

    async def _import_one(self, church_id: str, remote: RemotePayout, result: ImportResult) -> bool:
        existing = await self.payout_repo.get_by_stripe_payout_id(remote.id)
        if existing is not None:
            logger.info(f"Payout {remote.id} already exists, refreshing status")
            await self.payout_repo.update_remote_status(
                existing,
                status=remote.status,
                failure_reason=remote.failure_message,
            )
            result.skipped += 1
            reconciled = existing.reconciled_at is not None
        else:
            await self.payout_repo.create(
                stripe_payout_id=remote.id,
                church_id=church_id,
                payout_date=remote.created,
                arrival_date=remote.arrival_date,
                amount=remote.amount,
                currency=remote.currency,
                status=remote.status,
                failure_reason=remote.failure_message,
                payout_schedule="automatic" if remote.automatic else "manual",
                metadata=remote.metadata or None,
            )
            result.imported += 1
            reconciled = False

        return remote.status == PayoutStatus.PAID.value and not reconciled

    async def preview(self, church_id: str) -> Dict[str, Any]:
        """Describe what an import would find without writing anything."""
        account = await self.account_repo.get_by_church_id(church_id)
        if account is None:
            return {
                "hasStripeAccount": False,
                "message": "No Stripe Connect account found. Complete onboarding first.",
            }
        stripe_account = account.stripe_account_id

        existing = await self.payout_repo.count_for_church(church_id)

        available = 0
        date_range = None
        try:
            payouts = await asyncio.to_thread(
                self.payments_client.list_payouts,
                stripe_account,
                PREVIEW_LIMIT,
            )
        except PaymentsProviderError as e:
            logger.info(f"No payouts available for account {stripe_account} yet: {e}")
            payouts = []

        if payouts:
            available = len(payouts)
            dates = [p.created for p in payouts]
            date_range = {
                "oldest": min(dates).isoformat(),
                "newest": max(dates).isoformat(),
            }

        return {
            "hasStripeAccount": True,
            "existingInDatabase": existing,
            "availableInStripe": available,
            "dateRange": date_range,
            "message": (
                f"Found {available} payouts available to import from Stripe"
                if available > 0
                else "No payouts found in your Stripe account yet"
            ),
        }

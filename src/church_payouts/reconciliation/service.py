"""Service layer for payout reconciliation."""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors import PaymentsClientBase
from ..database import (
    PayoutSummaryRepository,
    StripeConnectAccountRepository,
)
from ..settings import DEFAULT_RECONCILE_DELAY_SECONDS
from .aggregation import summarize_balance_transactions
from .models import (
    BulkReconciliationResult,
    ReconciliationResult,
    ReconciliationStatistics,
)

logger = logging.getLogger(__name__)

NO_TRANSACTIONS_ERROR = "No balance transactions found for this payout"


class ConcurrentReconciliationError(Exception):
    """Another reconciliation wrote the payout after this run read it."""


class StripeAccountNotConnectedError(ValueError):
    """The church has no connected provider account."""


class TransactionReconciler:
    """Computes and stores the financial breakdown of provider payouts.

    The reconciler trusts its caller on ownership: the payout and the
    connected account passed in must belong to the same church.
    """

    def __init__(
        self,
        session: AsyncSession,
        payments_client: PaymentsClientBase,
        delay_seconds: float = DEFAULT_RECONCILE_DELAY_SECONDS,
    ):
        """Initialize the reconciler.

        Args:
            session: Async database session. Each reconciled payout is committed on its own.
            payments_client: Client used to read balance transactions.
            delay_seconds: Pause between payouts in bulk runs.
        """
        self.session = session
        self.payments_client = payments_client
        self.delay_seconds = delay_seconds
        self.payout_repo = PayoutSummaryRepository(session)
        self.account_repo = StripeConnectAccountRepository(session)

    async def reconcile_payout(
        self,
        payout_id: str,
        stripe_account: str,
        now: Optional[datetime] = None,
    ) -> ReconciliationResult:
        """Reconcile one payout.

        Aggregates are written, and the payout marked reconciled, only when every
        step succeeds. A failure leaves the row exactly as it was.

        Args:
            payout_id: Provider payout id.
            stripe_account: Connected account that owns the payout.
            now: Reconciliation timestamp, defaults to the current UTC time.

        Returns:
            ReconciliationResult with the aggregate on success or an error message.
        """
        logger.info(f"Reconciling payout {payout_id} for account {stripe_account}")

        try:
            payout = await self.payout_repo.get_by_stripe_payout_id(payout_id)
            if payout is None:
                return ReconciliationResult(
                    success=False,
                    payout_id=payout_id,
                    error=f"Payout summary {payout_id} not found",
                )
            read_version = payout.version

            transactions = await asyncio.to_thread(
                self.payments_client.list_balance_transactions,
                payout_id,
                stripe_account,
            )
            if not transactions:
                logger.warning(f"Payout {payout_id} has no balance transactions")
                return ReconciliationResult(
                    success=False,
                    payout_id=payout_id,
                    error=NO_TRANSACTIONS_ERROR,
                )

            summary = summarize_balance_transactions(transactions)

            applied = await self.payout_repo.apply_reconciliation(
                stripe_payout_id=payout_id,
                expected_version=read_version,
                values=summary.to_column_values(),
                reconciled_at=now or datetime.utcnow(),
            )
            if not applied:
                raise ConcurrentReconciliationError(
                    f"concurrent reconciliation of payout {payout_id}; result discarded"
                )
            await self.session.commit()

            logger.info(
                f"Payout {payout_id} reconciled: {summary.transaction_count} transactions, "
                f"gross {summary.gross_volume}, net {summary.net_amount}"
            )
            return ReconciliationResult(success=True, payout_id=payout_id, summary=summary)

        except Exception as e:
            await self.session.rollback()
            logger.error(f"Reconciliation of payout {payout_id} failed: {e}")
            return ReconciliationResult(success=False, payout_id=payout_id, error=str(e))

    async def reconcile_pending_payouts(self, church_id: str) -> BulkReconciliationResult:
        """Reconcile every paid, unreconciled payout of a church, one at a time.

        Raises:
            StripeAccountNotConnectedError: If the church has no connected account.
        """
        account = await self.account_repo.get_by_church_id(church_id)
        if account is None:
            raise StripeAccountNotConnectedError(
                f"Church {church_id} has no connected Stripe account"
            )
        stripe_account = account.stripe_account_id

        pending = await self.payout_repo.list_pending_reconciliation(church_id)
        payout_ids = [p.stripe_payout_id for p in pending]
        logger.info(f"Found {len(payout_ids)} payouts to reconcile for church {church_id}")

        bulk = BulkReconciliationResult()
        for index, payout_id in enumerate(payout_ids):
            if index > 0 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            bulk.add(await self.reconcile_payout(payout_id, stripe_account))

        logger.info(
            f"Church {church_id}: {bulk.succeeded} payouts reconciled, {bulk.failed} failed"
        )
        return bulk

    async def reconcile_all_pending_payouts(self) -> BulkReconciliationResult:
        """Reconcile pending payouts of every church that has any."""
        church_ids = await self.payout_repo.list_church_ids_with_pending_reconciliation()
        logger.info(f"Reconciling pending payouts for {len(church_ids)} churches")

        combined = BulkReconciliationResult()
        for church_id in church_ids:
            try:
                bulk = await self.reconcile_pending_payouts(church_id)
            except StripeAccountNotConnectedError as e:
                logger.warning(str(e))
                continue
            for result in bulk.results:
                combined.add(result)
        return combined

    async def get_statistics(self, church_id: str, recent_limit: int = 10) -> ReconciliationStatistics:
        """Summarize the reconciliation state of a church's payouts."""
        counts = await self.payout_repo.get_statistics(church_id)
        recent = await self.payout_repo.list_recent(church_id, limit=recent_limit)
        return ReconciliationStatistics(
            total=counts["total"],
            reconciled=counts["reconciled"],
            pending=counts["pending"],
            failed=counts["failed"],
            recent_payouts=[p.to_dict() for p in recent],
        )

"""Repository layer for donation and payout persistence operations."""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Church,
    StripeConnectAccount,
    DonationTransaction,
    DonationStatus,
    PayoutSummary,
    PayoutStatus,
    IdempotencyCache,
    TERMINAL_DONATION_STATUSES,
)

logger = logging.getLogger(__name__)

# Default idempotency cache TTL in hours
DEFAULT_IDEMPOTENCY_TTL_HOURS = 24


class ChurchRepository:
    """Repository for Church lookups."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, name: str, auth_org_id: str) -> Church:
        church = Church(name=name, auth_org_id=auth_org_id)
        self.session.add(church)
        await self.session.flush()
        logger.info(f"Created church {church.id} for organization {auth_org_id}")
        return church

    async def get_by_id(self, church_id: str) -> Optional[Church]:
        result = await self.session.execute(
            select(Church).where(Church.id == church_id)
        )
        return result.scalar_one_or_none()

    async def get_by_auth_org_id(self, auth_org_id: str) -> Optional[Church]:
        """Get the church owned by an auth-provider organization."""
        result = await self.session.execute(
            select(Church).where(Church.auth_org_id == auth_org_id)
        )
        return result.scalar_one_or_none()


class StripeConnectAccountRepository:
    """Repository for StripeConnectAccount CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, church_id: str, stripe_account_id: str) -> StripeConnectAccount:
        account = StripeConnectAccount(
            church_id=church_id,
            stripe_account_id=stripe_account_id,
        )
        self.session.add(account)
        await self.session.flush()
        logger.info(f"Linked Stripe account {stripe_account_id} to church {church_id}")
        return account

    async def get_by_church_id(self, church_id: str) -> Optional[StripeConnectAccount]:
        result = await self.session.execute(
            select(StripeConnectAccount).where(
                StripeConnectAccount.church_id == church_id
            )
        )
        return result.scalar_one_or_none()


class DonationTransactionRepository:
    """Repository for DonationTransaction CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        church_id: str,
        amount: int,
        currency: str = "usd",
        stripe_payment_intent_id: Optional[str] = None,
        status: str = DonationStatus.PENDING.value,
        transaction_date: Optional[datetime] = None,
        donor_id: Optional[str] = None,
    ) -> DonationTransaction:
        """Create a new donation record.

        Args:
            church_id: Receiving church.
            amount: Donation amount in minor units.
            currency: Three-letter currency code.
            stripe_payment_intent_id: Provider payment intent backing the donation.
            status: Initial donation status.
            transaction_date: When the donation was initiated. Defaults to now.
            donor_id: Optional donor identifier.

        Returns:
            Created DonationTransaction instance.
        """
        donation = DonationTransaction(
            church_id=church_id,
            amount=amount,
            currency=currency.lower(),
            stripe_payment_intent_id=stripe_payment_intent_id,
            status=status,
            transaction_date=transaction_date or datetime.utcnow(),
            donor_id=donor_id,
        )
        self.session.add(donation)
        await self.session.flush()

        logger.info(f"Created donation {donation.id} with status {status}")
        return donation

    async def get_by_id(self, donation_id: str) -> Optional[DonationTransaction]:
        """Load a donation, refreshing any copy already held by the session."""
        result = await self.session.execute(
            select(DonationTransaction)
            .where(DonationTransaction.id == donation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_stale_pending(self, cutoff: datetime) -> List[DonationTransaction]:
        """Get pending donations older than ``cutoff`` that have a payment intent.

        Args:
            cutoff: Donations with a transaction date strictly before this are stale.

        Returns:
            List of DonationTransaction instances, oldest first.
        """
        result = await self.session.execute(
            select(DonationTransaction)
            .where(
                and_(
                    DonationTransaction.status == DonationStatus.PENDING.value,
                    DonationTransaction.transaction_date < cutoff,
                    DonationTransaction.stripe_payment_intent_id.is_not(None),
                )
            )
            .order_by(DonationTransaction.transaction_date)
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        donation: DonationTransaction,
        new_status: str,
        processed_at: Optional[datetime] = None,
    ) -> DonationTransaction:
        """Update donation status and, when given, the processed timestamp.

        Args:
            donation: DonationTransaction instance to update.
            new_status: New donation status.
            processed_at: Timestamp to record; left untouched if None.

        Returns:
            Updated DonationTransaction instance.

        Raises:
            ValueError: If the donation already reached a terminal status.
        """
        if donation.status in TERMINAL_DONATION_STATUSES and donation.status != new_status:
            raise ValueError(
                f"Donation {donation.id} is {donation.status}; cannot move to {new_status}"
            )
        donation.status = new_status
        if processed_at is not None:
            donation.processed_at = processed_at

        await self.session.flush()
        logger.info(f"Updated donation {donation.id} status to {new_status}")
        return donation


class PayoutSummaryRepository:
    """Repository for PayoutSummary CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        stripe_payout_id: str,
        church_id: str,
        payout_date: datetime,
        arrival_date: datetime,
        amount: int,
        currency: str,
        status: str,
        failure_reason: Optional[str] = None,
        payout_schedule: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PayoutSummary:
        """Create a payout row with zeroed aggregates.

        Net amount starts at the payout amount until reconciliation fills it in.
        """
        payout = PayoutSummary(
            stripe_payout_id=stripe_payout_id,
            church_id=church_id,
            payout_date=payout_date,
            arrival_date=arrival_date,
            amount=amount,
            currency=currency.lower(),
            status=status,
            failure_reason=failure_reason,
            payout_schedule=payout_schedule,
            transaction_count=0,
            gross_volume=0,
            total_fees=0,
            total_refunds=0,
            total_disputes=0,
            net_amount=amount,
        )
        if metadata:
            payout.payout_metadata = metadata

        self.session.add(payout)
        await self.session.flush()

        logger.info(f"Created payout summary {payout.id} for {stripe_payout_id}")
        return payout

    async def get_by_stripe_payout_id(self, stripe_payout_id: str) -> Optional[PayoutSummary]:
        result = await self.session.execute(
            select(PayoutSummary).where(PayoutSummary.stripe_payout_id == stripe_payout_id)
        )
        return result.scalar_one_or_none()

    async def update_remote_status(
        self,
        payout: PayoutSummary,
        status: str,
        failure_reason: Optional[str] = None,
    ) -> PayoutSummary:
        """Refresh status fields from the provider without touching aggregates."""
        payout.status = status
        payout.failure_reason = failure_reason
        payout.updated_at = datetime.utcnow()
        await self.session.flush()
        return payout

    async def apply_reconciliation(
        self,
        stripe_payout_id: str,
        expected_version: int,
        values: Dict[str, Any],
        reconciled_at: datetime,
    ) -> bool:
        """Write aggregates if the row still has ``expected_version``.

        Args:
            stripe_payout_id: Provider payout id of the row.
            expected_version: Version read before the aggregates were computed.
            values: Aggregate column values to write.
            reconciled_at: Reconciliation timestamp to record.

        Returns:
            True if the row was updated, False if the version had moved on.
        """
        result = await self.session.execute(
            update(PayoutSummary)
            .where(
                and_(
                    PayoutSummary.stripe_payout_id == stripe_payout_id,
                    PayoutSummary.version == expected_version,
                )
            )
            .values(
                **values,
                reconciled_at=reconciled_at,
                updated_at=reconciled_at,
                version=expected_version + 1,
            )
        )
        updated = result.rowcount == 1
        if not updated:
            logger.warning(
                f"Payout {stripe_payout_id} changed since version {expected_version}"
            )
        return updated

    async def list_pending_reconciliation(self, church_id: str) -> List[PayoutSummary]:
        """Get paid payouts of a church that have not been reconciled yet."""
        result = await self.session.execute(
            select(PayoutSummary)
            .where(
                and_(
                    PayoutSummary.church_id == church_id,
                    PayoutSummary.status == PayoutStatus.PAID.value,
                    PayoutSummary.reconciled_at.is_(None),
                )
            )
            .order_by(PayoutSummary.payout_date)
        )
        return list(result.scalars().all())

    async def list_church_ids_with_pending_reconciliation(self) -> List[str]:
        result = await self.session.execute(
            select(PayoutSummary.church_id)
            .where(
                and_(
                    PayoutSummary.status == PayoutStatus.PAID.value,
                    PayoutSummary.reconciled_at.is_(None),
                )
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def count_for_church(self, church_id: str) -> int:
        result = await self.session.execute(
            select(func.count(PayoutSummary.id)).where(PayoutSummary.church_id == church_id)
        )
        return result.scalar_one()

    async def get_statistics(self, church_id: str) -> Dict[str, int]:
        """Count payouts of a church by reconciliation state.

        Returns:
            Dictionary with total, reconciled, pending and failed counts.
        """
        counts: Dict[str, int] = {}
        conditions = {
            "total": None,
            "reconciled": PayoutSummary.reconciled_at.is_not(None),
            "pending": and_(
                PayoutSummary.status == PayoutStatus.PAID.value,
                PayoutSummary.reconciled_at.is_(None),
            ),
            "failed": PayoutSummary.status == PayoutStatus.FAILED.value,
        }
        for name, condition in conditions.items():
            query = select(func.count(PayoutSummary.id)).where(
                PayoutSummary.church_id == church_id
            )
            if condition is not None:
                query = query.where(condition)
            result = await self.session.execute(query)
            counts[name] = result.scalar_one()
        return counts

    async def list_recent(self, church_id: str, limit: int = 10) -> List[PayoutSummary]:
        result = await self.session.execute(
            select(PayoutSummary)
            .where(PayoutSummary.church_id == church_id)
            .order_by(PayoutSummary.payout_date.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class IdempotencyCacheRepository:
    """Repository for cached idempotent responses."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_valid(
        self,
        key: str,
        now: Optional[datetime] = None,
    ) -> Optional[IdempotencyCache]:
        """Get an unexpired cache entry.

        Args:
            key: Full cache key (operation prefix + client key).
            now: Reference time, defaults to the current UTC time.

        Returns:
            IdempotencyCache if present and unexpired, None otherwise.
        """
        result = await self.session.execute(
            select(IdempotencyCache).where(IdempotencyCache.key == key)
        )
        entry = result.scalar_one_or_none()
        if entry is None or entry.is_expired(now):
            return None
        return entry

    async def store(
        self,
        key: str,
        response_data: Dict[str, Any],
        ttl_hours: int = DEFAULT_IDEMPOTENCY_TTL_HOURS,
        now: Optional[datetime] = None,
    ) -> IdempotencyCache:
        """Store a response under ``key``, replacing an expired entry.

        Raises:
            sqlalchemy.exc.IntegrityError: If an unexpired entry already exists.
        """
        created_at = now or datetime.utcnow()
        await self.session.execute(
            delete(IdempotencyCache).where(
                and_(
                    IdempotencyCache.key == key,
                    IdempotencyCache.expires_at < created_at,
                )
            )
        )
        entry = IdempotencyCache(
            key=key,
            created_at=created_at,
            expires_at=created_at + timedelta(hours=ttl_hours),
        )
        entry.response_data = response_data
        self.session.add(entry)
        await self.session.flush()

        logger.debug(f"Cached idempotent response for {key}")
        return entry

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Delete all expired cache entries.

        Returns:
            Number of entries deleted.
        """
        result = await self.session.execute(
            delete(IdempotencyCache).where(
                IdempotencyCache.expires_at < (now or datetime.utcnow())
            )
        )
        deleted = result.rowcount or 0
        if deleted:
            logger.info(f"Deleted {deleted} expired idempotency cache entries")
        return deleted

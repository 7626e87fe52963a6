"""Cleanup of donations stuck in pending."""

import asyncio
import enum
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors import PaymentsClientBase, ResourceMissingError, RemotePaymentIntent
from ..database import DonationStatus, DonationTransactionRepository
from ..settings import DEFAULT_STALE_DONATION_DAYS
from .models import SweepError, SweepResult

logger = logging.getLogger(__name__)


class RemoteIntentStatus(str, enum.Enum):
    """Payment intent statuses reported by the provider."""
    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    REQUIRES_SOURCE_ACTION = "requires_source_action"
    REQUIRES_SOURCE = "requires_source"


class SweepTarget(str, enum.Enum):
    """What the sweeper does with a stale donation."""
    SUCCEEDED = DonationStatus.SUCCEEDED.value
    PROCESSING = DonationStatus.PROCESSING.value
    CANCELED = DonationStatus.CANCELED.value
    SKIP = "skip"


# A week-old intent still in one of these states was abandoned by the donor
ABANDONED_STATUSES = frozenset([
    RemoteIntentStatus.CANCELED,
    RemoteIntentStatus.INCOMPLETE,
    RemoteIntentStatus.REQUIRES_PAYMENT_METHOD,
    RemoteIntentStatus.REQUIRES_CONFIRMATION,
    RemoteIntentStatus.REQUIRES_ACTION,
    RemoteIntentStatus.REQUIRES_SOURCE_ACTION,
    RemoteIntentStatus.REQUIRES_SOURCE,
])

STATUS_TARGETS = {
    RemoteIntentStatus.SUCCEEDED: SweepTarget.SUCCEEDED,
    RemoteIntentStatus.PROCESSING: SweepTarget.PROCESSING,
    RemoteIntentStatus.REQUIRES_CAPTURE: SweepTarget.PROCESSING,
    **{status: SweepTarget.CANCELED for status in ABANDONED_STATUSES},
}


def map_remote_status(remote_status: str) -> SweepTarget:
    """Map a provider intent status to a sweep outcome; unknown statuses are skipped."""
    try:
        return STATUS_TARGETS[RemoteIntentStatus(remote_status)]
    except ValueError:
        return SweepTarget.SKIP


class StaleDonationSweeper:
    """Resolves pending donations older than the staleness window against the provider.

    Rows are processed sequentially and each status change is committed on its
    own, so a failure on one row never undoes or blocks the others. Running the
    sweeper again right after a run finds nothing left to update.
    """

    def __init__(
        self,
        session: AsyncSession,
        payments_client: PaymentsClientBase,
        stale_after_days: int = DEFAULT_STALE_DONATION_DAYS,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.payments_client = payments_client
        self.stale_after = timedelta(days=stale_after_days)
        self._now = now or datetime.utcnow
        self.donation_repo = DonationTransactionRepository(session)

    def cutoff(self) -> datetime:
        return self._now() - self.stale_after

    async def run(self) -> SweepResult:
        """Sweep stale pending donations.

        Returns:
            SweepResult with checked, updated and canceled counts and per-row errors.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the stale donations cannot be loaded.
        """
        cutoff = self.cutoff()
        stale = await self.donation_repo.list_stale_pending(cutoff)
        # Plain ids only; a per-row rollback expires every loaded instance
        candidates = [(d.id, d.stripe_payment_intent_id) for d in stale]
        logger.info(f"Found {len(candidates)} pending donations older than {cutoff.isoformat()}")

        result = SweepResult()
        for donation_id, payment_intent_id in candidates:
            result.checked += 1
            await self._sweep_one(donation_id, payment_intent_id, result)

        logger.info(
            f"Sweep complete: {result.checked} checked, {result.updated} updated, "
            f"{result.canceled} canceled, {len(result.errors)} errors"
        )
        return result

    async def _sweep_one(self, donation_id: str, payment_intent_id: str, result: SweepResult) -> None:
        try:
            intent = await asyncio.to_thread(
                self.payments_client.retrieve_payment_intent,
                payment_intent_id,
            )
        except ResourceMissingError as e:
            await self._cancel_missing(donation_id, payment_intent_id, e, result)
            return
        except Exception as e:
            logger.error(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
            result.errors.append(SweepError(
                id=donation_id, payment_intent_id=payment_intent_id, error=str(e),
            ))
            return

        target = map_remote_status(intent.status)
        if target is SweepTarget.SKIP:
            logger.debug(
                f"Donation {donation_id} left pending; unhandled intent status {intent.status}"
            )
            return

        try:
            donation = await self.donation_repo.get_by_id(donation_id)
            if donation is None or donation.status != DonationStatus.PENDING.value:
                # Resolved elsewhere since the scan
                return
            await self.donation_repo.update_status(
                donation,
                target.value,
                processed_at=self._processed_at(target, intent),
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Failed to update donation {donation_id}: {e}")
            result.errors.append(SweepError(
                id=donation_id, payment_intent_id=payment_intent_id, error=str(e),
            ))
            return

        result.updated += 1
        if target is SweepTarget.CANCELED:
            result.canceled += 1
        logger.info(f"Donation {donation_id} moved to {target.value} (intent {intent.status})")

    def _processed_at(self, target: SweepTarget, intent: RemotePaymentIntent) -> Optional[datetime]:
        if target is SweepTarget.CANCELED:
            return intent.canceled_at or self._now()
        if target is SweepTarget.SUCCEEDED:
            return intent.latest_charge_created or self._now()
        return None

    async def _cancel_missing(
        self,
        donation_id: str,
        payment_intent_id: str,
        error: ResourceMissingError,
        result: SweepResult,
    ) -> None:
        # Missing intents are terminal: cancel instead of reporting an error
        logger.warning(f"Payment intent {payment_intent_id} no longer exists; canceling donation {donation_id}")
        try:
            donation = await self.donation_repo.get_by_id(donation_id)
            if donation is None or donation.status != DonationStatus.PENDING.value:
                return
            await self.donation_repo.update_status(
                donation,
                DonationStatus.CANCELED.value,
                processed_at=self._now(),
            )
            await self.session.commit()
        except Exception as db_error:
            await self.session.rollback()
            logger.error(f"Failed to cancel donation {donation_id}: {db_error}")
            result.errors.append(SweepError(
                id=donation_id,
                payment_intent_id=payment_intent_id,
                error=f"{error}; follow-up error: {db_error}",
            ))
            return

        result.updated += 1
        result.canceled += 1

"""Service layer for Stripe Connect account setup."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .connectors import PaymentsClientBase, PaymentsProviderError
from .database import Church, StripeConnectAccountRepository
from .idempotency import CachedResponse

logger = logging.getLogger(__name__)


class ConnectAccountService:
    """Creates connected accounts for churches and issues onboarding and dashboard links.

    Provider failures are turned into error responses rather than raised, so
    the idempotency guard sees them as uncacheable and the client can retry.
    """

    def __init__(
        self,
        session: AsyncSession,
        payments_client: PaymentsClientBase,
        app_url: str = "http://localhost:3000",
    ):
        """Initialize the service.

        Args:
            session: Async database session.
            payments_client: Provider client.
            app_url: Public base URL used for default onboarding redirect URLs.
        """
        self.session = session
        self.payments_client = payments_client
        self.account_repo = StripeConnectAccountRepository(session)
        self.default_redirect_url = f"{app_url}/banking"

    async def create_account(
        self,
        church: Church,
        email: Optional[str] = None,
        refresh_url: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> CachedResponse:
        """Create (or reuse) the church's connected account and an onboarding link.

        Args:
            church: Church to onboard.
            email: Optional contact email for the new account.
            refresh_url: Where the provider sends an expired onboarding session.
            return_url: Where the provider sends a finished onboarding session.

        Returns:
            CachedResponse with ``accountId``, ``url`` and ``message``.
        """
        refresh_url = refresh_url or self.default_redirect_url
        return_url = return_url or self.default_redirect_url

        existing = await self.account_repo.get_by_church_id(church.id)
        try:
            if existing is not None:
                account_id = existing.stripe_account_id
                message = "Stripe account already exists. New onboarding link generated."
            else:
                account_id = await asyncio.to_thread(
                    self.payments_client.create_account,
                    church.id,
                    church.name,
                    email,
                )
                await self.account_repo.create(church_id=church.id, stripe_account_id=account_id)
                message = "New Stripe account created and onboarding link generated."

            url = await asyncio.to_thread(
                self.payments_client.create_account_link,
                account_id,
                refresh_url,
                return_url,
            )
        except PaymentsProviderError as e:
            logger.error(f"Stripe account setup failed for church {church.id}: {e}")
            return CachedResponse(
                body={"error": f"Stripe API error: {e}"},
                status=e.http_status or 500,
            )

        logger.info(f"Onboarding link issued for church {church.id} (account {account_id})")
        return CachedResponse(body={"accountId": account_id, "url": url, "message": message})

    async def create_login_link(self, church: Church) -> CachedResponse:
        """Issue an Express dashboard login link for the church's account."""
        existing = await self.account_repo.get_by_church_id(church.id)
        if existing is None:
            return CachedResponse(body={"error": "Stripe account not connected"}, status=400)

        try:
            url = await asyncio.to_thread(
                self.payments_client.create_login_link,
                existing.stripe_account_id,
            )
        except PaymentsProviderError as e:
            logger.error(f"Error creating login link for church {church.id}: {e}")
            return CachedResponse(body={"error": "Failed to create login link"}, status=500)

        return CachedResponse(body={"url": url})

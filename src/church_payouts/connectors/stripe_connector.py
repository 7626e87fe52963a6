"""Stripe Connect implementation of the payments client."""

import os
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

import stripe

from .base import (
    PaymentsClientBase,
    PaymentsProviderError,
    ResourceMissingError,
    RemotePaymentIntent,
    RemotePayout,
    BalanceTransaction,
)

logger = logging.getLogger(__name__)

# Merchant category code for charitable and social service organizations
CHARITABLE_ORGANIZATION_MCC = "8398"

# Stripe caps list pages at 100 objects
MAX_PAGE_SIZE = 100


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.utcfromtimestamp(value)


def _to_timestamp(value: datetime) -> int:
    return int((value - datetime(1970, 1, 1)).total_seconds())


def _translate_error(error: stripe.StripeError, context: str) -> PaymentsProviderError:
    """Map a Stripe SDK error to the canonical provider error types."""
    code = getattr(error, "code", None)
    http_status = getattr(error, "http_status", None)
    message = getattr(error, "user_message", None) or str(error)
    if code == "resource_missing" or (
        isinstance(error, stripe.InvalidRequestError) and http_status == 404
    ):
        return ResourceMissingError(
            f"{context}: {message}", code="resource_missing", http_status=http_status
        )
    if isinstance(error, stripe.AuthenticationError):
        logger.error("Stripe authentication failed")
    elif isinstance(error, stripe.APIConnectionError):
        logger.error("Failed to connect to Stripe API")
    return PaymentsProviderError(f"{context}: {message}", code=code, http_status=http_status)


class StripeConnector(PaymentsClientBase):
    """
    Payments client backed by stripe-python. All payout and balance reads are
    made on behalf of the church's connected account.
    """

    def __init__(self, api_key: Optional[str] = None):
        """Initialize the connector.

        Args:
            api_key: Stripe secret key. Falls back to STRIPE_API_KEY env var.

        Raises:
            ValueError: If no API key is provided or found.
        """
        self._api_key = api_key or os.getenv("STRIPE_API_KEY")
        if not self._api_key:
            raise ValueError(
                "STRIPE_API_KEY must be provided either as argument or environment variable"
            )

    def _to_payout(self, payout: Any) -> RemotePayout:
        metadata = getattr(payout, "metadata", None)
        return RemotePayout(
            id=payout.id,
            amount=payout.amount,
            currency=payout.currency,
            status=payout.status,
            created=_from_timestamp(payout.created),
            arrival_date=_from_timestamp(payout.arrival_date),
            failure_message=getattr(payout, "failure_message", None),
            automatic=bool(getattr(payout, "automatic", True)),
            metadata=dict(metadata) if metadata else {},
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> RemotePaymentIntent:
        try:
            pi = stripe.PaymentIntent.retrieve(
                payment_intent_id,
                expand=["latest_charge"],
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise _translate_error(e, f"PaymentIntent {payment_intent_id}") from e

        charge_created = None
        charge = getattr(pi, "latest_charge", None)
        # Unexpanded charges come back as bare ids
        if charge is not None and not isinstance(charge, str):
            charge_created = _from_timestamp(getattr(charge, "created", None))

        return RemotePaymentIntent(
            id=pi.id,
            status=pi.status,
            canceled_at=_from_timestamp(getattr(pi, "canceled_at", None)),
            latest_charge_created=charge_created,
        )

    def retrieve_payout(self, payout_id: str, stripe_account: str) -> RemotePayout:
        try:
            payout = stripe.Payout.retrieve(
                payout_id,
                stripe_account=stripe_account,
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise _translate_error(e, f"Payout {payout_id}") from e
        return self._to_payout(payout)

    def list_payouts(
        self,
        stripe_account: str,
        limit: int = 10,
        created_gte: Optional[datetime] = None,
        created_lte: Optional[datetime] = None,
    ) -> List[RemotePayout]:
        params: Dict[str, Any] = {"limit": min(limit, MAX_PAGE_SIZE)}
        created: Dict[str, int] = {}
        if created_gte is not None:
            created["gte"] = _to_timestamp(created_gte)
        if created_lte is not None:
            created["lte"] = _to_timestamp(created_lte)
        if created:
            params["created"] = created

        try:
            page = stripe.Payout.list(
                stripe_account=stripe_account,
                api_key=self._api_key,
                **params,
            )
        except stripe.StripeError as e:
            raise _translate_error(e, f"Payouts of {stripe_account}") from e

        payouts = [self._to_payout(p) for p in page.data]
        logger.info(f"Fetched {len(payouts)} payouts for account {stripe_account}")
        return payouts

    def list_balance_transactions(self, payout_id: str, stripe_account: str) -> List[BalanceTransaction]:
        transactions: List[BalanceTransaction] = []
        try:
            page = stripe.BalanceTransaction.list(
                payout=payout_id,
                limit=MAX_PAGE_SIZE,
                stripe_account=stripe_account,
                api_key=self._api_key,
            )
            for txn in page.auto_paging_iter():
                transactions.append(BalanceTransaction(
                    id=txn.id,
                    type=txn.type,
                    amount=txn.amount,
                    fee=txn.fee or 0,
                    reporting_category=getattr(txn, "reporting_category", None),
                ))
        except stripe.StripeError as e:
            raise _translate_error(e, f"Balance transactions of payout {payout_id}") from e

        logger.info(f"Fetched {len(transactions)} balance transactions for payout {payout_id}")
        return transactions

    def create_account(self, church_id: str, church_name: str, email: Optional[str] = None) -> str:
        params: Dict[str, Any] = {
            "type": "express",
            "country": "US",
            "business_type": "non_profit",
            "business_profile": {
                "mcc": CHARITABLE_ORGANIZATION_MCC,
                "name": church_name,
            },
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
                "link_payments": {"requested": True},
                "us_bank_account_ach_payments": {"requested": True},
            },
            "metadata": {"churchId": church_id},
        }
        if email:
            params["email"] = email

        try:
            account = stripe.Account.create(api_key=self._api_key, **params)
        except stripe.StripeError as e:
            raise _translate_error(e, f"Account creation for church {church_id}") from e

        logger.info(f"Created Stripe account {account.id} for church {church_id}")
        return account.id

    def create_account_link(self, stripe_account: str, refresh_url: str, return_url: str) -> str:
        try:
            link = stripe.AccountLink.create(
                account=stripe_account,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
                api_key=self._api_key,
            )
        except stripe.StripeError as e:
            raise _translate_error(e, f"Account link for {stripe_account}") from e
        return link.url

    def create_login_link(self, stripe_account: str) -> str:
        try:
            link = stripe.Account.create_login_link(stripe_account, api_key=self._api_key)
        except stripe.StripeError as e:
            raise _translate_error(e, f"Login link for {stripe_account}") from e
        return link.url


def get_payments_client(provider: str = "stripe", api_key: Optional[str] = None) -> PaymentsClientBase:
    """Factory function to get the payments client for a provider.

    Raises:
        ValueError: If the provider is not supported or not configured.
    """
    clients = {
        "stripe": StripeConnector,
    }

    client_class = clients.get(provider.lower())
    if not client_class:
        raise ValueError(f"Unsupported payments provider: {provider}")

    return client_class(api_key=api_key)

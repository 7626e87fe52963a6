from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class PaymentsProviderError(Exception):
    """Raised when the payments provider rejects or fails a request."""

    def __init__(self, message: str, code: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.http_status = http_status


class ResourceMissingError(PaymentsProviderError):
    """The requested provider object does not exist (or is no longer visible to us)."""


# Canonical models
class RemotePaymentIntent(BaseModel):
    id: str
    status: str  # provider status string, unmapped
    canceled_at: Optional[datetime] = None
    latest_charge_created: Optional[datetime] = None


class RemotePayout(BaseModel):
    id: str
    amount: int  # minor units
    currency: str
    status: str  # pending|in_transit|paid|failed|canceled
    created: datetime
    arrival_date: datetime
    failure_message: Optional[str] = None
    automatic: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BalanceTransaction(BaseModel):
    id: str
    type: str  # charge|payment|refund|adjustment|payout|...
    amount: int  # signed minor units
    fee: int = 0
    reporting_category: Optional[str] = None


class PaymentsClientBase(ABC):
    """
    Provider operations used by the reconciliation jobs and account setup.
    Calls are blocking; async callers should run them in a worker thread.
    Missing objects raise ResourceMissingError, other failures PaymentsProviderError.
    """

    @abstractmethod
    def retrieve_payment_intent(self, payment_intent_id: str) -> RemotePaymentIntent:
        raise NotImplementedError

    @abstractmethod
    def retrieve_payout(self, payout_id: str, stripe_account: str) -> RemotePayout:
        raise NotImplementedError

    @abstractmethod
    def list_payouts(
        self,
        stripe_account: str,
        limit: int = 10,
        created_gte: Optional[datetime] = None,
        created_lte: Optional[datetime] = None,
    ) -> List[RemotePayout]:
        """
        List the most recent payouts of a connected account (one page, newest first).
        """
        raise NotImplementedError

    @abstractmethod
    def list_balance_transactions(self, payout_id: str, stripe_account: str) -> List[BalanceTransaction]:
        """
        Return every balance transaction settled by a payout, across all pages.
        """
        raise NotImplementedError

    @abstractmethod
    def create_account(self, church_id: str, church_name: str, email: Optional[str] = None) -> str:
        """
        Create a connected sub-account for a church; return its id.
        """
        raise NotImplementedError

    @abstractmethod
    def create_account_link(self, stripe_account: str, refresh_url: str, return_url: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def create_login_link(self, stripe_account: str) -> str:
        raise NotImplementedError

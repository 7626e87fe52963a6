"""SQLAlchemy models for donation and payout persistence."""

import uuid
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class DonationStatus(str, enum.Enum):
    """Local donation statuses."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"


# Statuses a donation never leaves once reached
TERMINAL_DONATION_STATUSES = frozenset([
    DonationStatus.SUCCEEDED.value,
    DonationStatus.CANCELED.value,
    DonationStatus.FAILED.value,
])


class PayoutStatus(str, enum.Enum):
    """Provider payout statuses."""
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    FAILED = "failed"
    CANCELED = "canceled"


def _new_id() -> str:
    return str(uuid.uuid4())


class Church(Base):
    """Tenant record; owned by one auth-provider organization."""
    __tablename__ = "churches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    auth_org_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    stripe_connect_account: Mapped[Optional["StripeConnectAccount"]] = relationship(
        "StripeConnectAccount",
        back_populates="church",
        uselist=False,
        cascade="all, delete-orphan",
    )
    donations: Mapped[List["DonationTransaction"]] = relationship(
        "DonationTransaction",
        back_populates="church",
    )
    payouts: Mapped[List["PayoutSummary"]] = relationship(
        "PayoutSummary",
        back_populates="church",
    )


class StripeConnectAccount(Base):
    """The provider sub-account a church receives donations into."""
    __tablename__ = "stripe_connect_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False, unique=True)
    stripe_account_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    church: Mapped["Church"] = relationship("Church", back_populates="stripe_connect_account")


class DonationTransaction(Base):
    """A single donation attempt backed by a provider payment intent."""
    __tablename__ = "donation_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False)
    donor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=DonationStatus.PENDING.value)

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    church: Mapped["Church"] = relationship("Church", back_populates="donations")

    __table_args__ = (
        Index("ix_donation_transactions_church_id", "church_id"),
        Index("ix_donation_transactions_status_transaction_date", "status", "transaction_date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert donation to dictionary representation."""
        return {
            "id": self.id,
            "church_id": self.church_id,
            "donor_id": self.donor_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


class PayoutSummary(Base):
    """Local record of one provider payout and its reconciled breakdown."""
    __tablename__ = "payout_summaries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    stripe_payout_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    church_id: Mapped[str] = mapped_column(String(36), ForeignKey("churches.id"), nullable=False)

    payout_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    arrival_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payout_schedule: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Aggregates written by reconciliation
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gross_volume: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_fees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_refunds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_disputes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reconciled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Bumped on every aggregate write; reconciliation updates compare against it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payout_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    church: Mapped["Church"] = relationship("Church", back_populates="payouts")

    __table_args__ = (
        Index("ix_payout_summaries_church_id", "church_id"),
        Index("ix_payout_summaries_payout_date", "payout_date"),
        Index("ix_payout_summaries_status", "status"),
        Index("ix_payout_summaries_church_id_payout_date", "church_id", "payout_date"),
    )

    @property
    def payout_metadata(self) -> Optional[Dict[str, Any]]:
        """Get provider metadata as dictionary."""
        if self.payout_metadata_json:
            return json.loads(self.payout_metadata_json)
        return None

    @payout_metadata.setter
    def payout_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        """Set provider metadata from dictionary."""
        if value is not None:
            self.payout_metadata_json = json.dumps(value)
        else:
            self.payout_metadata_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert payout summary to dictionary representation."""
        return {
            "id": self.id,
            "stripe_payout_id": self.stripe_payout_id,
            "church_id": self.church_id,
            "payout_date": self.payout_date.isoformat() if self.payout_date else None,
            "arrival_date": self.arrival_date.isoformat() if self.arrival_date else None,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "payout_schedule": self.payout_schedule,
            "transaction_count": self.transaction_count,
            "gross_volume": self.gross_volume,
            "total_fees": self.total_fees,
            "total_refunds": self.total_refunds,
            "total_disputes": self.total_disputes,
            "net_amount": self.net_amount,
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "metadata": self.payout_metadata,
        }


class IdempotencyCache(Base):
    """Cached response of a mutating request, keyed by operation prefix + client key."""
    __tablename__ = "idempotency_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Serialized {body, status, headers}
    response_data_json: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_idempotency_cache_expires_at", "expires_at"),
    )

    @property
    def response_data(self) -> Dict[str, Any]:
        """Get response data as dictionary."""
        return json.loads(self.response_data_json)

    @response_data.setter
    def response_data(self, value: Dict[str, Any]) -> None:
        """Set response data from dictionary."""
        self.response_data_json = json.dumps(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the cached response has expired."""
        return (now or datetime.utcnow()) > self.expires_at

"""Database module for donation and payout persistence."""

from .models import (
    Base,
    Church,
    StripeConnectAccount,
    DonationTransaction,
    DonationStatus,
    PayoutSummary,
    PayoutStatus,
    IdempotencyCache,
    TERMINAL_DONATION_STATUSES,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    make_session_factory,
    get_async_session_factory,
    session_scope,
    get_db_context,
)
from .repository import (
    ChurchRepository,
    StripeConnectAccountRepository,
    DonationTransactionRepository,
    PayoutSummaryRepository,
    IdempotencyCacheRepository,
    DEFAULT_IDEMPOTENCY_TTL_HOURS,
)

__all__ = [
    # Models
    "Base",
    "Church",
    "StripeConnectAccount",
    "DonationTransaction",
    "DonationStatus",
    "PayoutSummary",
    "PayoutStatus",
    "IdempotencyCache",
    "TERMINAL_DONATION_STATUSES",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "make_session_factory",
    "get_async_session_factory",
    "session_scope",
    "get_db_context",
    # Repositories
    "ChurchRepository",
    "StripeConnectAccountRepository",
    "DonationTransactionRepository",
    "PayoutSummaryRepository",
    "IdempotencyCacheRepository",
    "DEFAULT_IDEMPOTENCY_TTL_HOURS",
]

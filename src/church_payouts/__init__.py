# church_payouts package
__version__ = "0.1.0"

from .database import (
    Church,
    StripeConnectAccount,
    DonationTransaction,
    DonationStatus,
    PayoutSummary,
    PayoutStatus,
    IdempotencyCache,
    init_db,
    close_db,
    get_db,
)
from .settings import Settings, get_settings

from .reconciliation import (
    StaleDonationSweeper,
    TransactionReconciler,
    HistoricalPayoutImporter,
    ReportGenerator,
)

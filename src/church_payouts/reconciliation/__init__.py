"""Payout reconciliation and stale donation cleanup.

This module provides the two scheduled jobs that keep local donation and
payout records consistent with the payments provider.

Features:
- Resolve donations stuck in pending against the provider's payment intents
- Aggregate a payout's balance transactions into gross, fees, refunds, disputes and net
- Backfill payout summaries from the provider's payout history
- Render job results as JSON, CSV or text
"""

from .models import (
    PayoutAggregate,
    ReconciliationResult,
    BulkReconciliationResult,
    SweepError,
    SweepResult,
    ImportResult,
    ReconciliationStatistics,
)
from .aggregation import summarize_balance_transactions
from .sweeper import (
    RemoteIntentStatus,
    SweepTarget,
    StaleDonationSweeper,
    map_remote_status,
)
from .service import (
    ConcurrentReconciliationError,
    StripeAccountNotConnectedError,
    TransactionReconciler,
)
from .importer import HistoricalPayoutImporter
from .report import ReportGenerator

__all__ = [
    # Models
    "PayoutAggregate",
    "ReconciliationResult",
    "BulkReconciliationResult",
    "SweepError",
    "SweepResult",
    "ImportResult",
    "ReconciliationStatistics",
    # Core Components
    "summarize_balance_transactions",
    "RemoteIntentStatus",
    "SweepTarget",
    "StaleDonationSweeper",
    "map_remote_status",
    "ConcurrentReconciliationError",
    "StripeAccountNotConnectedError",
    "TransactionReconciler",
    "HistoricalPayoutImporter",
    "ReportGenerator",
]

"""Aggregation of balance transactions into a payout breakdown."""

import logging
from typing import Iterable

from ..connectors.base import BalanceTransaction
from .models import PayoutAggregate

logger = logging.getLogger(__name__)

# Balance transaction types that carry donated money into the payout
INCOME_TYPES = frozenset(["charge", "payment"])
REFUND_TYPES = frozenset(["refund"])
ADJUSTMENT_TYPES = frozenset(["adjustment"])
DISPUTE_REPORTING_CATEGORY = "dispute"


def summarize_balance_transactions(
    transactions: Iterable[BalanceTransaction],
) -> PayoutAggregate:
    """Aggregate a payout's balance transactions.

    Charges and payments add to gross volume and fees. Refunds add their
    absolute amount to refunds and their (usually negative) fee to fees.
    Adjustments reported as disputes add their absolute amount to disputes.
    Every transaction is counted; other types are otherwise ignored.

    Args:
        transactions: Balance transactions settled by the payout.

    Returns:
        PayoutAggregate with net = gross - fees - refunds - disputes.
    """
    count = 0
    gross = 0
    fees = 0
    refunds = 0
    disputes = 0

    for txn in transactions:
        count += 1
        if txn.type in INCOME_TYPES:
            gross += txn.amount
            fees += txn.fee
        elif txn.type in REFUND_TYPES:
            refunds += abs(txn.amount)
            fees += txn.fee
        elif txn.type in ADJUSTMENT_TYPES and txn.reporting_category == DISPUTE_REPORTING_CATEGORY:
            disputes += abs(txn.amount)
        else:
            logger.debug(f"Ignoring balance transaction {txn.id} of type {txn.type}")

    return PayoutAggregate(
        transaction_count=count,
        gross_volume=gross,
        total_fees=fees,
        total_refunds=refunds,
        total_disputes=disputes,
        net_amount=gross - fees - refunds - disputes,
    )

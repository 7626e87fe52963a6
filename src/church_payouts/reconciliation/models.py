"""Models for payout reconciliation and donation cleanup."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


class PayoutAggregate(BaseModel):
    """Financial breakdown of one payout, computed from its balance transactions."""
    transaction_count: int = Field(default=0, description="Number of balance transactions in the payout")
    gross_volume: int = Field(default=0, description="Sum of charge and payment amounts")
    total_fees: int = Field(default=0, description="Provider fees, net of refunded fees")
    total_refunds: int = Field(default=0, description="Absolute sum of refunds")
    total_disputes: int = Field(default=0, description="Absolute sum of dispute adjustments")
    net_amount: int = Field(default=0, description="gross - fees - refunds - disputes")

    def to_column_values(self) -> Dict[str, int]:
        """Return the aggregate as PayoutSummary column values."""
        return self.model_dump()


class ReconciliationResult(BaseModel):
    """Outcome of reconciling a single payout."""
    success: bool
    payout_id: str = Field(..., description="Provider payout id")
    summary: Optional[PayoutAggregate] = None
    error: Optional[str] = None

    def to_response_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.summary is not None:
            result["summary"] = self.summary.model_dump()
        if self.error is not None:
            result["error"] = self.error
        return result


class BulkReconciliationResult(BaseModel):
    """Outcome of reconciling every pending payout of one or more churches."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[ReconciliationResult] = Field(default_factory=list)

    def add(self, result: ReconciliationResult) -> None:
        self.results.append(result)
        self.processed += 1
        if result.success:
            self.succeeded += 1
        else:
            self.failed += 1


class SweepError(BaseModel):
    """A donation the sweeper could not resolve."""
    id: str = Field(..., description="Donation id")
    payment_intent_id: Optional[str] = Field(None, description="Provider payment intent id")
    error: str = Field(..., description="Error message")


class SweepResult(BaseModel):
    """Counters reported by one stale donation sweep."""
    checked: int = 0
    updated: int = 0
    canceled: int = 0
    errors: List[SweepError] = Field(default_factory=list)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "canceled": self.canceled,
            "errors": [e.model_dump() for e in self.errors],
        }


class ImportResult(BaseModel):
    """Outcome of a historical payout import."""
    success: bool = True
    message: str = ""
    imported: int = 0
    skipped: int = 0
    total_processed: int = 0
    errors: List[str] = Field(default_factory=list)
    # Paid, unreconciled payouts handed to a background reconciliation
    stripe_account: Optional[str] = Field(default=None, exclude=True)
    to_reconcile: List[str] = Field(default_factory=list, exclude=True)

    def to_response_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "imported": self.imported,
            "skipped": self.skipped,
            "totalProcessed": self.total_processed,
        }
        if self.errors:
            result["errors"] = self.errors
        return result


class ReconciliationStatistics(BaseModel):
    """Payout counts for one church plus its most recent payouts."""
    total: int = 0
    reconciled: int = 0
    pending: int = 0
    failed: int = 0
    recent_payouts: List[Dict[str, Any]] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "statistics": {
                "total": self.total,
                "reconciled": self.reconciled,
                "pending": self.pending,
                "failed": self.failed,
            },
            "recentPayouts": self.recent_payouts,
        }

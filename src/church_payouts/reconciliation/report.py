"""Text and JSON rendering of job results for the CLI."""

import csv
import io
import json
from datetime import datetime
from typing import Union

from .models import BulkReconciliationResult, ReconciliationResult, SweepResult

JobResult = Union[SweepResult, ReconciliationResult, BulkReconciliationResult]


class ReportGenerator:
    """Generator for job reports in various formats."""

    def __init__(self, result: JobResult):
        """Initialize the report generator.

        Args:
            result: The sweep or reconciliation result to render.
        """
        self.result = result

    def to_json(self, indent: int = 2) -> str:
        """Generate JSON representation of the result."""
        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(self.result.model_dump(), indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """Generate CSV rows for per-item outcomes.

        Sweeps list their errors; reconciliations list one row per payout.
        """
        output = io.StringIO()
        writer = csv.writer(output)

        if isinstance(self.result, SweepResult):
            writer.writerow(["donation_id", "payment_intent_id", "error"])
            for error in self.result.errors:
                writer.writerow([error.id, error.payment_intent_id or "", error.error])
            return output.getvalue()

        results = (
            self.result.results
            if isinstance(self.result, BulkReconciliationResult)
            else [self.result]
        )
        writer.writerow([
            "payout_id", "success", "transaction_count", "gross_volume",
            "total_fees", "total_refunds", "total_disputes", "net_amount", "error",
        ])
        for r in results:
            s = r.summary
            writer.writerow([
                r.payout_id,
                r.success,
                s.transaction_count if s else "",
                s.gross_volume if s else "",
                s.total_fees if s else "",
                s.total_refunds if s else "",
                s.total_disputes if s else "",
                s.net_amount if s else "",
                r.error or "",
            ])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary."""
        if isinstance(self.result, SweepResult):
            lines = [
                "=" * 60,
                "STALE DONATION CLEANUP",
                "=" * 60,
                f"Checked: {self.result.checked}",
                f"Updated: {self.result.updated}",
                f"Canceled: {self.result.canceled}",
                f"Errors: {len(self.result.errors)}",
            ]
            for error in self.result.errors:
                lines.append(f"  {error.id} ({error.payment_intent_id}): {error.error}")
            lines.append("=" * 60)
            return "\n".join(lines)

        if isinstance(self.result, ReconciliationResult):
            bulk = BulkReconciliationResult()
            bulk.add(self.result)
        else:
            bulk = self.result

        lines = [
            "=" * 60,
            "PAYOUT RECONCILIATION",
            "=" * 60,
            f"Processed: {bulk.processed}",
            f"Succeeded: {bulk.succeeded}",
            f"Failed: {bulk.failed}",
            "",
        ]
        for r in bulk.results:
            if r.success and r.summary:
                lines.append(
                    f"  {r.payout_id}: {r.summary.transaction_count} transactions, "
                    f"gross {r.summary.gross_volume}, fees {r.summary.total_fees}, "
                    f"refunds {r.summary.total_refunds}, disputes {r.summary.total_disputes}, "
                    f"net {r.summary.net_amount}"
                )
            else:
                lines.append(f"  {r.payout_id}: FAILED - {r.error}")
        lines.append("=" * 60)
        return "\n".join(lines)

    def render(self, format: str = "json") -> str:
        """Render in ``format`` ('json', 'csv' or 'text')."""
        if format == "json":
            return self.to_json()
        elif format == "csv":
            return self.to_csv()
        elif format == "text":
            return self.to_summary_text()
        else:
            raise ValueError(f"Unsupported report format: {format}")

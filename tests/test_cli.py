"""Tests for the command-line interface and report rendering."""

import csv
import io
import json
from unittest.mock import patch

import pytest

from church_payouts.reconciliation import (
    BulkReconciliationResult,
    PayoutAggregate,
    ReconciliationResult,
    ReportGenerator,
    SweepError,
    SweepResult,
)
from church_payouts.reconciliation.cli import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_PARTIAL_FAILURE,
    create_parser,
    has_failures,
    main,
    run_job_async,
)


@pytest.fixture
def sweep_result():
    return SweepResult(
        checked=3,
        updated=2,
        canceled=1,
        errors=[SweepError(id="don_1", payment_intent_id="pi_1", error="timeout")],
    )


@pytest.fixture
def bulk_result():
    bulk = BulkReconciliationResult()
    bulk.add(ReconciliationResult(
        success=True,
        payout_id="po_1",
        summary=PayoutAggregate(
            transaction_count=2, gross_volume=1000, total_fees=59, net_amount=941,
        ),
    ))
    bulk.add(ReconciliationResult(success=False, payout_id="po_2", error="No balance transactions found for this payout"))
    return bulk


class TestParser:
    """Tests for argument parsing."""

    def test_reconcile_requires_payout_and_account(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["reconcile", "--payout", "po_1"])

    def test_reconcile_arguments(self):
        args = create_parser().parse_args(
            ["reconcile", "--payout", "po_1", "--account", "acct_1", "--format", "text"]
        )
        assert args.payout == "po_1"
        assert args.account == "acct_1"
        assert args.format == "text"

    def test_sweep_defaults(self):
        args = create_parser().parse_args(["sweep"])
        assert args.days is None
        assert args.format == "json"
        assert args.output is None

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_PARTIAL_FAILURE
        assert "usage" in capsys.readouterr().out


class TestExitCodes:
    """Tests for job outcome to exit code mapping."""

    def test_has_failures(self, sweep_result, bulk_result):
        assert has_failures(sweep_result) is True
        assert has_failures(SweepResult(checked=1, updated=1)) is False
        assert has_failures(bulk_result) is True
        assert has_failures(ReconciliationResult(success=True, payout_id="po_1")) is False

    async def test_run_job_reports_and_exits_ok(self, payments_client, capsys):
        async def job(session, client):
            assert client is payments_client
            return SweepResult(checked=0)

        code = await run_job_async(
            job,
            database_url="sqlite+aiosqlite:///:memory:",
            payments_client=payments_client,
        )

        assert code == EXIT_OK
        assert json.loads(capsys.readouterr().out)["checked"] == 0

    async def test_run_job_partial_failure(self, payments_client, bulk_result, tmp_path):
        async def job(session, client):
            return bulk_result

        output = tmp_path / "report.csv"
        code = await run_job_async(
            job,
            output_file=str(output),
            output_format="csv",
            database_url="sqlite+aiosqlite:///:memory:",
            payments_client=payments_client,
        )

        assert code == EXIT_PARTIAL_FAILURE
        assert "po_2" in output.read_text()

    async def test_run_job_error(self, payments_client):
        async def job(session, client):
            raise RuntimeError("database unavailable")

        code = await run_job_async(
            job,
            database_url="sqlite+aiosqlite:///:memory:",
            payments_client=payments_client,
        )

        assert code == EXIT_ERROR

    def test_main_dispatches_sweep(self):
        with patch("church_payouts.reconciliation.cli.run_job_async") as run_job, \
                patch("church_payouts.reconciliation.cli.asyncio.run", return_value=EXIT_OK) as run:
            assert main(["sweep", "--days", "14", "--format", "text"]) == EXIT_OK

        run.assert_called_once()
        assert run_job.call_args.kwargs["output_format"] == "text"


class TestReportGenerator:
    """Tests for ReportGenerator."""

    def test_sweep_json(self, sweep_result):
        data = json.loads(ReportGenerator(sweep_result).render("json"))
        assert data["canceled"] == 1
        assert data["errors"][0]["payment_intent_id"] == "pi_1"

    def test_sweep_csv_lists_errors(self, sweep_result):
        rows = list(csv.reader(io.StringIO(ReportGenerator(sweep_result).to_csv())))
        assert rows[0] == ["donation_id", "payment_intent_id", "error"]
        assert rows[1] == ["don_1", "pi_1", "timeout"]

    def test_reconciliation_csv(self, bulk_result):
        rows = list(csv.reader(io.StringIO(ReportGenerator(bulk_result).to_csv())))
        assert len(rows) == 3
        assert rows[1][0] == "po_1"
        assert rows[1][7] == "941"
        assert rows[2][-1] == "No balance transactions found for this payout"

    def test_text_summary(self, bulk_result):
        text = ReportGenerator(bulk_result).render("text")
        assert "Succeeded: 1" in text
        assert "po_2: FAILED" in text

    def test_single_result_text(self):
        result = ReconciliationResult(success=True, payout_id="po_1", summary=PayoutAggregate(net_amount=5))
        assert "Processed: 1" in ReportGenerator(result).to_summary_text()

    def test_unknown_format(self, sweep_result):
        with pytest.raises(ValueError):
            ReportGenerator(sweep_result).render("xml")

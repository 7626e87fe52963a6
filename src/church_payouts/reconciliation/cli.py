#!/usr/bin/env python3
"""Command-line interface for the payout jobs.

Runs the same jobs as the HTTP endpoints, against the database configured
by DATABASE_URL and the provider key in STRIPE_API_KEY.

Usage:
    church-payouts sweep
    church-payouts reconcile --payout po_123 --account acct_123 --format text
    church-payouts reconcile-all --output report.csv --format csv
    church-payouts purge-idempotency-cache
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors import PaymentsClientBase, StripeConnector
from ..database import (
    Base,
    IdempotencyCacheRepository,
    create_async_engine,
    get_database_url,
    make_session_factory,
)
from ..settings import get_settings
from .models import SweepResult
from .report import JobResult, ReportGenerator
from .service import TransactionReconciler
from .sweeper import StaleDonationSweeper

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_ERROR = 2

Job = Callable[[AsyncSession, PaymentsClientBase], Awaitable[JobResult]]


def has_failures(result: JobResult) -> bool:
    """True if any donation or payout in the result could not be processed."""
    if isinstance(result, SweepResult):
        return bool(result.errors)
    if hasattr(result, "failed"):
        return result.failed > 0
    return not result.success


async def run_job_async(
    job: Job,
    output_file: Optional[str] = None,
    output_format: str = "json",
    database_url: Optional[str] = None,
    payments_client: Optional[PaymentsClientBase] = None,
) -> int:
    """Run one job in its own engine and print or write its report.

    Args:
        job: Coroutine factory taking a session and a payments client.
        output_file: Optional output file path.
        output_format: Output format ('json', 'csv' or 'text').
        database_url: Database URL, defaults to DATABASE_URL.
        payments_client: Provider client, defaults to a StripeConnector.

    Returns:
        Exit code (0 success, 1 some items failed, 2 the job could not run).
    """
    settings = get_settings()
    if payments_client is None:
        if not settings.stripe_api_key:
            logger.error("STRIPE_API_KEY environment variable is not configured")
            return EXIT_ERROR
        payments_client = StripeConnector(api_key=settings.stripe_api_key)

    engine = create_async_engine(database_url=database_url or get_database_url())

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = make_session_factory(engine)

    try:
        async with session_factory() as session:
            result = await job(session, payments_client)

        output = ReportGenerator(result).render(output_format)
        if output_file:
            with open(output_file, 'w') as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        if has_failures(result):
            logger.warning("Job completed with failures")
            return EXIT_PARTIAL_FAILURE
        return EXIT_OK

    except Exception as e:
        logger.error(f"Job failed: {e}")
        return EXIT_ERROR

    finally:
        await engine.dispose()


def sweep_job(stale_after_days: int) -> Job:
    async def job(session, payments_client):
        return await StaleDonationSweeper(
            session,
            payments_client,
            stale_after_days=stale_after_days,
        ).run()
    return job


def reconcile_job(payout_id: str, stripe_account: str) -> Job:
    async def job(session, payments_client):
        return await TransactionReconciler(session, payments_client).reconcile_payout(
            payout_id,
            stripe_account,
        )
    return job


def reconcile_all_job(delay_seconds: float) -> Job:
    async def job(session, payments_client):
        return await TransactionReconciler(
            session,
            payments_client,
            delay_seconds=delay_seconds,
        ).reconcile_all_pending_payouts()
    return job


async def purge_idempotency_cache_async(database_url: Optional[str] = None) -> int:
    """Delete expired idempotency cache entries."""
    engine = create_async_engine(database_url=database_url or get_database_url())
    session_factory = make_session_factory(engine)
    try:
        async with session_factory() as session:
            deleted = await IdempotencyCacheRepository(session).delete_expired(datetime.utcnow())
            await session.commit()
        logger.info(f"Deleted {deleted} expired idempotency cache entries")
        print(deleted)
        return EXIT_OK
    except Exception as e:
        logger.error(f"Failed to purge idempotency cache: {e}")
        return EXIT_ERROR
    finally:
        await engine.dispose()


def _add_output_arguments(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    subparser.add_argument(
        "--format", "-f",
        choices=["json", "csv", "text"],
        default="json",
        help="Output format (default: json)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="church-payouts",
        description="Stale donation cleanup and payout reconciliation jobs.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sweep_parser = subparsers.add_parser(
        "sweep",
        help="Resolve donations stuck in pending",
    )
    sweep_parser.add_argument(
        "--days",
        type=int,
        help="Staleness window in days (default: STALE_DONATION_DAYS or 7)",
    )
    _add_output_arguments(sweep_parser)

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Reconcile a single payout",
    )
    reconcile_parser.add_argument(
        "--payout", "-p",
        required=True,
        help="Provider payout id",
    )
    reconcile_parser.add_argument(
        "--account", "-a",
        required=True,
        help="Connected account that owns the payout",
    )
    _add_output_arguments(reconcile_parser)

    reconcile_all_parser = subparsers.add_parser(
        "reconcile-all",
        help="Reconcile pending payouts of every church",
    )
    _add_output_arguments(reconcile_all_parser)

    subparsers.add_parser(
        "purge-idempotency-cache",
        help="Delete expired idempotency cache entries",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_PARTIAL_FAILURE

    if parsed_args.command == "purge-idempotency-cache":
        return asyncio.run(purge_idempotency_cache_async())

    settings = get_settings()
    if parsed_args.command == "sweep":
        job = sweep_job(parsed_args.days or settings.stale_donation_days)
    elif parsed_args.command == "reconcile":
        job = reconcile_job(parsed_args.payout, parsed_args.account)
    else:
        job = reconcile_all_job(settings.reconcile_delay_seconds)

    return asyncio.run(run_job_async(
        job,
        output_file=parsed_args.output,
        output_format=parsed_args.format,
    ))


if __name__ == "__main__":
    sys.exit(main())

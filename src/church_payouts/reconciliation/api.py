"""API endpoints for payout reconciliation."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth import Principal, get_current_principal, limiter
from ..connectors import PaymentsClientBase, PaymentsProviderError
from ..database import (
    Church,
    ChurchRepository,
    PayoutSummaryRepository,
    StripeConnectAccountRepository,
    get_async_session_factory,
    get_db,
    session_scope,
)
from ..dependencies import get_caller_church, get_stripe_client
from ..settings import Settings, get_settings
from .importer import DEFAULT_IMPORT_LIMIT, HistoricalPayoutImporter
from .service import StripeAccountNotConnectedError, TransactionReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconcile", tags=["reconciliation"])


class ReconcileRequestBody(BaseModel):
    """Request body for a manual reconciliation."""
    model_config = ConfigDict(populate_by_name=True)

    church_id: Optional[str] = Field(None, alias="churchId", description="Reconcile all pending payouts of this church")
    payout_id: Optional[str] = Field(None, alias="payoutId", description="Reconcile a single payout")


class ImportHistoricalBody(BaseModel):
    """Request body for a historical payout import."""
    model_config = ConfigDict(populate_by_name=True)

    limit: int = Field(default=DEFAULT_IMPORT_LIMIT, ge=1, description="Payouts to fetch (capped at 100)")
    start_date: Optional[datetime] = Field(None, alias="startDate", description="Earliest payout creation time")
    end_date: Optional[datetime] = Field(None, alias="endDate", description="Latest payout creation time")


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def reconcile_imported_payouts(
    session_factory: async_sessionmaker[AsyncSession],
    payments_client: PaymentsClientBase,
    stripe_account: str,
    payout_ids: List[str],
    delay_seconds: float,
) -> None:
    """Background task reconciling freshly imported paid payouts in a new session."""
    async with session_scope(session_factory) as session:
        reconciler = TransactionReconciler(session, payments_client, delay_seconds=delay_seconds)
        for payout_id in payout_ids:
            result = await reconciler.reconcile_payout(payout_id, stripe_account)
            if result.success:
                logger.info(f"Successfully reconciled imported payout {payout_id}")
            else:
                logger.error(f"Failed to reconcile imported payout {payout_id}: {result.error}")


@router.post("")
@limiter.limit("10/minute")
async def trigger_reconciliation(
    request: Request,
    body: ReconcileRequestBody,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    payments_client: PaymentsClientBase = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
):
    """
    Manually reconcile one payout (``payoutId``) or every pending payout of a church (``churchId``).

    The caller's organization must own the payout or church.
    """
    reconciler = TransactionReconciler(
        db,
        payments_client,
        delay_seconds=settings.reconcile_delay_seconds,
    )

    if body.payout_id:
        payout_id = body.payout_id
        payout = await PayoutSummaryRepository(db).get_by_stripe_payout_id(payout_id)
        if payout is None:
            raise HTTPException(status_code=404, detail="Payout not found")

        church = await ChurchRepository(db).get_by_id(payout.church_id)
        if church is None or church.auth_org_id != principal.org_id:
            logger.warning(f"Organization {principal.org_id} denied access to payout {payout_id}")
            raise HTTPException(status_code=403, detail="Access denied")

        account = await StripeConnectAccountRepository(db).get_by_church_id(church.id)
        if account is None:
            raise HTTPException(status_code=400, detail="Stripe account not connected")

        result = await reconciler.reconcile_payout(payout_id, account.stripe_account_id)
        if not result.success:
            return JSONResponse(
                status_code=500,
                content={"error": "Reconciliation failed", "details": result.error},
            )
        return {
            "success": True,
            "message": f"Payout {payout_id} reconciled successfully",
            "summary": result.summary.model_dump(),
        }

    if body.church_id:
        church_id = body.church_id
        church = await ChurchRepository(db).get_by_id(church_id)
        if church is None or church.auth_org_id != principal.org_id:
            raise HTTPException(status_code=403, detail="Church not found or access denied")

        try:
            bulk = await reconciler.reconcile_pending_payouts(church_id)
        except StripeAccountNotConnectedError:
            raise HTTPException(status_code=400, detail="Stripe account not connected")

        return {
            "success": True,
            "message": f"Reconciliation completed for church {church_id}",
            "processed": bulk.processed,
            "succeeded": bulk.succeeded,
            "failed": bulk.failed,
        }

    raise HTTPException(
        status_code=400,
        detail="Must specify churchId or payoutId for reconciliation",
    )


@router.get("")
async def reconciliation_status(
    church: Church = Depends(get_caller_church),
    db: AsyncSession = Depends(get_db),
    payments_client: PaymentsClientBase = Depends(get_stripe_client),
):
    """Payout reconciliation statistics and the most recent payouts of the caller's church."""
    statistics = await TransactionReconciler(db, payments_client).get_statistics(church.id)
    return statistics.to_response_dict()


@router.post("/import-historical")
@limiter.limit("5/minute")
async def import_historical_payouts(
    request: Request,
    body: ImportHistoricalBody,
    background_tasks: BackgroundTasks,
    church: Church = Depends(get_caller_church),
    db: AsyncSession = Depends(get_db),
    payments_client: PaymentsClientBase = Depends(get_stripe_client),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_async_session_factory),
    settings: Settings = Depends(get_settings),
):
    """
    Backfill payout summaries from the church's provider payout history.

    Paid payouts that are not reconciled yet are reconciled in the background
    after the response is sent.
    """
    start_date = _as_naive_utc(body.start_date)
    end_date = _as_naive_utc(body.end_date)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="startDate must be before endDate")

    importer = HistoricalPayoutImporter(db, payments_client)
    try:
        result = await importer.import_payouts(
            church.id,
            limit=body.limit,
            start_date=start_date,
            end_date=end_date,
        )
    except StripeAccountNotConnectedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PaymentsProviderError as e:
        logger.error(f"Error fetching payouts from Stripe: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": f"Failed to fetch payouts from Stripe: {e}"},
        )

    if result.to_reconcile:
        logger.info(f"Scheduling reconciliation of {len(result.to_reconcile)} imported payouts")
        background_tasks.add_task(
            reconcile_imported_payouts,
            session_factory,
            payments_client,
            result.stripe_account,
            list(result.to_reconcile),
            settings.reconcile_delay_seconds,
        )

    return result.to_response_dict()


@router.get("/import-historical")
async def import_historical_preview(
    church: Church = Depends(get_caller_church),
    db: AsyncSession = Depends(get_db),
    payments_client: PaymentsClientBase = Depends(get_stripe_client),
):
    """Describe what a historical import would find."""
    return await HistoricalPayoutImporter(db, payments_client).preview(church.id)

"""API endpoints for Stripe Connect account onboarding."""

import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import limiter
from .connectors import PaymentsClientBase
from .database import Church, get_db
from .dependencies import get_caller_church, get_stripe_client
from .idempotency import IdempotencyGuard, require_idempotency_key
from .services import ConnectAccountService
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


class AccountAction(str, Enum):
    CREATE_ACCOUNT = "createAccount"
    CREATE_ACCOUNT_LINK = "createAccountLink"
    CREATE_LOGIN_LINK = "createLoginLink"


class AccountActionBody(BaseModel):
    """Request body for a Connect account action."""
    model_config = ConfigDict(populate_by_name=True)

    action: str = Field(..., description="createAccount, createAccountLink or createLoginLink")
    church_id: Optional[str] = Field(None, alias="churchId")
    email: Optional[str] = None
    refresh_url: Optional[str] = Field(None, alias="refreshUrl")
    return_url: Optional[str] = Field(None, alias="returnUrl")


@router.post("/accounts")
@limiter.limit("10/minute")
async def stripe_account_action(
    request: Request,
    body: AccountActionBody,
    idempotency_key: str = Depends(require_idempotency_key),
    church: Church = Depends(get_caller_church),
    db: AsyncSession = Depends(get_db),
    payments_client: PaymentsClientBase = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
):
    """
    Create a connected account, an onboarding link or a dashboard login link.

    Requires an ``Idempotency-Key`` header. A repeated key replays the first
    successful response without calling the provider again.
    """
    try:
        action = AccountAction(body.action)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown action: {body.action}")

    if body.church_id and body.church_id != church.id:
        logger.warning(f"Church {body.church_id} does not belong to the caller's organization")
        raise HTTPException(status_code=403, detail="Access denied")

    service = ConnectAccountService(db, payments_client, app_url=settings.app_url)
    guard = IdempotencyGuard(db)

    prefix = f"{action.value}_{church.id}"
    if action is AccountAction.CREATE_LOGIN_LINK:
        async def operation():
            return await service.create_login_link(church)
    else:
        # Custom redirect URLs only apply to explicit link requests
        custom_urls = action is AccountAction.CREATE_ACCOUNT_LINK

        async def operation():
            return await service.create_account(
                church,
                email=body.email,
                refresh_url=body.refresh_url if custom_urls else None,
                return_url=body.return_url if custom_urls else None,
            )

    response = await guard.execute(prefix, idempotency_key, operation)
    return response.to_response()

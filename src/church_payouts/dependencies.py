"""FastAPI dependencies shared by the routers."""

import logging

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import Principal, get_current_principal
from .connectors import PaymentsClientBase, StripeConnector
from .database import Church, ChurchRepository, get_db
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def get_stripe_client(settings: Settings = Depends(get_settings)) -> PaymentsClientBase:
    """Build the payments client from settings.

    Raises:
        HTTPException: 500 if STRIPE_API_KEY is not configured.
    """
    if not settings.stripe_api_key:
        logger.error("STRIPE_API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    return StripeConnector(api_key=settings.stripe_api_key)


async def get_caller_church(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Church:
    """Resolve the church owned by the caller's organization.

    Raises:
        HTTPException: 404 if the organization has no church.
    """
    church = await ChurchRepository(db).get_by_auth_org_id(principal.org_id)
    if church is None:
        raise HTTPException(status_code=404, detail="Church not found")
    return church

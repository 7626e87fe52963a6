"""FastAPI application for donation cleanup and payout reconciliation."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .accounts import router as accounts_router
from .auth import limiter
from .cron import router as cron_router
from .database import close_db, init_db
from .health.api import router as health_router
from .reconciliation.api import router as reconciliation_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()

app = FastAPI(
    title="Church Payouts API",
    version=__version__,
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(reconciliation_router)
app.include_router(cron_router)
app.include_router(accounts_router)
app.include_router(health_router)

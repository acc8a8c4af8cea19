"""Main FastAPI application."""
from fastapi import FastAPI
from contextlib import asynccontextmanager

from app.core.logging import setup_logging
from app.db.database import init_db
from app.api import agents, calls, health, recordings
from app.api.webhooks import telnyx as telnyx_webhooks


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    yield


app = FastAPI(
    title="Realty Voice",
    description="Telnyx call control, routing, dialing and recording reconciliation for the CRM",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(telnyx_webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(calls.router, tags=["calls"])
app.include_router(recordings.router, tags=["recordings"])
app.include_router(agents.router, tags=["agents"])

"""Telnyx call control webhook endpoint."""
import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.dependencies import get_routing_resolver, get_settings, get_telnyx_client
from app.db.database import get_db
from app.services.call_control.orchestrator import CallControlOrchestrator
from app.services.routing.resolver import RoutingResolver
from app.services.telnyx.client import TelnyxClient

router = APIRouter()
logger = logging.getLogger(__name__)


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    client: TelnyxClient = Depends(get_telnyx_client),
    resolver: RoutingResolver = Depends(get_routing_resolver),
    config: Settings = Depends(get_settings),
) -> CallControlOrchestrator:
    """Get call control orchestrator."""
    return CallControlOrchestrator(
        db,
        client,
        resolver,
        apology_message=config.apology_message,
        sip_domain=config.sip_domain,
    )


@router.post("/telnyx/voice")
async def handle_voice_event(
    request: Request,
    orchestrator: CallControlOrchestrator = Depends(get_orchestrator),
):
    """
    Handle a Telnyx call control event.

    Always answers 200 so Telnyx does not redeliver application-level
    failures; those are logged by the orchestrator.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning(
            f"[WEBHOOK] Unparseable body from "
            f"{request.client.host if request.client else 'unknown'}"
        )
        body = None

    await orchestrator.handle_webhook(body)
    return {"ok": True}

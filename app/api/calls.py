"""Call endpoints: outbound dialing, hold, provider-side history."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.dependencies import get_current_agent, get_settings, get_telnyx_client
from app.core.exceptions import ConfigurationError, DialerValidationError, TelnyxAPIError
from app.db.database import get_db
from app.db.models import Agent
from app.services.call_control.hold import HoldController
from app.services.history.aggregator import CallHistory, CallHistoryAggregator
from app.services.outbound.dialer import OutboundDialer
from app.services.telnyx.client import TelnyxClient
from app.utils.phone import normalize_e164
from app.utils.timestamps import parse_timestamp

router = APIRouter()
logger = logging.getLogger(__name__)


class OutboundCallRequest(BaseModel):
    """Outbound call request model."""
    model_config = ConfigDict(populate_by_name=True)

    to: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")


class ConnectRequest(BaseModel):
    """Bridge an answered agent leg to its destination."""
    call_control_id: str
    client_state: Optional[str] = None


class HoldRequest(BaseModel):
    """Hold request model."""
    hold: bool


def get_dialer(
    client: TelnyxClient = Depends(get_telnyx_client),
    config: Settings = Depends(get_settings),
) -> OutboundDialer:
    """Get outbound dialer."""
    return OutboundDialer(client, config)


@router.post("/api/calls/outbound")
async def place_outbound_call(
    call_request: OutboundCallRequest,
    agent: Agent = Depends(get_current_agent),
    dialer: OutboundDialer = Depends(get_dialer),
):
    """Dial the calling agent first; the destination is bridged once they answer."""
    logger.info(f"[OUTBOUND] Request from agent {agent.id} to {call_request.to}")
    try:
        data = await dialer.place_call(agent, call_request.to, call_request.from_)
    except ConfigurationError as e:
        logger.error(f"[OUTBOUND] Configuration error: {e}")
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)
    except DialerValidationError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=400)
    except TelnyxAPIError as e:
        logger.error(f"[OUTBOUND] Call failed - status: {e.status_code}, detail: {e.detail}")
        error = e.detail or f"Telnyx call failed with status {e.status_code}"
        return JSONResponse({"ok": False, "error": error}, status_code=502)
    return {"ok": True, "data": data}


@router.post("/api/calls/outbound/connect")
async def connect_outbound_call(
    connect_request: ConnectRequest,
    dialer: OutboundDialer = Depends(get_dialer),
):
    """Bridge the agent's answered leg to the number it was dialed for."""
    try:
        connected = await dialer.connect_destination(
            connect_request.call_control_id, connect_request.client_state
        )
    except ConfigurationError as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=500)
    if not connected:
        return JSONResponse({"ok": False, "error": "Could not connect destination"}, status_code=502)
    return {"ok": True}


@router.post("/api/calls/{call_session_id}/hold")
async def hold_call(
    call_session_id: str,
    hold_request: HoldRequest,
    db: AsyncSession = Depends(get_db),
    client: TelnyxClient = Depends(get_telnyx_client),
    config: Settings = Depends(get_settings),
):
    """Put an in-flight call on hold (music to both legs) or resume it."""
    controller = HoldController(db, client, config.hold_music_url)
    try:
        result = await controller.set_hold(call_session_id, hold_request.hold)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except TelnyxAPIError as e:
        raise HTTPException(status_code=502, detail=e.detail)

    if result is None:
        raise HTTPException(status_code=404, detail="No active call for session")
    return {
        "ok": True,
        "hold_state": result.hold_state,
        "playback_state": result.playback_state,
    }


@router.get("/api/calls/telnyx-history", response_model=CallHistory)
async def get_telnyx_history(
    request: Request,
    phone_a: Optional[str] = Query(None, alias="phoneA"),
    phone_b: Optional[str] = Query(None, alias="phoneB"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    client: TelnyxClient = Depends(get_telnyx_client),
):
    """Call sessions between two numbers, reconstructed from recordings and events."""
    logger.info(
        f"[HISTORY] Request received - phoneA: {phone_a}, phoneB: {phone_b}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    a_e164 = normalize_e164(phone_a)
    b_e164 = normalize_e164(phone_b)
    if not a_e164 or not b_e164:
        raise HTTPException(status_code=400, detail="phoneA and phoneB are required (E.164 format)")

    start = parse_timestamp(date_from)
    end = parse_timestamp(date_to)
    if (date_from and not start) or (date_to and not end):
        raise HTTPException(status_code=400, detail="dateFrom/dateTo must be ISO-8601")

    aggregator = CallHistoryAggregator(client)
    try:
        return await aggregator.fetch_history(a_e164, b_e164, start, end, connection_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except TelnyxAPIError as e:
        logger.error(f"[HISTORY] Error fetching Telnyx history: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Failed to fetch call history: {e.detail}")

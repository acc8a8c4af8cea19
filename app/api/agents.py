"""Agent active-call endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_agent
from app.db.database import get_db
from app.db.models import Agent, AgentActiveCall
from app.services.active_calls.registry import ActiveCallRegistry

router = APIRouter()
logger = logging.getLogger(__name__)


class ActiveCallInfo(BaseModel):
    """Active call pairing for one agent."""
    agent_id: str
    customer_leg_id: Optional[str] = None
    agent_leg_id: Optional[str] = None
    hold_state: Optional[str] = None
    playback_state: Optional[str] = None
    updated_at: Optional[str] = None


def _to_info(record: AgentActiveCall) -> ActiveCallInfo:
    return ActiveCallInfo(
        agent_id=record.agent_id,
        customer_leg_id=record.customer_leg_id,
        agent_leg_id=record.agent_leg_id,
        hold_state=record.hold_state,
        playback_state=record.playback_state,
        updated_at=record.updated_at.isoformat() if record.updated_at else None,
    )


# /me routes are declared first so "me" is never taken as an agent id.
@router.get("/api/agents/me/active-call")
async def get_my_active_call(
    agent: Agent = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db),
):
    """Get the calling agent's active call, if any."""
    record = await ActiveCallRegistry(db).get_for_agent(agent.id)
    return {"active_call": _to_info(record) if record else None}


@router.delete("/api/agents/me/active-call")
async def clear_my_active_call(
    agent: Agent = Depends(get_current_agent),
    db: AsyncSession = Depends(get_db),
):
    """Clear the calling agent's active call pairing."""
    cleared = await ActiveCallRegistry(db).clear_for_agent(agent.id)
    logger.info(f"[ACTIVE CALLS] Agent {agent.id} cleared active call (existed: {cleared})")
    return {"success": True}


@router.get("/api/agents/{agent_id}/active-call")
async def get_agent_active_call(agent_id: str, db: AsyncSession = Depends(get_db)):
    """Leg ids of an agent's active call; nulls when there is none."""
    record = await ActiveCallRegistry(db).get_for_agent(agent_id)
    return {
        "agent_id": agent_id,
        "customer_leg_id": record.customer_leg_id if record else None,
        "agent_leg_id": record.agent_leg_id if record else None,
    }

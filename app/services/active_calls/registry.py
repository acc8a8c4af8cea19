"""Agent ↔ customer-leg pairing persistence."""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import upsert
from app.db.models import AgentActiveCall

logger = logging.getLogger(__name__)


class ActiveCallRegistry:
    """At most one active call row per agent, enforced by an agent-keyed upsert."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(
        self,
        agent_id: str,
        customer_leg_id: str,
        agent_leg_id: Optional[str] = None,
    ) -> AgentActiveCall:
        """Pair ``agent_id`` with a customer leg, replacing any previous pairing."""
        now = datetime.utcnow()
        await upsert(
            self.db,
            AgentActiveCall,
            values={
                "id": str(uuid.uuid4()),
                "agent_id": agent_id,
                "customer_leg_id": customer_leg_id,
                "agent_leg_id": agent_leg_id,
                "hold_state": "active",
                "playback_state": "idle",
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["agent_id"],
            update_columns=[
                "customer_leg_id",
                "agent_leg_id",
                "hold_state",
                "playback_state",
                "updated_at",
            ],
        )
        await self.db.commit()
        record = await self.get_for_agent(agent_id, refresh=True)
        logger.info(f"[ACTIVE CALLS] Agent {agent_id} paired with leg {customer_leg_id}")
        return record

    async def get_for_agent(self, agent_id: str, refresh: bool = False) -> Optional[AgentActiveCall]:
        stmt = select(AgentActiveCall).where(AgentActiveCall.agent_id == agent_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_customer_leg(self, customer_leg_id: str) -> Optional[AgentActiveCall]:
        result = await self.db.execute(
            select(AgentActiveCall).where(AgentActiveCall.customer_leg_id == customer_leg_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def clear_for_agent(self, agent_id: str) -> bool:
        result = await self.db.execute(
            delete(AgentActiveCall).where(AgentActiveCall.agent_id == agent_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def clear_for_customer_leg(self, customer_leg_id: str) -> int:
        """Drop pairings whose customer leg has ended. Safe to repeat."""
        result = await self.db.execute(
            delete(AgentActiveCall).where(AgentActiveCall.customer_leg_id == customer_leg_id)
        )
        await self.db.commit()
        if result.rowcount:
            logger.info(f"[ACTIVE CALLS] Cleared {result.rowcount} pairing(s) for leg {customer_leg_id}")
        return result.rowcount

    async def set_hold(self, customer_leg_id: str, held: bool) -> Optional[AgentActiveCall]:
        record = await self.get_for_customer_leg(customer_leg_id)
        if not record:
            return None
        record.hold_state = "held" if held else "active"
        record.playback_state = "playing" if held else "idle"
        record.updated_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

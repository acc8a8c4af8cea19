"""
Durable ``call_session_id → call_control_id`` store.

Lives in the database rather than process memory so that replicas and
restarts see the same in-flight calls.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import upsert
from app.db.models import CallSessionLink

logger = logging.getLogger(__name__)


class CallSessionStore:
    """Upsert/delete keyed by the provider's call session id."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def remember(
        self,
        call_session_id: str,
        call_control_id: str,
        state: str,
        direction: Optional[str] = None,
    ) -> str:
        """
        Outgoing legs never replace an existing link: a transfer adds an
        outgoing leg to the session, and the link must keep pointing at the
        leg that started it. Returns the call_control_id the session is
        linked to afterwards.
        """
        update_columns = [] if direction == "outgoing" else [
            "call_control_id", "direction", "state", "updated_at",
        ]
        await upsert(
            self.db,
            CallSessionLink,
            values={
                "call_session_id": call_session_id,
                "call_control_id": call_control_id,
                "direction": direction,
                "state": state,
                "updated_at": datetime.utcnow(),
            },
            conflict_columns=["call_session_id"],
            update_columns=update_columns,
        )
        await self.db.commit()
        link = await self.lookup(call_session_id)
        return link.call_control_id if link else call_control_id

    async def lookup(self, call_session_id: str) -> Optional[CallSessionLink]:
        result = await self.db.execute(
            select(CallSessionLink)
            .where(CallSessionLink.call_session_id == call_session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_state(self, call_session_id: str, state: str) -> bool:
        link = await self.lookup(call_session_id)
        if not link:
            return False
        link.state = state
        link.updated_at = datetime.utcnow()
        await self.db.commit()
        return True

    async def forget(self, call_session_id: str) -> bool:
        result = await self.db.execute(
            delete(CallSessionLink).where(CallSessionLink.call_session_id == call_session_id)
        )
        await self.db.commit()
        return result.rowcount > 0

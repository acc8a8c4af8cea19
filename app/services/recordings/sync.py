"""Recording reconciliation: link provider recordings to call records."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CallNotFoundError
from app.db.models import Call
from app.services.recordings.matching import (
    build_single_query,
    index_recordings,
    match_recording,
    recording_update_values,
    select_best_recording,
)
from app.services.telnyx.client import TelnyxClient
from app.utils.timestamps import to_iso

logger = logging.getLogger(__name__)

SINGLE_PAGE_SIZE = 50
BATCH_PAGE_SIZE = 250
BATCH_MAX_PAGES = 20


class SingleSyncResult(BaseModel):
    """Outcome of reconciling one call."""

    success: bool = False
    message: Optional[str] = None
    searched: bool = False
    checked: int = 0
    matched: int = 0
    params: Optional[Dict[str, str]] = None
    recording_id: Optional[str] = None
    duration_ms: Optional[int] = None
    status: Optional[str] = None
    channels: Optional[str] = None


class BatchSyncResult(BaseModel):
    """Outcome of a windowed sweep."""

    success: bool = True
    message: Optional[str] = None
    checked: int = 0
    matched: int = 0
    total_recordings: int = 0


class RecordingSyncService:
    """Matches Telnyx recordings to call records, storing only the recording id."""

    def __init__(self, db: AsyncSession, client: TelnyxClient):
        self.db = db
        self.client = client

    async def get_call_by_sid(self, call_sid: str) -> Optional[Call]:
        result = await self.db.execute(select(Call).where(Call.call_sid == call_sid))
        return result.scalar_one_or_none()

    async def sync_call(self, call_sid: str, force: bool = False) -> SingleSyncResult:
        """
        Reconcile one call. Raises ``CallNotFoundError`` for an unknown SID;
        a call with no matching recording is a normal outcome.
        """
        call = await self.get_call_by_sid(call_sid)
        if call is None:
            raise CallNotFoundError(call_sid)

        if call.telnyx_recording_id and not force:
            return SingleSyncResult(
                message="Recording already exists", recording_id=call.telnyx_recording_id
            )

        params = build_single_query(call, page_size=SINGLE_PAGE_SIZE)
        logger.info(f"[RECORDING SYNC] Searching recordings for call {call_sid} with {params}")

        recordings = await self.client.paginate("/recordings", params, max_pages=1)
        logger.info(f"[RECORDING SYNC] Found {len(recordings)} recordings for call {call_sid}")

        if not recordings:
            return SingleSyncResult(
                message="No recordings found", searched=True, checked=1, params=params
            )

        best = select_best_recording(recordings)
        for column, value in recording_update_values(best).items():
            setattr(call, column, value)
        await self.db.commit()
        await self.db.refresh(call)

        logger.info(f"[RECORDING SYNC] Call {call_sid} linked to recording {best['id']}")
        return SingleSyncResult(
            success=True,
            searched=True,
            checked=1,
            matched=1,
            recording_id=best["id"],
            duration_ms=best.get("duration_millis"),
            status=best.get("status"),
            channels=best.get("channels"),
        )

    async def sync_recent(
        self, hours: int = 24, limit: int = 20, now: Optional[datetime] = None
    ) -> BatchSyncResult:
        """
        Reconcile completed calls from the last ``hours`` that still lack a
        recording, against a single sweep of the window's recordings.
        """
        since = (now or datetime.utcnow()) - timedelta(hours=hours)
        calls = await self._calls_missing_recordings(since, limit)
        if not calls:
            return BatchSyncResult(message="No calls need recording sync")

        logger.info(f"[RECORDING SYNC] {len(calls)} calls without recordings since {since}")

        recordings = await self.client.paginate(
            "/recordings",
            {"filter[created_at][gte]": to_iso(since), "page[size]": str(BATCH_PAGE_SIZE)},
            max_pages=BATCH_MAX_PAGES,
        )
        logger.info(f"[RECORDING SYNC] Fetched {len(recordings)} recordings from Telnyx")

        by_leg, by_session = index_recordings(recordings)
        updates: List[Dict[str, Any]] = []
        for call in calls:
            recording = match_recording(call, by_leg, by_session)
            if recording:
                # Every row carries the same keys so the UPDATE batches as one statement.
                updates.append({
                    "id": call.id,
                    "call_session_id": call.call_session_id,
                    "call_leg_id": call.call_leg_id,
                    "recording_started_at": call.recording_started_at,
                    "recording_ended_at": call.recording_ended_at,
                    **recording_update_values(recording),
                })

        if updates:
            await self.db.execute(update(Call), updates)
            await self.db.commit()

        logger.info(
            f"[RECORDING SYNC] Batch complete - checked: {len(calls)}, matched: {len(updates)}"
        )
        return BatchSyncResult(
            checked=len(calls), matched=len(updates), total_recordings=len(recordings)
        )

    async def _calls_missing_recordings(self, since: datetime, limit: int) -> List[Call]:
        result = await self.db.execute(
            select(Call)
            .where(Call.telnyx_recording_id.is_(None))
            .where(Call.started_at >= since)
            .where(Call.status == "completed")
            .where(Call.duration > 0)
            .order_by(desc(Call.started_at))
            .limit(limit)
        )
        return list(result.scalars().all())

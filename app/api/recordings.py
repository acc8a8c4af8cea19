"""Recording reconciliation endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_telnyx_client
from app.core.exceptions import CallNotFoundError, ConfigurationError, TelnyxAPIError
from app.db.database import get_db
from app.services.recordings.sync import BatchSyncResult, RecordingSyncService, SingleSyncResult
from app.services.telnyx.client import TelnyxClient

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    """Single-call sync request model."""
    model_config = ConfigDict(populate_by_name=True)

    call_sid: str = Field(alias="callSid")
    force: bool = False


def get_recording_sync_service(
    db: AsyncSession = Depends(get_db),
    client: TelnyxClient = Depends(get_telnyx_client),
) -> RecordingSyncService:
    """Get recording sync service."""
    return RecordingSyncService(db, client)


@router.post("/api/recordings/sync", response_model=SingleSyncResult)
async def sync_call_recording(
    sync_request: SyncRequest,
    service: RecordingSyncService = Depends(get_recording_sync_service),
):
    """Link the best matching Telnyx recording to one call."""
    try:
        return await service.sync_call(sync_request.call_sid, force=sync_request.force)
    except CallNotFoundError:
        raise HTTPException(status_code=404, detail="Call not found")
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except TelnyxAPIError as e:
        logger.error(f"[RECORDING SYNC] Telnyx error for call {sync_request.call_sid}: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch recordings: {e.detail}")


@router.put("/api/recordings/sync", response_model=BatchSyncResult)
async def sync_recent_recordings(
    hours: int = Query(24, ge=1, le=24 * 30),
    limit: int = Query(20, ge=1, le=500),
    service: RecordingSyncService = Depends(get_recording_sync_service),
):
    """Reconcile recent completed calls that have no recording yet."""
    try:
        return await service.sync_recent(hours=hours, limit=limit)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except TelnyxAPIError as e:
        logger.error(f"[RECORDING SYNC] Batch sync failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to fetch recordings: {e.detail}")

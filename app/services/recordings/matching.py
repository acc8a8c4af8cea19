"""
Recording ↔ call matching rules.

Pure functions shared by single-call and batch reconciliation.
"""
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.db.models import Call
from app.utils.timestamps import parse_timestamp, to_iso

Recording = Dict[str, Any]

SEARCH_BEFORE = timedelta(minutes=5)
SEARCH_AFTER = timedelta(minutes=15)


def select_best_recording(recordings: Iterable[Recording]) -> Optional[Recording]:
    """Longest ``duration_millis`` wins; on a tie the earlier one is kept."""
    best: Optional[Recording] = None
    for recording in recordings:
        if best is None or _duration(recording) > _duration(best):
            best = recording
    return best


def build_single_query(call: Call, page_size: int = 50) -> Dict[str, str]:
    """
    Provider filter for one call, most precise first:
    leg id, then session id, then a window around the call start.
    """
    params = {"page[size]": str(page_size)}
    if call.call_leg_id:
        params["filter[call_leg_id]"] = call.call_leg_id
    elif call.call_session_id:
        params["filter[call_session_id]"] = call.call_session_id
    else:
        params["filter[created_at][gte]"] = to_iso(call.started_at - SEARCH_BEFORE)
        params["filter[created_at][lte]"] = to_iso(call.started_at + SEARCH_AFTER)
    return params


def index_recordings(
    recordings: Iterable[Recording],
) -> Tuple[Dict[str, Recording], Dict[str, List[Recording]]]:
    """Index by leg id (one each) and by session id (many each)."""
    by_leg: Dict[str, Recording] = {}
    by_session: Dict[str, List[Recording]] = {}
    for recording in recordings:
        leg_id = recording.get("call_leg_id")
        if leg_id:
            by_leg[leg_id] = recording
        session_id = recording.get("call_session_id")
        if session_id:
            by_session.setdefault(session_id, []).append(recording)
    return by_leg, by_session


def match_recording(
    call: Call,
    by_leg: Dict[str, Recording],
    by_session: Dict[str, List[Recording]],
) -> Optional[Recording]:
    """Leg id first; otherwise the best recording of the call's session."""
    if call.call_leg_id:
        recording = by_leg.get(call.call_leg_id)
        if recording:
            return recording
    if call.call_session_id:
        return select_best_recording(by_session.get(call.call_session_id, []))
    return None


def recording_update_values(recording: Recording) -> Dict[str, Any]:
    """
    Columns to write for a matched recording. Download URLs expire and
    are never persisted.
    """
    values: Dict[str, Any] = {
        "telnyx_recording_id": recording["id"],
        "recording_state": "saved",
        "recording_duration_ms": recording.get("duration_millis"),
    }
    if recording.get("call_session_id"):
        values["call_session_id"] = recording["call_session_id"]
    if recording.get("call_leg_id"):
        values["call_leg_id"] = recording["call_leg_id"]
    started_at = parse_timestamp(recording.get("recording_started_at"))
    if started_at:
        values["recording_started_at"] = started_at
    ended_at = parse_timestamp(recording.get("recording_ended_at"))
    if ended_at:
        values["recording_ended_at"] = ended_at
    return values


def _duration(recording: Recording) -> int:
    try:
        return int(recording.get("duration_millis") or 0)
    except (TypeError, ValueError):
        return 0

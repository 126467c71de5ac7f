from fastapi import APIRouter, HTTPException

from pitchperfect.schemas.practice import PracticeSnapshot, TimelineEntry
from pitchperfect.services.errors import PracticeError
from pitchperfect.services.practice_session import RecordingStatus
from pitchperfect.ws.events import get_live_session

router = APIRouter()


@router.get("/{presentation_id}", response_model=PracticeSnapshot)
async def get_snapshot(presentation_id: str):
    practice = get_live_session(presentation_id)
    if practice is None:
        raise HTTPException(status_code=404, detail="No live practice session")
    return practice.snapshot()


@router.get("/{presentation_id}/timeline", response_model=list[TimelineEntry])
async def get_timeline(presentation_id: str):
    practice = get_live_session(presentation_id)
    if practice is None:
        raise HTTPException(status_code=404, detail="No live practice session")
    if practice.status not in (RecordingStatus.FINISHED, RecordingStatus.PROCESSING):
        raise HTTPException(
            status_code=409,
            detail=f"Timeline is not final while {practice.status.value}",
        )
    try:
        return practice.finalized_timeline()
    except PracticeError as e:
        raise HTTPException(status_code=409, detail=str(e))

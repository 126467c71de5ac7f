from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchperfect.models.agent import Agent
from pitchperfect.models.base import get_db
from pitchperfect.models.presentation import Presentation, PresentationStatus
from pitchperfect.schemas.agent import AgentResponse
from pitchperfect.schemas.presentation import (
    HighlightsResponse,
    PresentationCreate,
    PresentationResponse,
    PresentationUpdate,
    WeakArea,
)
from pitchperfect.services.storage_service import StorageService, presenter_recording_key

router = APIRouter()


async def _get_presentation(db: AsyncSession, presentation_id: str) -> Presentation:
    result = await db.execute(
        select(Presentation).where(Presentation.id == presentation_id)
    )
    presentation = result.scalar_one_or_none()
    if not presentation:
        raise HTTPException(status_code=404, detail="Presentation not found")
    return presentation


async def _check_agents(db: AsyncSession, agent_ids: list[str]) -> None:
    if not agent_ids:
        return
    result = await db.execute(select(Agent.id).where(Agent.id.in_(agent_ids)))
    missing = set(agent_ids) - set(result.scalars().all())
    if missing:
        raise HTTPException(
            status_code=400, detail=f"Unknown agent(s): {', '.join(sorted(missing))}"
        )


@router.post("/", response_model=PresentationResponse, status_code=201)
async def create_presentation(
    payload: PresentationCreate,
    db: AsyncSession = Depends(get_db),
):
    await _check_agents(db, payload.agent_ids)
    presentation = Presentation(
        topic=payload.topic,
        agent_ids=payload.agent_ids,
        status=PresentationStatus.DRAFT.value,
    )
    db.add(presentation)
    await db.flush()
    await db.refresh(presentation)
    return presentation


@router.get("/{presentation_id}", response_model=PresentationResponse)
async def get_presentation(
    presentation_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await _get_presentation(db, presentation_id)


@router.patch("/{presentation_id}", response_model=PresentationResponse)
async def update_presentation(
    presentation_id: str,
    payload: PresentationUpdate,
    db: AsyncSession = Depends(get_db),
):
    presentation = await _get_presentation(db, presentation_id)
    if payload.agent_ids is not None:
        if presentation.status != PresentationStatus.DRAFT.value:
            raise HTTPException(
                status_code=409, detail="The panel can only change before recording"
            )
        await _check_agents(db, payload.agent_ids)
        presentation.agent_ids = payload.agent_ids
    if payload.topic is not None:
        presentation.topic = payload.topic

    await db.flush()
    await db.refresh(presentation)
    return presentation


@router.delete("/{presentation_id}", status_code=204)
async def delete_presentation(
    presentation_id: str,
    db: AsyncSession = Depends(get_db),
):
    presentation = await _get_presentation(db, presentation_id)
    await db.delete(presentation)


@router.get("/{presentation_id}/agents", response_model=list[AgentResponse])
async def get_presentation_agents(
    presentation_id: str,
    db: AsyncSession = Depends(get_db),
):
    presentation = await _get_presentation(db, presentation_id)
    result = await db.execute(
        select(Agent).where(Agent.id.in_(presentation.agent_ids or []))
    )
    by_id = {a.id: a for a in result.scalars().all()}
    return [by_id[a] for a in presentation.agent_ids if a in by_id]


@router.post("/{presentation_id}/recording")
async def upload_recording(
    presentation_id: str,
    recording: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
):
    presentation = await _get_presentation(db, presentation_id)

    storage = StorageService()
    recording_key = presenter_recording_key(presentation_id, recording.filename)
    file_bytes = await recording.read()
    await storage.upload(recording_key, file_bytes, recording.content_type or "video/webm")

    presentation.recording_key = recording_key
    await db.flush()

    return {"recording_key": recording_key}


@router.get("/{presentation_id}/highlights", response_model=HighlightsResponse)
async def get_highlights(
    presentation_id: str,
    db: AsyncSession = Depends(get_db),
):
    presentation = await _get_presentation(db, presentation_id)
    if presentation.status != PresentationStatus.COMPLETE.value:
        raise HTTPException(
            status_code=404,
            detail="Highlights not ready. Presentation may still be processing.",
        )

    storage = StorageService()
    return HighlightsResponse(
        presentation_id=presentation.id,
        status=presentation.status,
        audio_url=await storage.get_url(presentation.audio_key) if presentation.audio_key else None,
        transcript=presentation.transcript or [],
        weak_areas=[WeakArea(**area) for area in presentation.weak_areas or []],
    )

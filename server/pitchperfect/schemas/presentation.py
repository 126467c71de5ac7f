from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class PresentationCreate(BaseModel):
    topic: Optional[str] = None
    agent_ids: list[str] = []


class PresentationUpdate(BaseModel):
    topic: Optional[str] = None
    agent_ids: Optional[list[str]] = None


class PresentationResponse(BaseModel):
    id: str
    topic: Optional[str]
    status: str
    agent_ids: list[str]
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    duration_secs: Optional[float]
    recording_key: Optional[str]
    audio_key: Optional[str]
    error: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class WeakArea(BaseModel):
    segment_id: int
    start: float
    end: float
    transcript: str
    explanation: str
    improvement: str = ""
    fillers: dict[str, int] = {}
    clip_url: Optional[str] = None


class HighlightsResponse(BaseModel):
    presentation_id: str
    status: str
    audio_url: Optional[str] = None
    transcript: list[dict] = []
    weak_areas: list[WeakArea] = []

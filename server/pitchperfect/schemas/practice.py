from typing import Optional

from pydantic import BaseModel


class ParticipantState(BaseModel):
    id: str
    name: str
    connected: bool
    remoteId: Optional[str] = None
    error: Optional[str] = None


class PracticeSnapshot(BaseModel):
    recording_status: str
    elapsed_seconds: float
    current_speaker_id: Optional[str]
    participants: list[ParticipantState]


class TimelineEntry(BaseModel):
    start: float
    end: float
    conversation_id: str

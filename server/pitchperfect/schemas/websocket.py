from typing import Optional

from pydantic import BaseModel


class AgentModeChangeEvent(BaseModel):
    agentId: str
    mode: str


class AgentDisconnectedEvent(BaseModel):
    agentId: str


class AgentErrorEvent(BaseModel):
    agentId: str
    message: str = ""


class PracticeStateEvent(BaseModel):
    status: str
    elapsed: float
    currentSpeakerId: Optional[str] = None


class FloorChangedEvent(BaseModel):
    previous: Optional[str]
    current: Optional[str]
    elapsed: float


class PracticeErrorEvent(BaseModel):
    code: str
    message: str

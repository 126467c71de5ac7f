from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AgentCreate(BaseModel):
    name: str
    persona: Optional[str] = None
    voice_description: Optional[str] = None
    # Skip provisioning and use an existing platform agent
    platform_agent_id: Optional[str] = None


class AgentIntentUpdate(BaseModel):
    intent: str = ""


class AgentResponse(BaseModel):
    id: str
    name: str
    persona: Optional[str]
    voice_description: Optional[str]
    platform_agent_id: Optional[str]
    voice_id: Optional[str]
    creation_status: str
    error: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class SignedUrlResponse(BaseModel):
    signed_url: str

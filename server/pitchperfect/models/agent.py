import enum
from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pitchperfect.models.base import Base, TimestampMixin, UUIDMixin


class AgentCreationStatus(str, enum.Enum):
    CREATING_VOICE = "creating_voice"
    SETTING_UP_PERSONA = "setting_up_persona"
    READY = "ready"
    FAILED = "failed"


class Agent(Base, UUIDMixin, TimestampMixin):
    """An AI audience member backed by a voice-platform conversational agent."""

    __tablename__ = "agents"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    persona: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voice_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Set once provisioning on the voice platform succeeds
    platform_agent_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    voice_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    creation_status: Mapped[str] = mapped_column(
        String(30),
        default=AgentCreationStatus.READY.value,
        nullable=False,
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

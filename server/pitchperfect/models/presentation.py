import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pitchperfect.models.base import Base, TimestampMixin, UUIDMixin


class PresentationStatus(str, enum.Enum):
    DRAFT = "draft"
    RECORDING = "recording"
    FINISHED = "finished"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class Presentation(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "presentations"

    topic: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=PresentationStatus.DRAFT.value,
        nullable=False,
    )
    # Ordered panel of Agent ids
    agent_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    duration_secs: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recording_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Post-processing output
    timeline: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    audio_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    transcript: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    weak_areas: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

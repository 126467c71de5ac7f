"""Turn a finalized speaking timeline into the clips of one ordered recording.

Each agent conversation recording on the voice platform contains both the
agent and the presenter, so an agent's turn and the presenter's reply that
follows it are cut together from that agent's recording. The opening span,
before any agent spoke, comes from the presenter's own recording when there
is one, otherwise from the first agent conversation.

Timeline times are session-clock seconds, which stop while the session is
paused. Agent conversations keep running through pauses, so their offsets are
shifted by the wall time spent paused before the cut point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pitchperfect.services.voice_session import USER_OWNER


@dataclass
class Clip:
    source: str  # conversation id, or "user" for the presenter recording
    start: float
    end: float

    @property
    def duration(self) -> float:
        return round(self.end - self.start, 1)

    def to_dict(self) -> dict:
        return {"source": self.source, "start": self.start, "end": self.end}


def conversation_offset(
    reading: float, pauses: list[tuple[float, float]], at_end: bool = False
) -> float:
    """Seconds into a continuously running conversation for a clock reading.

    A cut that ends exactly where a pause began ends before the pause; a cut
    that starts there starts after it.
    """
    shift = sum(
        wall for paused_at, wall in pauses
        if (paused_at < reading if at_end else paused_at <= reading)
    )
    return round(reading + shift, 1)


def build_splice_plan(
    timeline: list[dict],
    pauses: Optional[list[tuple[float, float]]] = None,
    user_source: Optional[str] = None,
) -> list[Clip]:
    """Clips, in playback order, for a hand-off timeline of ``{start, end, conversation_id}``."""
    pauses = pauses or []
    if not timeline:
        return []

    clips: list[Clip] = []

    def cut(source: str, start: float, end: float) -> None:
        if end <= start:
            return
        if source == USER_OWNER:
            clips.append(Clip(source, start, end))
        else:
            clips.append(
                Clip(
                    source,
                    conversation_offset(start, pauses),
                    conversation_offset(end, pauses, at_end=True),
                )
            )

    first_agent = next(
        (e["conversation_id"] for e in timeline if e["conversation_id"] != USER_OWNER),
        None,
    )
    lead_source = user_source or first_agent

    pending: Optional[tuple[str, float]] = None  # (conversation id, start)
    for index, entry in enumerate(timeline):
        owner = entry["conversation_id"]
        if owner != USER_OWNER:
            if pending:
                cut(pending[0], pending[1], entry["start"])
            pending = (owner, entry["start"])
        elif pending:
            # Presenter reply: stays in the preceding agent's clip
            cut(pending[0], pending[1], entry["end"])
            pending = None
        elif index == 0 and lead_source:
            cut(lead_source, entry["start"], entry["end"])

    if pending:
        cut(pending[0], pending[1], timeline[-1]["end"])
    return clips

"""Session clock and the who-spoke-when timeline.

The timeline is a list of contiguous segments, each owned by one agent or by
the presenter ("user"). It is later used to cut every agent's conversation
audio into one ordered recording, so boundaries must line up exactly: each
segment ends where the next one starts.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from pitchperfect.services.errors import TimelineError
from pitchperfect.services.voice_session import USER_OWNER

logger = logging.getLogger(__name__)


def owner_for(speaker_id: Optional[str]) -> str:
    return speaker_id if speaker_id is not None else USER_OWNER


class SessionClock:
    """Seconds elapsed while recording, in 0.1 s steps. Frozen while paused."""

    resolution = 0.1

    def __init__(self, time_source: Callable[[], float] = time.monotonic):
        self._now = time_source
        self._accumulated = 0.0
        self._started_at: Optional[float] = None
        self._paused_at: Optional[tuple[float, float]] = None
        # (clock reading when paused, wall seconds spent paused)
        self.pauses: list[tuple[float, float]] = []

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        if self._started_at is not None:
            return
        now = self._now()
        if self._paused_at is not None:
            reading, paused_wall = self._paused_at
            self.pauses.append((reading, now - paused_wall))
            self._paused_at = None
        self._started_at = now

    def pause(self) -> None:
        if self._started_at is not None:
            now = self._now()
            self._accumulated += now - self._started_at
            self._started_at = None
            self._paused_at = (self.elapsed(), now)

    resume = start
    stop = pause

    def elapsed(self) -> float:
        total = self._accumulated
        if self._started_at is not None:
            total += self._now() - self._started_at
        steps = int(total / self.resolution + 1e-6)
        return round(steps * self.resolution, 1)


@dataclass
class TimelineSegment:
    start: float
    end: Optional[float]
    owner_id: str

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> float:
        return 0.0 if self.end is None else round(self.end - self.start, 1)

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "owner_id": self.owner_id}


def validate_timeline(segments: list[TimelineSegment]) -> None:
    """Raise TimelineError unless the segments form a closed, gap-free run from 0."""
    if not segments:
        raise TimelineError("Timeline is empty")
    if segments[0].start != 0:
        raise TimelineError(f"Timeline starts at {segments[0].start}, not 0")
    for i, seg in enumerate(segments):
        if seg.end is None:
            raise TimelineError(f"Segment {i} ({seg.owner_id}) is still open")
        if seg.start > seg.end:
            raise TimelineError(
                f"Segment {i} ({seg.owner_id}) starts after it ends: "
                f"{seg.start} > {seg.end}"
            )
        if i + 1 < len(segments) and segments[i + 1].start != seg.end:
            raise TimelineError(
                f"Gap or overlap between segment {i} and {i + 1}: "
                f"{seg.end} != {segments[i + 1].start}"
            )


class TimelineRecorder:
    """Turns floor-holder changes into timeline segments.

    Register ``on_floor_change`` as a TurnArbiter listener. Transitions that
    arrive while the clock is frozen (paused or stopped) create no boundary;
    call ``sync`` after resuming to line the open segment up with the floor.
    """

    def __init__(
        self,
        clock: SessionClock,
        session_id: str = "",
        on_segment_closed: Optional[Callable[[TimelineSegment], None]] = None,
    ):
        self.clock = clock
        self.session_id = session_id
        self.segments: list[TimelineSegment] = []
        self.finalized = False
        self._on_segment_closed = on_segment_closed

    @property
    def open_segment(self) -> Optional[TimelineSegment]:
        if self.segments and self.segments[-1].is_open:
            return self.segments[-1]
        return None

    def begin(self) -> None:
        """Open the first segment: the presenter holds the floor at t=0."""
        if not self.segments:
            self.segments.append(TimelineSegment(0.0, None, USER_OWNER))

    def on_floor_change(
        self, previous: Optional[str], current: Optional[str]
    ) -> None:
        self.record(owner_for(current))

    def sync(self, current_speaker_id: Optional[str]) -> bool:
        return self.record(owner_for(current_speaker_id))

    def record(self, owner: str) -> bool:
        """Close the open segment and open one for ``owner``. Returns True on a new boundary."""
        if self.finalized:
            logger.debug(
                f"Session {self.session_id}: timeline finalized, ignoring {owner}"
            )
            return False
        if not self.clock.running:
            logger.debug(
                f"Session {self.session_id}: clock frozen, no boundary for {owner}"
            )
            return False

        self.begin()
        current = self.open_segment
        if current is None or current.owner_id == owner:
            return False

        at = max(self.clock.elapsed(), current.start)
        self._close(current, at)
        self.segments.append(TimelineSegment(at, None, owner))
        return True

    def close(self) -> list[TimelineSegment]:
        """Close the last segment at the current clock reading and freeze the timeline."""
        if not self.finalized:
            self.begin()
            current = self.open_segment
            if current is not None:
                self._close(current, max(self.clock.elapsed(), current.start))
            validate_timeline(self.segments)
            self.finalized = True
            logger.info(
                f"Session {self.session_id}: timeline finalized with "
                f"{len(self.segments)} segment(s)"
            )
        return list(self.segments)

    def handoff(self, remote_ids: Mapping[str, Optional[str]]) -> list[dict]:
        """Timeline keyed by the voice platform's conversation ids."""
        if not self.finalized:
            raise TimelineError("Timeline is not finalized", self.session_id)

        entries = []
        for seg in self.segments:
            if seg.owner_id == USER_OWNER:
                conversation_id = USER_OWNER
            else:
                conversation_id = remote_ids.get(seg.owner_id)
                if not conversation_id:
                    logger.warning(
                        f"Session {self.session_id}: no conversation id for "
                        f"{seg.owner_id}, keeping participant id"
                    )
                    conversation_id = seg.owner_id
            entries.append(
                {"start": seg.start, "end": seg.end, "conversation_id": conversation_id}
            )
        return entries

    def _close(self, segment: TimelineSegment, at: float) -> None:
        segment.end = at
        if self._on_segment_closed:
            try:
                self._on_segment_closed(segment)
            except Exception as e:
                logger.error(
                    f"Session {self.session_id}: segment callback failed: {e}"
                )

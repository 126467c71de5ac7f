"""Floor arbitration between concurrently connected voice agents.

Agents report ``speaking`` / ``listening`` mode changes whenever their remote
voice session starts or stops talking. The TurnArbiter folds those reports
into a single floor holder, so at most one agent is ever audible, and keeps a
turn history used to stop the most talkative agent from grabbing the floor
again before the others have had a turn.

The arbiter is synchronous on purpose: a decision, the resulting gain
changes and the listener notifications all happen without yielding to the
event loop, so a caller that feeds it from a single task gets atomic floor
updates.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from pitchperfect.services.voice_session import (
    OnFloorChange,
    Participant,
    VoiceMode,
)
from pitchperfect.services.volume_gate import VolumeGate

logger = logging.getLogger(__name__)


class FloorDecision(str, Enum):
    GRANTED = "granted"
    WITHHELD = "withheld"  # fairness policy: most turns so far, others waiting
    BUSY = "busy"  # another agent holds the floor
    DUPLICATE = "duplicate"  # requester already holds the floor
    RELEASED = "released"
    IGNORED = "ignored"  # listening from an agent that did not hold the floor
    UNKNOWN = "unknown"  # unknown, disconnected or malformed


@dataclass
class FloorState:
    """Who holds the floor (None = the presenter) and the grant history."""

    current_speaker_id: Optional[str] = None
    speaking_history: list[str] = field(default_factory=list)

    def turn_counts(self) -> dict[str, int]:
        return dict(Counter(self.speaking_history))

    def most_turns_id(self) -> Optional[str]:
        """Participant with the most grants; ties go to the lowest id."""
        counts = Counter(self.speaking_history)
        if not counts:
            return None
        top = max(counts.values())
        return min(pid for pid, count in counts.items() if count == top)

    def to_dict(self) -> dict:
        return {
            "current_speaker_id": self.current_speaker_id,
            "speaking_history": list(self.speaking_history),
        }


class TurnArbiter:
    """Single writer of one practice session's FloorState."""

    def __init__(
        self,
        participants: Mapping[str, Participant],
        volume_gate: Optional[VolumeGate] = None,
        session_id: str = "",
    ):
        self.session_id = session_id
        self.state = FloorState()
        self._participants = participants
        self._gate = volume_gate or VolumeGate()
        self._listeners: list[OnFloorChange] = []

    @property
    def current_speaker_id(self) -> Optional[str]:
        return self.state.current_speaker_id

    def add_listener(self, callback: OnFloorChange) -> None:
        """Register ``callback(previous, current)`` for every floor change."""
        self._listeners.append(callback)

    def available_ids(self) -> list[str]:
        return [pid for pid, p in self._participants.items() if p.connected]

    # --- Events ---

    def handle_mode_change(self, participant_id: str, mode) -> FloorDecision:
        """Apply one mode-change report and return what was decided."""
        try:
            mode = VoiceMode(mode)
        except ValueError:
            logger.warning(
                f"Session {self.session_id}: dropping mode change with "
                f"invalid mode {mode!r} from {participant_id}"
            )
            return FloorDecision.UNKNOWN

        participant = self._participants.get(participant_id)
        if participant is None or not participant.connected:
            logger.warning(
                f"Session {self.session_id}: dropping {mode.value} from "
                f"unknown or disconnected participant {participant_id!r}"
            )
            return FloorDecision.UNKNOWN

        if mode == VoiceMode.SPEAKING:
            decision = self._claim(participant_id)
        else:
            decision = self._yield(participant_id)

        logger.debug(
            f"Session {self.session_id}: {participant_id} {mode.value} -> "
            f"{decision.value} (floor={self.current_speaker_id or 'user'})"
        )
        return decision

    def release(self, participant_id: str) -> bool:
        """Clear the floor if ``participant_id`` holds it (disconnect, teardown)."""
        if self.state.current_speaker_id != participant_id:
            return False
        self._set_speaker(None)
        return True

    def reset(self) -> None:
        """Hand the floor back to the presenter; the history is kept."""
        if self.state.current_speaker_id is not None:
            self._set_speaker(None)
        else:
            self._apply_gate()

    # --- Policy ---

    def _claim(self, participant_id: str) -> FloorDecision:
        current = self.state.current_speaker_id
        if current == participant_id:
            return FloorDecision.DUPLICATE
        if current is not None:
            return FloorDecision.BUSY

        history = self.state.speaking_history
        most_turns_id = self.state.most_turns_id()
        if (
            not history
            or most_turns_id != participant_id
            or len(self.available_ids()) <= 1
        ):
            self._set_speaker(participant_id)
            return FloorDecision.GRANTED

        logger.info(
            f"Session {self.session_id}: withholding floor from "
            f"{participant_id} (turns={self.state.turn_counts()})"
        )
        return FloorDecision.WITHHELD

    def _yield(self, participant_id: str) -> FloorDecision:
        if self.state.current_speaker_id != participant_id:
            return FloorDecision.IGNORED
        self._set_speaker(None)
        return FloorDecision.RELEASED

    # --- State changes ---

    def _set_speaker(self, participant_id: Optional[str]) -> None:
        previous = self.state.current_speaker_id
        self.state.current_speaker_id = participant_id
        if participant_id is not None:
            self.state.speaking_history.append(participant_id)
        self._apply_gate()

        for callback in self._listeners:
            try:
                callback(previous, participant_id)
            except Exception as e:
                logger.error(
                    f"Session {self.session_id}: floor listener failed "
                    f"({previous} -> {participant_id}): {e}",
                    exc_info=True,
                )

    def _apply_gate(self) -> None:
        sessions = {pid: p.session for pid, p in self._participants.items()}
        self._gate.apply(sessions, self.state.current_speaker_id)

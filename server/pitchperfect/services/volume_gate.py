import logging
from typing import Mapping, Optional

from pitchperfect.config import settings
from pitchperfect.services.voice_session import VoiceSession

logger = logging.getLogger(__name__)


class VolumeGate:
    """Makes exactly the floor holder's session audible.

    When nobody holds the floor every agent session is muted; the presenter is
    heard through their own microphone.
    """

    def __init__(
        self,
        audible: Optional[float] = None,
        muted: Optional[float] = None,
    ):
        self.audible = settings.agent_gain_audible if audible is None else audible
        self.muted = settings.agent_gain_muted if muted is None else muted

    def apply(
        self,
        sessions: Mapping[str, Optional[VoiceSession]],
        current_speaker_id: Optional[str],
    ) -> None:
        for participant_id, session in sessions.items():
            if session is None:
                continue
            level = self.audible if participant_id == current_speaker_id else self.muted
            session.set_gain(level)
        logger.debug(
            f"VolumeGate: audible={current_speaker_id or 'user'} "
            f"across {len(sessions)} session(s)"
        )

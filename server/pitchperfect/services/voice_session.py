"""Participants and the voice-session boundary.

A VoiceSession is a duplex connection to one conversational voice agent. The
connection itself lives outside this package (see voice_relay.py for the
browser relay); the core only needs gain control, an awaited end, the remote
conversation id and the push callbacks declared here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

# Timeline owner used when the human presenter holds the floor
USER_OWNER = "user"


class VoiceMode(str, Enum):
    SPEAKING = "speaking"
    LISTENING = "listening"


class VoiceSession(Protocol):
    remote_id: str
    mode: VoiceMode
    gain: float

    def set_gain(self, level: float) -> None: ...

    async def end(self) -> None: ...


@dataclass
class SessionCallbacks:
    """Push callbacks a transport invokes for one connected session."""

    on_connect: Callable[[], None]
    on_disconnect: Callable[[], None]
    on_error: Callable[[str], None]
    on_mode_change: Callable[[VoiceMode], None]


class VoiceTransport(Protocol):
    async def connect(
        self, participant: "Participant", callbacks: SessionCallbacks
    ) -> VoiceSession: ...


class AudioCapture(Protocol):
    """Local microphone capture of the presenter."""

    async def request_permission(self) -> bool: ...

    async def start(self) -> None: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def stop(self) -> None: ...


@dataclass
class Participant:
    """An AI audience member taking part in one practice session."""

    id: str
    name: str
    agent_id: str = ""  # voice platform agent identity used to connect
    session: Optional[VoiceSession] = None
    # Remote conversation id, kept after the session ends for audio retrieval
    remote_id: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.session is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "connected": self.connected,
            "remoteId": self.remote_id,
            "error": self.last_error,
        }


OnFloorChange = Callable[[Optional[str], Optional[str]], None]
EmitCallback = Callable[[str, dict], Awaitable[None]]

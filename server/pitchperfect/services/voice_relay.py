"""Socket.IO relay for browser-held voice sessions and microphone capture.

The voice platform's client SDK and the microphone both live in the
presenter's browser. The server drives them over the presenter's Socket.IO
connection:

    server -> browser   agent_connect (ack: conversationId), agent_volume,
                        agent_end (ack), request_microphone (ack: granted),
                        capture_start / capture_pause / capture_resume / capture_stop
    browser -> server   agent_mode_change, agent_disconnected, agent_error,
                        audio_chunk

Inbound events are routed to ``dispatch_*`` by ws/events.py.
"""

import asyncio
import logging
from typing import Optional

import socketio
from socketio.exceptions import TimeoutError as RelayTimeout

from pitchperfect.config import settings
from pitchperfect.services.errors import ConnectionFailure
from pitchperfect.services.storage_service import StorageService, presenter_recording_key
from pitchperfect.services.voice_session import (
    Participant,
    SessionCallbacks,
    VoiceMode,
)

logger = logging.getLogger(__name__)


class RelayVoiceSession:
    """One agent conversation running in the presenter's browser."""

    def __init__(
        self,
        sio: socketio.AsyncServer,
        sid: str,
        participant_id: str,
        remote_id: str,
    ):
        self._sio = sio
        self._sid = sid
        self.participant_id = participant_id
        self.remote_id = remote_id
        self.mode = VoiceMode.LISTENING
        self.gain: Optional[float] = None
        self._pending: set[asyncio.Task] = set()

    def set_gain(self, level: float) -> None:
        self.gain = level
        task = asyncio.get_running_loop().create_task(
            self._sio.emit(
                "agent_volume",
                {"agentId": self.participant_id, "volume": level},
                to=self._sid,
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def end(self) -> None:
        ack = await self._sio.call(
            "agent_end",
            {"agentId": self.participant_id, "conversationId": self.remote_id},
            to=self._sid,
            timeout=settings.agent_end_timeout,
        )
        if isinstance(ack, dict) and ack.get("error"):
            raise RuntimeError(ack["error"])


class SocketIOVoiceTransport:
    """Connects agents through the presenter's browser."""

    def __init__(self, sio: socketio.AsyncServer, sid: str, session_id: str):
        self._sio = sio
        self.sid = sid
        self.session_id = session_id
        self.sessions: dict[str, RelayVoiceSession] = {}
        self._callbacks: dict[str, SessionCallbacks] = {}

    async def connect(
        self, participant: Participant, callbacks: SessionCallbacks
    ) -> RelayVoiceSession:
        try:
            ack = await self._sio.call(
                "agent_connect",
                {"agentId": participant.id, "platformAgentId": participant.agent_id},
                to=self.sid,
                timeout=settings.agent_connect_timeout,
            )
        except RelayTimeout:
            raise ConnectionFailure(participant.id, "browser did not answer in time")

        if not isinstance(ack, dict) or not ack.get("conversationId"):
            reason = ack.get("error") if isinstance(ack, dict) else None
            raise ConnectionFailure(participant.id, reason or "no conversation id")

        session = RelayVoiceSession(
            self._sio, self.sid, participant.id, ack["conversationId"]
        )
        self.sessions[participant.id] = session
        self._callbacks[participant.id] = callbacks
        callbacks.on_connect()
        return session

    # --- Inbound browser events ---

    def dispatch_mode_change(self, participant_id: str, mode: str) -> None:
        callbacks = self._callbacks.get(participant_id)
        if callbacks is None:
            logger.warning(
                f"Session {self.session_id}: mode change for unknown agent "
                f"{participant_id!r}"
            )
            return
        session = self.sessions.get(participant_id)
        if session is not None and mode in (m.value for m in VoiceMode):
            session.mode = VoiceMode(mode)
        callbacks.on_mode_change(mode)

    def dispatch_disconnect(self, participant_id: str) -> None:
        callbacks = self._callbacks.pop(participant_id, None)
        self.sessions.pop(participant_id, None)
        if callbacks:
            callbacks.on_disconnect()

    def dispatch_error(self, participant_id: str, message: str) -> None:
        callbacks = self._callbacks.get(participant_id)
        if callbacks:
            callbacks.on_error(message)
        else:
            logger.error(
                f"Session {self.session_id}: error from unknown agent "
                f"{participant_id!r}: {message}"
            )


class SocketIOAudioCapture:
    """Presenter microphone recorder running in the browser.

    Recorded chunks arrive as ``audio_chunk`` events and are appended to
    ``recordings/{session_id}/presenter.webm``.
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        sid: str,
        session_id: str,
        storage: Optional[StorageService] = None,
    ):
        self._sio = sio
        self.sid = sid
        self.session_id = session_id
        self.storage = storage or StorageService()
        self.recording_key = presenter_recording_key(session_id)
        self.chunk_count = 0
        self.active = False

    async def request_permission(self) -> bool:
        try:
            ack = await self._sio.call(
                "request_microphone",
                {},
                to=self.sid,
                timeout=settings.microphone_timeout,
            )
        except RelayTimeout:
            logger.warning(
                f"Session {self.session_id}: no answer to microphone request"
            )
            return False
        return bool(isinstance(ack, dict) and ack.get("granted"))

    async def start(self) -> None:
        self.active = True
        await self._sio.emit("capture_start", {}, to=self.sid)

    async def pause(self) -> None:
        self.active = False
        await self._sio.emit("capture_pause", {}, to=self.sid)

    async def resume(self) -> None:
        self.active = True
        await self._sio.emit("capture_resume", {}, to=self.sid)

    async def stop(self) -> None:
        self.active = False
        await self._sio.emit("capture_stop", {}, to=self.sid)

    async def append_chunk(self, data: bytes) -> None:
        await self.storage.append(self.recording_key, data)
        self.chunk_count += 1
        if self.chunk_count == 1:
            logger.info(f"Session {self.session_id}: first audio chunk stored")

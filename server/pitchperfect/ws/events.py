import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select

from pitchperfect.config import settings
from pitchperfect.models.agent import Agent
from pitchperfect.models.base import async_session_factory
from pitchperfect.models.presentation import Presentation, PresentationStatus
from pitchperfect.schemas.websocket import (
    AgentDisconnectedEvent,
    AgentErrorEvent,
    AgentModeChangeEvent,
    FloorChangedEvent,
    PracticeErrorEvent,
    PracticeStateEvent,
)
from pitchperfect.services.errors import PracticeError, PresentationNotFound
from pitchperfect.services.event_bus import Event, EventType
from pitchperfect.services.practice_session import PracticeSession, RecordingStatus
from pitchperfect.services.session_logger import SessionLogger
from pitchperfect.services.voice_relay import (
    SocketIOAudioCapture,
    SocketIOVoiceTransport,
)
from pitchperfect.services.voice_session import Participant
from pitchperfect.ws.handler import sio

logger = logging.getLogger(__name__)


@dataclass
class LiveSession:
    practice: PracticeSession
    transport: SocketIOVoiceTransport
    capture: SocketIOAudioCapture
    sid: str


# In-memory state for active practice sessions
live_sessions: dict[str, LiveSession] = {}  # presentation_id -> LiveSession
session_locks: dict[str, asyncio.Lock] = {}  # presentation_id -> Lock
_audio_chunk_count: dict[str, int] = {}  # presentation_id -> count (for throttled logging)


def get_live_session(presentation_id: str) -> Optional[PracticeSession]:
    live = live_sessions.get(presentation_id)
    return live.practice if live else None


def _room(presentation_id: str) -> str:
    return f"presentation_{presentation_id}"


async def _emit_error(presentation_id: str, error: Exception) -> None:
    if isinstance(error, PracticeError):
        payload = PracticeErrorEvent(**error.to_dict())
    else:
        payload = PracticeErrorEvent(code="internal_error", message=str(error))
    await sio.emit("practice_error", payload.model_dump(), room=_room(presentation_id))


def build_post_processor():
    """Post-processing pipeline, or None when transcription is not configured."""
    if not settings.openai_api_key:
        logger.warning("No OpenAI API key. Post-processing disabled")
        return None

    from pitchperfect.services.audio_editor import FfmpegAudioEditor
    from pitchperfect.services.elevenlabs_client import ElevenLabsClient
    from pitchperfect.services.highlight_service import HighlightGenerator
    from pitchperfect.services.llm_client import LLMClient
    from pitchperfect.services.post_processor import RecordingPostProcessor
    from pitchperfect.services.transcription import WhisperTranscriber

    llm = LLMClient(settings.gemini_api_key) if settings.gemini_api_key else None
    return RecordingPostProcessor(
        platform=ElevenLabsClient(),
        editor=FfmpegAudioEditor(),
        transcriber=WhisperTranscriber(),
        highlighter=HighlightGenerator(llm),
    )


async def _create_live_session(presentation_id: str, sid: str) -> LiveSession:
    async with async_session_factory() as db:
        result = await db.execute(
            select(Presentation).where(Presentation.id == presentation_id)
        )
        presentation = result.scalar_one_or_none()
        if not presentation:
            raise PresentationNotFound(
                f"Presentation {presentation_id} not found", presentation_id
            )
        agent_result = await db.execute(
            select(Agent).where(Agent.id.in_(presentation.agent_ids or []))
        )
        agents = {a.id: a for a in agent_result.scalars().all()}

    participants = []
    for agent_id in presentation.agent_ids or []:
        agent = agents.get(agent_id)
        if agent is None:
            logger.warning(
                f"Session {presentation_id}: agent {agent_id} no longer exists, skipping"
            )
            continue
        if not agent.platform_agent_id:
            logger.warning(
                f"Session {presentation_id}: agent {agent_id} is {agent.creation_status}, "
                f"not ready on the voice platform, skipping"
            )
            continue
        participants.append(
            Participant(id=agent.id, name=agent.name, agent_id=agent.platform_agent_id)
        )

    transport = SocketIOVoiceTransport(sio, sid, presentation_id)
    capture = SocketIOAudioCapture(sio, sid, presentation_id)
    practice = PracticeSession(
        session_id=presentation_id,
        participants=participants,
        transport=transport,
        capture=capture,
        post_processor=build_post_processor(),
        session_logger=SessionLogger(presentation_id, settings.storage_dir),
    )
    _subscribe_relay(presentation_id, practice)
    logger.info(
        f"Session {presentation_id}: created with {len(participants)} agent(s)"
    )
    return LiveSession(practice, transport, capture, sid)


def _subscribe_relay(presentation_id: str, practice: PracticeSession) -> None:
    """Forward bus events to the presenter's browser."""
    room = _room(presentation_id)

    async def on_status(event: Event):
        state = PracticeStateEvent(
            status=event.data["status"],
            elapsed=event.data["elapsed"],
            currentSpeakerId=practice.current_speaker_id,
        )
        await sio.emit("practice_state", state.model_dump(), room=room)

    async def on_floor(event: Event):
        await sio.emit(
            "floor_changed", FloorChangedEvent(**event.data).model_dump(), room=room
        )

    async def on_agent_warning(event: Event):
        await sio.emit(
            "agent_warning",
            {
                "agentId": event.data["participant_id"],
                "message": event.data.get("message", "disconnected"),
            },
            room=room,
        )

    practice.event_bus.subscribe(EventType.STATUS_CHANGED, on_status)
    practice.event_bus.subscribe(EventType.FLOOR_CHANGED, on_floor)
    practice.event_bus.subscribe(EventType.AGENT_ERROR, on_agent_warning)
    practice.event_bus.subscribe(EventType.AGENT_DISCONNECTED, on_agent_warning)


async def _update_presentation(presentation_id: str, **fields) -> None:
    async with async_session_factory() as db:
        result = await db.execute(
            select(Presentation).where(Presentation.id == presentation_id)
        )
        presentation = result.scalar_one_or_none()
        if not presentation:
            logger.warning(f"Session {presentation_id}: presentation row missing")
            return
        for name, value in fields.items():
            setattr(presentation, name, value)
        await db.commit()


async def handle_practice_start(presentation_id: str, sid: str):
    """Build the live session on first start, then connect the panel."""
    if presentation_id not in session_locks:
        session_locks[presentation_id] = asyncio.Lock()

    async with session_locks[presentation_id]:
        live = live_sessions.get(presentation_id)
        try:
            if live is None:
                live = await _create_live_session(presentation_id, sid)
                live_sessions[presentation_id] = live
            result = await live.practice.start()
        except PracticeError as e:
            logger.warning(f"Session {presentation_id}: start failed: {e}")
            await _emit_error(presentation_id, e)
            return

    if not result.ok:
        await sio.emit(
            "practice_error",
            {"code": "connection_failure", "message": "No agent could connect", **result.to_dict()},
            room=_room(presentation_id),
        )
        return

    await _update_presentation(
        presentation_id,
        status=PresentationStatus.RECORDING.value,
        started_at=datetime.now(timezone.utc),
    )
    await sio.emit("practice_started", result.to_dict(), room=_room(presentation_id))


async def _run_lifecycle(presentation_id: str, operation: str):
    live = live_sessions.get(presentation_id)
    if live is None:
        await _emit_error(
            presentation_id,
            PracticeError(f"No live practice session to {operation}", presentation_id),
        )
        return None
    try:
        return await getattr(live.practice, operation)()
    except PracticeError as e:
        logger.warning(f"Session {presentation_id}: {operation} rejected: {e}")
        await _emit_error(presentation_id, e)
        return None


async def handle_practice_pause(presentation_id: str, sid: str):
    await _run_lifecycle(presentation_id, "pause")


async def handle_practice_resume(presentation_id: str, sid: str):
    await _run_lifecycle(presentation_id, "resume")


async def handle_practice_finish(presentation_id: str, sid: str):
    segments = await _run_lifecycle(presentation_id, "finish")
    if segments is None:
        return
    practice = live_sessions[presentation_id].practice
    await _update_presentation(
        presentation_id,
        status=PresentationStatus.FINISHED.value,
        ended_at=datetime.now(timezone.utc),
        duration_secs=segments[-1].end if segments else 0.0,
        timeline=practice.finalized_timeline(),
    )
    await sio.emit(
        "practice_finished",
        {"segments": [s.to_dict() for s in segments]},
        room=_room(presentation_id),
    )


async def _stored_recording_key(presentation_id: str) -> Optional[str]:
    """Presenter recording uploaded through the REST endpoint, if any."""
    async with async_session_factory() as db:
        result = await db.execute(
            select(Presentation.recording_key).where(Presentation.id == presentation_id)
        )
        return result.scalar_one_or_none()


async def _fail_processing(presentation_id: str, error: Exception) -> None:
    logger.error(f"Error processing session {presentation_id}: {error}", exc_info=True)
    await _update_presentation(
        presentation_id, status=PresentationStatus.FAILED.value, error=str(error)
    )
    await _emit_error(presentation_id, error)
    await cleanup_session(presentation_id)


async def handle_practice_process(presentation_id: str, sid: str):
    """Run post-processing and persist the highlights."""
    live = live_sessions.get(presentation_id)
    if live is None:
        await _emit_error(
            presentation_id,
            PracticeError("No finished practice session to process", presentation_id),
        )
        return

    if live.capture.chunk_count:
        live.practice.recording_key = live.capture.recording_key
    else:
        live.practice.recording_key = await _stored_recording_key(presentation_id)

    try:
        request = await live.practice.accept_processing()
    except PracticeError as e:
        logger.warning(f"Session {presentation_id}: process rejected: {e}")
        await _emit_error(presentation_id, e)
        return

    await _update_presentation(
        presentation_id, status=PresentationStatus.PROCESSING.value
    )
    try:
        result = await live.practice.run_processing(request)
    except Exception as e:
        await _fail_processing(presentation_id, e)
        return

    await _update_presentation(
        presentation_id,
        status=PresentationStatus.COMPLETE.value,
        audio_key=result.get("audio_key"),
        transcript=result.get("transcript", []),
        weak_areas=result.get("weak_areas", []),
    )
    await sio.emit(
        "practice_processed",
        {
            "presentationId": presentation_id,
            "audioUrl": result.get("audio_url"),
            "weakAreas": result.get("weak_areas", []),
        },
        room=_room(presentation_id),
    )
    await cleanup_session(presentation_id)


def _parse(presentation_id: str, model, data):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(
            f"Session {presentation_id}: dropping malformed {model.__name__}: {e}"
        )
        return None


async def handle_agent_mode_change(presentation_id: str, sid: str, data: dict):
    live = live_sessions.get(presentation_id)
    event = _parse(presentation_id, AgentModeChangeEvent, data)
    if live is None or event is None:
        return
    live.transport.dispatch_mode_change(event.agentId, event.mode)


async def handle_agent_disconnected(presentation_id: str, sid: str, data: dict):
    live = live_sessions.get(presentation_id)
    event = _parse(presentation_id, AgentDisconnectedEvent, data)
    if live is None or event is None:
        return
    live.transport.dispatch_disconnect(event.agentId)


async def handle_agent_error(presentation_id: str, sid: str, data: dict):
    live = live_sessions.get(presentation_id)
    event = _parse(presentation_id, AgentErrorEvent, data)
    if live is None or event is None:
        return
    live.transport.dispatch_error(event.agentId, event.message)


async def handle_audio_chunk(presentation_id: str, sid: str, data):
    """Append a recorder chunk (raw bytes or ``{"audio": base64}``) to the presenter recording."""
    live = live_sessions.get(presentation_id)
    if live is None:
        return

    if isinstance(data, (bytes, bytearray)):
        chunk = bytes(data)
    elif isinstance(data, dict):
        try:
            chunk = base64.b64decode(data.get("audio", ""))
        except ValueError:
            logger.warning(f"Session {presentation_id}: invalid base64 audio data")
            return
    else:
        return
    if not chunk:
        return

    _audio_chunk_count[presentation_id] = _audio_chunk_count.get(presentation_id, 0) + 1
    count = _audio_chunk_count[presentation_id]
    if count % 100 == 0:
        logger.debug(f"Session {presentation_id}: audio_chunk #{count}, bytes={len(chunk)}")

    await live.capture.append_chunk(chunk)


async def handle_client_disconnect(presentation_id: str, sid: str):
    """The presenter's browser went away: its voice sessions went with it."""
    live = live_sessions.get(presentation_id)
    if live is None or live.sid != sid:
        return
    if live.practice.status in (RecordingStatus.RECORDING, RecordingStatus.PAUSED):
        await live.practice.teardown()
        await _update_presentation(
            presentation_id,
            status=PresentationStatus.FAILED.value,
            error="Presenter disconnected during recording",
        )
    await cleanup_session(presentation_id)


async def cleanup_session(presentation_id: str):
    live = live_sessions.pop(presentation_id, None)
    if live:
        try:
            await live.practice.teardown()
        except Exception as e:
            logger.warning(f"Session {presentation_id}: error during teardown: {e}")
    session_locks.pop(presentation_id, None)
    _audio_chunk_count.pop(presentation_id, None)

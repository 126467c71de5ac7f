"""Practice-session lifecycle: connect the panel, arbitrate the floor, record the timeline.

One PracticeSession owns all live state for one practice run: the agents'
voice sessions, the FloorState (through its TurnArbiter), the session clock
and the TimelineRecorder. Mode changes pushed by the voice sessions are put
on a queue and applied by a single arbitration task, so floor updates never
interleave.

    not_started --start--> recording <--pause/resume--> paused
    recording | paused --finish--> finished --process--> processing
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from pitchperfect.services.errors import (
    ConnectionFailure,
    InvalidTransition,
    PermissionDenied,
    PracticeError,
    TeardownFailure,
)
from pitchperfect.services.event_bus import Event, EventBus, EventType
from pitchperfect.services.floor import TurnArbiter
from pitchperfect.services.session_logger import SessionLogger
from pitchperfect.services.timeline import (
    SessionClock,
    TimelineRecorder,
    TimelineSegment,
)
from pitchperfect.services.voice_session import (
    AudioCapture,
    Participant,
    SessionCallbacks,
    VoiceTransport,
)
from pitchperfect.services.volume_gate import VolumeGate

logger = logging.getLogger(__name__)

# Queue marker for a transport-reported disconnect
DISCONNECTED = "disconnected"


class RecordingStatus(str, Enum):
    NOT_STARTED = "not_started"
    RECORDING = "recording"
    PAUSED = "paused"
    FINISHED = "finished"
    PROCESSING = "processing"


@dataclass
class StartResult:
    connected: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        # Every agent failing is a failed start; a panel of zero is allowed
        return bool(self.connected) or not self.failures

    def to_dict(self) -> dict:
        return {"ok": self.ok, "connected": self.connected, "failures": self.failures}


@dataclass
class ProcessingRequest:
    session_id: str
    timeline: list[dict]
    conversation_ids: list[str]
    recording_key: Optional[str] = None
    # (clock reading, wall seconds) for every pause; agent audio keeps running
    pauses: list[tuple[float, float]] = field(default_factory=list)


class PostProcessor(Protocol):
    async def process(self, request: ProcessingRequest) -> dict: ...


@dataclass
class _FloorInput:
    participant_id: str
    mode: str


class PracticeSession:
    """Coordinates one live practice session."""

    def __init__(
        self,
        session_id: str,
        participants: list[Participant],
        transport: VoiceTransport,
        capture: AudioCapture,
        post_processor: Optional[PostProcessor] = None,
        clock: Optional[SessionClock] = None,
        volume_gate: Optional[VolumeGate] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        self.session_id = session_id
        self.participants: dict[str, Participant] = {p.id: p for p in participants}
        self.transport = transport
        self.capture = capture
        self.post_processor = post_processor
        self.status = RecordingStatus.NOT_STARTED
        self.recording_key: Optional[str] = None
        self.result: Optional[dict] = None
        self.teardown_failures: list[TeardownFailure] = []

        self.clock = clock or SessionClock()
        self.event_bus = EventBus(session_id)
        self.arbiter = TurnArbiter(self.participants, volume_gate, session_id)
        self.timeline = TimelineRecorder(
            self.clock, session_id, on_segment_closed=self._on_segment_closed
        )
        self.arbiter.add_listener(self.timeline.on_floor_change)
        self.arbiter.add_listener(self._on_floor_change)

        self._inbox: asyncio.Queue[_FloorInput] = asyncio.Queue()
        self._arbitration_task: Optional[asyncio.Task] = None
        self._lifecycle_lock = asyncio.Lock()

        self.session_logger = session_logger
        if session_logger:
            self.event_bus.subscribe_all(self._log_bus_event)

    # --- Read-only views ---

    @property
    def current_speaker_id(self) -> Optional[str]:
        return self.arbiter.current_speaker_id

    def snapshot(self) -> dict:
        return {
            "recording_status": self.status.value,
            "elapsed_seconds": self.clock.elapsed(),
            "current_speaker_id": self.current_speaker_id,
            "participants": [p.to_dict() for p in self.participants.values()],
        }

    def remote_ids(self) -> dict[str, Optional[str]]:
        return {pid: p.remote_id for pid, p in self.participants.items()}

    def conversation_ids(self) -> list[str]:
        return [p.remote_id for p in self.participants.values() if p.remote_id]

    def finalized_timeline(self) -> list[dict]:
        """Closed timeline keyed by conversation id; only after finish()."""
        return self.timeline.handoff(self.remote_ids())

    # --- Inbound voice events ---

    def submit(self, participant_id: str, mode: str) -> None:
        """Queue a mode change for the arbitration task."""
        self._inbox.put_nowait(_FloorInput(participant_id, mode))

    async def drain(self) -> None:
        """Wait until every queued mode change has been arbitrated."""
        if self._arbitration_task is not None and not self._arbitration_task.done():
            await self._inbox.join()

    async def _arbitration_loop(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                if item.mode == DISCONNECTED:
                    self._handle_disconnect(item.participant_id)
                    continue
                decision = self.arbiter.handle_mode_change(
                    item.participant_id, item.mode
                )
                self.event_bus.publish_nowait(
                    Event(
                        type=EventType.FLOOR_DECISION,
                        data={
                            "participant_id": item.participant_id,
                            "mode": item.mode,
                            "decision": decision.value,
                            "turn_counts": self.arbiter.state.turn_counts(),
                        },
                        source="arbiter",
                    )
                )
            finally:
                self._inbox.task_done()

    def _handle_disconnect(self, participant_id: str) -> None:
        participant = self.participants.get(participant_id)
        if participant is None or not participant.connected:
            return
        self.arbiter.release(participant_id)
        participant.session = None
        logger.warning(
            f"Session {self.session_id}: agent {participant_id} disconnected"
        )
        self.event_bus.publish_nowait(
            Event(
                type=EventType.AGENT_DISCONNECTED,
                data={"participant_id": participant_id},
                source=participant_id,
            )
        )

    def _callbacks_for(self, participant: Participant) -> SessionCallbacks:
        pid = participant.id

        def on_connect() -> None:
            logger.info(f"Session {self.session_id}: agent {pid} connected")

        def on_disconnect() -> None:
            self.submit(pid, DISCONNECTED)

        def on_error(message: str) -> None:
            participant.last_error = message
            logger.error(f"Session {self.session_id}: agent {pid} error: {message}")
            self.event_bus.publish_nowait(
                Event(
                    type=EventType.AGENT_ERROR,
                    data={"participant_id": pid, "message": message},
                    source=pid,
                )
            )

        def on_mode_change(mode) -> None:
            self.submit(pid, getattr(mode, "value", mode))

        return SessionCallbacks(
            on_connect=on_connect,
            on_disconnect=on_disconnect,
            on_error=on_error,
            on_mode_change=on_mode_change,
        )

    # --- Lifecycle ---

    async def start(self) -> StartResult:
        """Ask for the microphone, connect the panel and start recording."""
        async with self._lifecycle_lock:
            self._require("start", RecordingStatus.NOT_STARTED)

            if not await self.capture.request_permission():
                raise PermissionDenied(
                    "Microphone access was denied", self.session_id
                )

            panel = list(self.participants.values())
            outcomes = await asyncio.gather(
                *(self._connect(p) for p in panel), return_exceptions=True
            )
            result = StartResult()
            for participant, outcome in zip(panel, outcomes):
                if isinstance(outcome, BaseException):
                    result.failures[participant.id] = str(outcome)
                    participant.last_error = str(outcome)
                    logger.warning(f"Session {self.session_id}: {outcome}")
                    self.event_bus.publish_nowait(
                        Event(
                            type=EventType.AGENT_ERROR,
                            data={
                                "participant_id": participant.id,
                                "message": str(outcome),
                            },
                            source=participant.id,
                        )
                    )
                else:
                    result.connected.append(participant.id)

            if not result.ok:
                logger.error(
                    f"Session {self.session_id}: no agent could connect, "
                    f"staying {self.status.value}"
                )
                return result

            # Everyone starts muted: the presenter opens
            self.arbiter.reset()
            self._arbitration_task = asyncio.create_task(self._arbitration_loop())
            self.timeline.begin()
            self.clock.start()
            await self.capture.start()
            self._set_status(RecordingStatus.RECORDING)

            if self.session_logger:
                await self.session_logger.log_session_config(
                    [p.to_dict() for p in panel]
                )
            logger.info(
                f"Session {self.session_id}: recording with "
                f"{len(result.connected)}/{len(panel)} agent(s)"
            )
            return result

    async def _connect(self, participant: Participant) -> None:
        try:
            session = await self.transport.connect(
                participant, self._callbacks_for(participant)
            )
        except ConnectionFailure:
            raise
        except Exception as e:
            raise ConnectionFailure(participant.id, str(e) or type(e).__name__) from e
        participant.session = session
        participant.remote_id = session.remote_id
        participant.last_error = None
        self.event_bus.publish_nowait(
            Event(
                type=EventType.AGENT_CONNECTED,
                data={"participant_id": participant.id, "remote_id": session.remote_id},
                source=participant.id,
            )
        )

    async def pause(self) -> None:
        async with self._lifecycle_lock:
            self._require("pause", RecordingStatus.RECORDING)
            self.clock.pause()
            await self.capture.pause()
            self._set_status(RecordingStatus.PAUSED)

    async def resume(self) -> None:
        """Resume recording and give the floor back to the presenter."""
        async with self._lifecycle_lock:
            self._require("resume", RecordingStatus.PAUSED)
            self.clock.resume()
            await self.capture.resume()
            self.arbiter.reset()
            self.timeline.sync(self.arbiter.current_speaker_id)
            self._set_status(RecordingStatus.RECORDING)

    async def finish(self) -> list[TimelineSegment]:
        """Stop recording, end every agent session and finalize the timeline."""
        async with self._lifecycle_lock:
            self._require("finish", RecordingStatus.RECORDING, RecordingStatus.PAUSED)
            self.clock.stop()
            try:
                await self.capture.stop()
            except Exception as e:
                logger.error(f"Session {self.session_id}: capture stop failed: {e}")

            # No session may be ended while it still holds the floor
            self.arbiter.reset()
            await self._stop_arbitration()
            await self._end_all()

            segments = self.timeline.close()
            self._set_status(RecordingStatus.FINISHED)
            if self.session_logger:
                await self.session_logger.write_segments(
                    [s.to_dict() for s in segments]
                )
            return segments

    async def process(self) -> dict:
        """Hand the finalized timeline to post-processing. One-way."""
        request = await self.accept_processing()
        return await self.run_processing(request)

    async def accept_processing(self) -> ProcessingRequest:
        """Move to processing and build the hand-off. Raises without side effects."""
        async with self._lifecycle_lock:
            self._require("process", RecordingStatus.FINISHED)
            if self.post_processor is None:
                raise PracticeError("No post-processor configured", self.session_id)
            request = ProcessingRequest(
                session_id=self.session_id,
                timeline=self.finalized_timeline(),
                conversation_ids=self.conversation_ids(),
                recording_key=self.recording_key,
                pauses=list(self.clock.pauses),
            )
            self._set_status(RecordingStatus.PROCESSING)
            return request

    async def run_processing(self, request: ProcessingRequest) -> dict:
        self.result = await self.post_processor.process(request)
        return self.result

    async def teardown(self) -> None:
        """Best-effort cleanup for a session abandoned mid-recording."""
        await self._stop_arbitration()
        await self._end_all()

    async def _stop_arbitration(self) -> None:
        task, self._arbitration_task = self._arbitration_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _end_all(self) -> None:
        panel = list(self.participants.values())
        for participant in panel:
            if not participant.connected:
                logger.info(
                    f"Session {self.session_id}: {participant.id} not connected, "
                    f"nothing to end"
                )
        await asyncio.gather(
            *(self._end(p) for p in panel if p.connected), return_exceptions=True
        )

    async def _end(self, participant: Participant) -> None:
        session = participant.session
        try:
            await session.end()
        except Exception as e:
            failure = TeardownFailure(
                f"Failed to end session for {participant.id}: {e}", self.session_id
            )
            logger.error(f"Session {self.session_id}: {failure}")
            self.teardown_failures.append(failure)
            participant.last_error = str(e)
        finally:
            participant.session = None

    def _require(self, operation: str, *allowed: RecordingStatus) -> None:
        if self.status not in allowed:
            raise InvalidTransition(
                f"Cannot {operation} while {self.status.value}", self.session_id
            )

    def _set_status(self, status: RecordingStatus) -> None:
        previous, self.status = self.status, status
        logger.info(
            f"Session {self.session_id}: {previous.value} -> {status.value}"
        )
        self.event_bus.publish_nowait(
            Event(
                type=EventType.STATUS_CHANGED,
                data={"status": status.value, "elapsed": self.clock.elapsed()},
                source="system",
            )
        )

    # --- Listeners ---

    def _on_floor_change(self, previous: Optional[str], current: Optional[str]) -> None:
        self.event_bus.publish_nowait(
            Event(
                type=EventType.FLOOR_CHANGED,
                data={
                    "previous": previous,
                    "current": current,
                    "elapsed": self.clock.elapsed(),
                },
                source="arbiter",
            )
        )

    def _on_segment_closed(self, segment: TimelineSegment) -> None:
        self.event_bus.publish_nowait(
            Event(type=EventType.SEGMENT_CLOSED, data=segment.to_dict(), source="timeline")
        )

    async def _log_bus_event(self, event: Event) -> None:
        if event.type == EventType.FLOOR_DECISION:
            await self.session_logger.log_floor_decision(
                event.data["participant_id"],
                event.data["mode"],
                event.data["decision"],
                event.data["turn_counts"],
            )
        else:
            await self.session_logger.log_timeline_event(
                event.type.value, event.data, event.source
            )

"""Shared test fixtures for the practice-session core."""
from typing import Optional

import pytest

from pitchperfect.services.practice_session import PracticeSession
from pitchperfect.services.timeline import SessionClock
from pitchperfect.services.voice_session import (
    Participant,
    SessionCallbacks,
    VoiceMode,
)
from pitchperfect.services.volume_gate import VolumeGate


class ManualClock:
    """Time source that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession:
    def __init__(self, remote_id: str, fail_on_end: bool = False):
        self.remote_id = remote_id
        self.mode = VoiceMode.LISTENING
        self.gain: Optional[float] = None
        self.gain_history: list[float] = []
        self.ended = False
        self.fail_on_end = fail_on_end

    def set_gain(self, level: float) -> None:
        self.gain = level
        self.gain_history.append(level)

    async def end(self) -> None:
        if self.fail_on_end:
            raise RuntimeError("socket already closed")
        self.ended = True


class FakeTransport:
    """Stands in for the browser relay; tests push mode changes through it."""

    def __init__(self, failing: tuple = (), fail_on_end: tuple = ()):
        self.failing = set(failing)
        self.fail_on_end = set(fail_on_end)
        self.sessions: dict[str, FakeSession] = {}
        self.callbacks: dict[str, SessionCallbacks] = {}
        self.connect_calls: list[str] = []

    async def connect(self, participant, callbacks):
        self.connect_calls.append(participant.id)
        if participant.id in self.failing:
            raise RuntimeError("agent not found")
        session = FakeSession(
            f"conv-{participant.id}", fail_on_end=participant.id in self.fail_on_end
        )
        self.sessions[participant.id] = session
        self.callbacks[participant.id] = callbacks
        callbacks.on_connect()
        return session

    def speak(self, participant_id: str) -> None:
        self.callbacks[participant_id].on_mode_change(VoiceMode.SPEAKING)

    def listen(self, participant_id: str) -> None:
        self.callbacks[participant_id].on_mode_change(VoiceMode.LISTENING)

    def drop(self, participant_id: str) -> None:
        self.callbacks[participant_id].on_disconnect()

    def fail(self, participant_id: str, message: str) -> None:
        self.callbacks[participant_id].on_error(message)


class FakeCapture:
    def __init__(self, granted: bool = True):
        self.granted = granted
        self.calls: list[str] = []

    async def request_permission(self) -> bool:
        self.calls.append("permission")
        return self.granted

    async def start(self) -> None:
        self.calls.append("start")

    async def pause(self) -> None:
        self.calls.append("pause")

    async def resume(self) -> None:
        self.calls.append("resume")

    async def stop(self) -> None:
        self.calls.append("stop")


class FakeSio:
    """Records emits; answers calls from a per-event table (value, exception or callable)."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.emitted = []
        self.called = []

    async def emit(self, event, data=None, to=None, room=None):
        self.emitted.append((event, data, to or room))

    async def call(self, event, data=None, to=None, timeout=None):
        self.called.append((event, data, to))
        answer = self.answers.get(event)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(data)
        return answer

    def payloads(self, event):
        return [data for name, data, _ in self.emitted if name == event]


class FakePostProcessor:
    def __init__(self, error=None):
        self.requests = []
        self.error = error

    async def process(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return {"audio_key": f"recordings/{request.session_id}/combined.mp3", "weak_areas": []}


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def clock(manual_clock) -> SessionClock:
    return SessionClock(time_source=manual_clock)


@pytest.fixture
def gate() -> VolumeGate:
    return VolumeGate(audible=1.0, muted=0.0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture
def post_processor() -> FakePostProcessor:
    return FakePostProcessor()


@pytest.fixture
def make_session(transport, capture, clock, gate, post_processor):
    """Build a PracticeSession over the fake transport for the given agent ids."""

    def _make(agent_ids=("A", "B"), **overrides) -> PracticeSession:
        participants = [
            Participant(id=pid, name=f"Agent {pid}", agent_id=f"platform-{pid}")
            for pid in agent_ids
        ]
        kwargs = dict(
            session_id="pres-1",
            participants=participants,
            transport=transport,
            capture=capture,
            post_processor=post_processor,
            clock=clock,
            volume_gate=gate,
        )
        kwargs.update(overrides)
        return PracticeSession(**kwargs)

    return _make


def connected_participants(*ids: str) -> dict[str, Participant]:
    """Participants that already hold a live FakeSession."""
    return {
        pid: Participant(id=pid, name=f"Agent {pid}", session=FakeSession(f"conv-{pid}"))
        for pid in ids
    }


@pytest.fixture
def make_participants():
    return connected_participants

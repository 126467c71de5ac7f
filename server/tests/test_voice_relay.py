import asyncio

import pytest
from socketio.exceptions import TimeoutError as RelayTimeout

from pitchperfect.services.errors import ConnectionFailure
from pitchperfect.services.storage_service import StorageService
from pitchperfect.services.voice_relay import SocketIOAudioCapture, SocketIOVoiceTransport
from pitchperfect.services.voice_session import Participant, SessionCallbacks, VoiceMode

from conftest import FakeSio


def recording_callbacks(log):
    return SessionCallbacks(
        on_connect=lambda: log.append("connect"),
        on_disconnect=lambda: log.append("disconnect"),
        on_error=lambda message: log.append(f"error:{message}"),
        on_mode_change=lambda mode: log.append(f"mode:{mode}"),
    )


@pytest.fixture
def participant():
    return Participant(id="A", name="Analyst", agent_id="platform-a")


class TestSocketIOVoiceTransport:
    @pytest.mark.asyncio
    async def test_connect_returns_session_with_conversation_id(self, participant):
        sio = FakeSio({"agent_connect": {"conversationId": "conv-1"}})
        transport = SocketIOVoiceTransport(sio, "sid-1", "pres-1")
        log = []
        session = await transport.connect(participant, recording_callbacks(log))

        assert session.remote_id == "conv-1"
        assert sio.called[0] == (
            "agent_connect", {"agentId": "A", "platformAgentId": "platform-a"}, "sid-1"
        )
        assert log == ["connect"]

    @pytest.mark.asyncio
    async def test_connect_timeout_is_connection_failure(self, participant):
        sio = FakeSio({"agent_connect": RelayTimeout()})
        transport = SocketIOVoiceTransport(sio, "sid-1", "pres-1")
        with pytest.raises(ConnectionFailure):
            await transport.connect(participant, recording_callbacks([]))

    @pytest.mark.asyncio
    async def test_connect_error_ack(self, participant):
        sio = FakeSio({"agent_connect": {"error": "agent not found"}})
        transport = SocketIOVoiceTransport(sio, "sid-1", "pres-1")
        with pytest.raises(ConnectionFailure, match="agent not found"):
            await transport.connect(participant, recording_callbacks([]))

    @pytest.mark.asyncio
    async def test_set_gain_emits_volume(self, participant):
        sio = FakeSio({"agent_connect": {"conversationId": "conv-1"}})
        transport = SocketIOVoiceTransport(sio, "sid-1", "pres-1")
        session = await transport.connect(participant, recording_callbacks([]))
        session.set_gain(1.0)
        await asyncio.sleep(0)
        assert sio.emitted == [("agent_volume", {"agentId": "A", "volume": 1.0}, "sid-1")]

    @pytest.mark.asyncio
    async def test_end_raises_on_error_ack(self, participant):
        sio = FakeSio({
            "agent_connect": {"conversationId": "conv-1"},
            "agent_end": {"error": "already closed"},
        })
        transport = SocketIOVoiceTransport(sio, "sid-1", "pres-1")
        session = await transport.connect(participant, recording_callbacks([]))
        with pytest.raises(RuntimeError, match="already closed"):
            await session.end()

    @pytest.mark.asyncio
    async def test_dispatch_routes_to_callbacks(self, participant):
        sio = FakeSio({"agent_connect": {"conversationId": "conv-1"}})
        transport = SocketIOVoiceTransport(sio, "sid-1", "pres-1")
        log = []
        await transport.connect(participant, recording_callbacks(log))

        transport.dispatch_mode_change("A", "speaking")
        assert transport.sessions["A"].mode == VoiceMode.SPEAKING
        transport.dispatch_error("A", "quota")
        transport.dispatch_disconnect("A")
        transport.dispatch_mode_change("A", "listening")
        assert log == ["connect", "mode:speaking", "error:quota", "disconnect"]


class TestSocketIOAudioCapture:
    @pytest.mark.asyncio
    async def test_permission_from_ack(self, tmp_path):
        sio = FakeSio({"request_microphone": {"granted": True}})
        capture = SocketIOAudioCapture(sio, "sid-1", "pres-1", StorageService(str(tmp_path)))
        assert await capture.request_permission() is True

    @pytest.mark.asyncio
    async def test_permission_timeout_is_denial(self, tmp_path):
        sio = FakeSio({"request_microphone": RelayTimeout()})
        capture = SocketIOAudioCapture(sio, "sid-1", "pres-1", StorageService(str(tmp_path)))
        assert await capture.request_permission() is False

    @pytest.mark.asyncio
    async def test_chunks_appended(self, tmp_path):
        storage = StorageService(str(tmp_path))
        capture = SocketIOAudioCapture(FakeSio(), "sid-1", "pres-1", storage)
        await capture.start()
        await capture.append_chunk(b"abc")
        await capture.append_chunk(b"def")
        await capture.stop()
        assert await storage.read(capture.recording_key) == b"abcdef"
        assert capture.chunk_count == 2
        assert [e[0] for e in capture._sio.emitted] == ["capture_start", "capture_stop"]

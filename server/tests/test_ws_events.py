"""Socket.IO practice handlers against a throwaway SQLite database."""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from pitchperfect.config import settings
from pitchperfect.models import Agent, Base, Presentation
from pitchperfect.models.agent import AgentCreationStatus
from pitchperfect.models.presentation import PresentationStatus
from pitchperfect.services.practice_session import RecordingStatus
from pitchperfect.ws import events, handler

from conftest import FakePostProcessor, FakeSio


def browser_answers(**overrides):
    """Acks a cooperative browser would send."""
    answers = {
        "request_microphone": {"granted": True},
        "agent_connect": lambda data: {"conversationId": f"conv-{data['agentId']}"},
        "agent_end": {},
    }
    answers.update(overrides)
    return answers


@pytest_asyncio.fixture
async def db_factory(tmp_path, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'practice.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(events, "async_session_factory", factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def fake_sio(monkeypatch):
    sio = FakeSio(browser_answers())
    monkeypatch.setattr(events, "sio", sio)
    return sio


@pytest.fixture
def pipeline(monkeypatch, post_processor):
    monkeypatch.setattr(events, "build_post_processor", lambda: post_processor)
    return post_processor


@pytest_asyncio.fixture
async def env(db_factory, fake_sio, pipeline, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "storage_dir", str(tmp_path / "data"))
    yield
    for presentation_id in list(events.live_sessions):
        await events.cleanup_session(presentation_id)


async def seed(factory, agents=("A", "B"), **fields):
    async with factory() as db:
        for agent_id in agents:
            db.add(Agent(
                id=agent_id,
                name=f"Agent {agent_id}",
                platform_agent_id=f"platform-{agent_id}",
                creation_status=AgentCreationStatus.READY.value,
            ))
        db.add(Presentation(id="pres-1", agent_ids=list(agents), **fields))
        await db.commit()
    return "pres-1"


async def load(factory, presentation_id="pres-1") -> Presentation:
    async with factory() as db:
        return await db.get(Presentation, presentation_id)


def error_codes(sio):
    return [p["code"] for p in sio.payloads("practice_error")]


class TestPracticeStart:
    @pytest.mark.asyncio
    async def test_start_records_and_persists(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")

        [started] = fake_sio.payloads("practice_started")
        assert started["connected"] == ["A", "B"]
        assert events.get_live_session(pid).status == RecordingStatus.RECORDING
        presentation = await load(db_factory)
        assert presentation.status == PresentationStatus.RECORDING.value
        assert presentation.started_at is not None

    @pytest.mark.asyncio
    async def test_permission_denied_emits_error(self, env, db_factory, fake_sio):
        fake_sio.answers["request_microphone"] = {"granted": False}
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")

        assert error_codes(fake_sio) == ["permission_denied"]
        assert fake_sio.payloads("practice_started") == []
        assert [c[0] for c in fake_sio.called] == ["request_microphone"]
        assert (await load(db_factory)).status == PresentationStatus.DRAFT.value

    @pytest.mark.asyncio
    async def test_no_agent_connects(self, env, db_factory, fake_sio):
        fake_sio.answers["agent_connect"] = {"error": "agent not found"}
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")

        assert error_codes(fake_sio) == ["connection_failure"]
        assert events.get_live_session(pid).status == RecordingStatus.NOT_STARTED
        assert (await load(db_factory)).status == PresentationStatus.DRAFT.value

    @pytest.mark.asyncio
    async def test_unknown_presentation(self, env, fake_sio):
        await events.handle_practice_start("missing", "sid-1")
        assert error_codes(fake_sio) == ["not_found"]
        assert events.get_live_session("missing") is None

    @pytest.mark.asyncio
    async def test_unprovisioned_agent_left_out(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        async with db_factory() as db:
            agent = await db.get(Agent, "B")
            agent.platform_agent_id = None
            agent.creation_status = AgentCreationStatus.FAILED.value
            await db.commit()

        await events.handle_practice_start(pid, "sid-1")
        [started] = fake_sio.payloads("practice_started")
        assert started["connected"] == ["A"]


class TestRejectedLifecycle:
    @pytest.mark.asyncio
    async def test_pause_without_session(self, env, fake_sio):
        await events.handle_practice_pause("pres-1", "sid-1")
        assert error_codes(fake_sio) == ["practice_error"]

    @pytest.mark.asyncio
    async def test_resume_while_recording_keeps_session(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_practice_resume(pid, "sid-1")

        assert error_codes(fake_sio) == ["invalid_transition"]
        assert events.get_live_session(pid).status == RecordingStatus.RECORDING

    @pytest.mark.asyncio
    async def test_process_before_finish_changes_nothing(
        self, env, db_factory, fake_sio, pipeline
    ):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_practice_process(pid, "sid-1")

        assert error_codes(fake_sio) == ["invalid_transition"]
        practice = events.get_live_session(pid)
        assert practice is not None
        assert practice.status == RecordingStatus.RECORDING
        assert all(p.connected for p in practice.participants.values())
        assert "agent_end" not in [c[0] for c in fake_sio.called]
        assert pipeline.requests == []
        presentation = await load(db_factory)
        assert presentation.status == PresentationStatus.RECORDING.value
        assert presentation.error is None

    @pytest.mark.asyncio
    async def test_process_without_pipeline_keeps_session(
        self, env, db_factory, fake_sio, monkeypatch
    ):
        monkeypatch.setattr(events, "build_post_processor", lambda: None)
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_practice_finish(pid, "sid-1")
        await events.handle_practice_process(pid, "sid-1")

        assert error_codes(fake_sio) == ["practice_error"]
        assert events.get_live_session(pid).status == RecordingStatus.FINISHED
        assert (await load(db_factory)).status == PresentationStatus.FINISHED.value


class TestFinishAndProcess:
    @pytest.mark.asyncio
    async def test_finish_persists_timeline(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_agent_mode_change(
            pid, "sid-1", {"agentId": "A", "mode": "speaking"}
        )
        await events.get_live_session(pid).drain()
        await events.handle_practice_finish(pid, "sid-1")

        presentation = await load(db_factory)
        assert presentation.status == PresentationStatus.FINISHED.value
        assert [e["conversation_id"] for e in presentation.timeline] == ["user", "conv-A"]
        assert presentation.ended_at is not None
        [finished] = fake_sio.payloads("practice_finished")
        assert [s["owner_id"] for s in finished["segments"]] == ["user", "A"]
        ended = sorted(c[1]["agentId"] for c in fake_sio.called if c[0] == "agent_end")
        assert ended == ["A", "B"]

    @pytest.mark.asyncio
    async def test_malformed_mode_change_dropped(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_agent_mode_change(pid, "sid-1", {"mode": "speaking"})
        await events.get_live_session(pid).drain()
        assert events.get_live_session(pid).current_speaker_id is None

    @pytest.mark.asyncio
    async def test_process_uses_uploaded_recording(
        self, env, db_factory, fake_sio, pipeline
    ):
        pid = await seed(db_factory, recording_key="recordings/pres-1/presenter.wav")
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_practice_finish(pid, "sid-1")
        await events.handle_practice_process(pid, "sid-1")

        [request] = pipeline.requests
        assert request.recording_key == "recordings/pres-1/presenter.wav"
        assert request.conversation_ids == ["conv-A", "conv-B"]
        presentation = await load(db_factory)
        assert presentation.status == PresentationStatus.COMPLETE.value
        assert presentation.audio_key == "recordings/pres-1/combined.mp3"
        assert len(fake_sio.payloads("practice_processed")) == 1
        assert events.get_live_session(pid) is None

    @pytest.mark.asyncio
    async def test_captured_audio_wins_over_upload(self, env, db_factory, fake_sio, pipeline):
        pid = await seed(db_factory, recording_key="recordings/pres-1/presenter.wav")
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_audio_chunk(pid, "sid-1", b"\x1a\x45\xdf\xa3")
        await events.handle_practice_finish(pid, "sid-1")
        await events.handle_practice_process(pid, "sid-1")

        assert pipeline.requests[0].recording_key == "recordings/pres-1/presenter.webm"

    @pytest.mark.asyncio
    async def test_pipeline_failure_marks_failed(self, env, db_factory, fake_sio, monkeypatch):
        failing = FakePostProcessor(error=RuntimeError("ffmpeg exited with 1"))
        monkeypatch.setattr(events, "build_post_processor", lambda: failing)
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_practice_finish(pid, "sid-1")
        await events.handle_practice_process(pid, "sid-1")

        assert error_codes(fake_sio) == ["internal_error"]
        presentation = await load(db_factory)
        assert presentation.status == PresentationStatus.FAILED.value
        assert presentation.error == "ffmpeg exited with 1"
        assert events.get_live_session(pid) is None


class TestClientDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_while_recording_tears_down(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_client_disconnect(pid, "sid-1")

        assert events.get_live_session(pid) is None
        ended = sorted(c[1]["agentId"] for c in fake_sio.called if c[0] == "agent_end")
        assert ended == ["A", "B"]
        presentation = await load(db_factory)
        assert presentation.status == PresentationStatus.FAILED.value
        assert presentation.error == "Presenter disconnected during recording"

    @pytest.mark.asyncio
    async def test_other_client_disconnect_ignored(self, env, db_factory, fake_sio):
        pid = await seed(db_factory)
        await events.handle_practice_start(pid, "sid-1")
        await events.handle_client_disconnect(pid, "sid-2")

        assert events.get_live_session(pid).status == RecordingStatus.RECORDING
        assert (await load(db_factory)).status == PresentationStatus.RECORDING.value


class TestHandlerRouting:
    @pytest.mark.asyncio
    async def test_connect_joins_room_and_routes_events(self, monkeypatch):
        rooms, routed = [], []

        async def enter_room(sid, room):
            rooms.append((sid, room))

        async def record(presentation_id, sid, *args):
            routed.append((presentation_id, sid))

        monkeypatch.setattr(handler.sio, "enter_room", enter_room)
        monkeypatch.setattr(events, "handle_practice_pause", record)
        monkeypatch.setattr(events, "handle_client_disconnect", record)

        await handler.connect("sid-9", {}, {"presentationId": "pres-7"})
        assert rooms == [("sid-9", "presentation_pres-7")]

        await handler.practice_pause("sid-9")
        await handler.disconnect("sid-9")
        assert routed == [("pres-7", "sid-9"), ("pres-7", "sid-9")]
        assert "sid-9" not in handler.active_connections

    @pytest.mark.asyncio
    async def test_events_without_presentation_ignored(self, monkeypatch):
        routed = []

        async def record(presentation_id, sid, *args):
            routed.append(presentation_id)

        monkeypatch.setattr(events, "handle_practice_start", record)
        await handler.connect("sid-10", {}, None)
        await handler.practice_start("sid-10")
        assert routed == []

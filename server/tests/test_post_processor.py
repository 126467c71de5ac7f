import os

import pytest

from pitchperfect.services.highlight_service import HighlightGenerator
from pitchperfect.services.post_processor import RecordingPostProcessor
from pitchperfect.services.practice_session import ProcessingRequest
from pitchperfect.services.storage_service import StorageService


class FakePlatform:
    def __init__(self):
        self.fetched = []

    async def fetch_conversation_audio(self, conversation_id):
        self.fetched.append(conversation_id)
        return f"audio-{conversation_id}".encode()


class FakeEditor:
    def __init__(self):
        self.cuts = []
        self.joined = []

    async def cut(self, source_path, start, end, output_path):
        self.cuts.append((os.path.basename(source_path), start, end))
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(b"clip")
        return output_path

    async def concat(self, paths, output_path):
        self.joined.append([os.path.basename(p) for p in paths])
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(b"combined")
        return output_path


class FakeTranscriber:
    async def transcribe(self, path):
        return [
            {"id": 0, "start": 0.0, "end": 3.0, "text": "Hello everyone."},
            {"id": 1, "start": 3.0, "end": 7.0, "text": "Um, uh, so the plan is, like, good."},
        ]


@pytest.fixture
def storage(tmp_path):
    return StorageService(base_dir=str(tmp_path))


@pytest.fixture
def editor():
    return FakeEditor()


@pytest.fixture
def processor(storage, editor):
    return RecordingPostProcessor(
        platform=FakePlatform(),
        editor=editor,
        transcriber=FakeTranscriber(),
        highlighter=HighlightGenerator(None),
        storage=storage,
    )


def request_for(**kwargs):
    base = dict(
        session_id="pres-1",
        timeline=[
            {"start": 0.0, "end": 2.0, "conversation_id": "user"},
            {"start": 2.0, "end": 6.0, "conversation_id": "conv-a"},
            {"start": 6.0, "end": 8.0, "conversation_id": "user"},
        ],
        conversation_ids=["conv-a", "conv-b"],
    )
    base.update(kwargs)
    return ProcessingRequest(**base)


class TestRecordingPostProcessor:
    @pytest.mark.asyncio
    async def test_full_pipeline(self, processor, editor, storage):
        result = await processor.process(request_for())

        assert await storage.exists("recordings/pres-1/conv-a.mp3")
        assert await storage.exists("recordings/pres-1/conv-b.mp3")
        assert editor.cuts[:2] == [("conv-a.mp3", 0.0, 2.0), ("conv-a.mp3", 2.0, 8.0)]
        assert editor.joined == [["clip_0.mp3", "clip_1.mp3"]]

        assert result["audio_key"] == "recordings/pres-1/combined.mp3"
        assert result["audio_url"] == "/api/files/recordings/pres-1/combined.mp3"
        assert [c["source"] for c in result["splice_plan"]] == ["conv-a", "conv-a"]
        assert len(result["transcript"]) == 2

        [area] = result["weak_areas"]
        assert area["segment_id"] == 1
        assert area["clip_url"] == "/api/files/recordings/pres-1/weak_area_clips/clip_0.mp3"
        assert editor.cuts[-1] == ("combined.mp3", 3.0, 7.0)
        assert not os.path.exists(storage.path_for("processing/pres-1"))

    @pytest.mark.asyncio
    async def test_uses_presenter_recording_for_opening(self, processor, editor, storage):
        await storage.upload("recordings/pres-1/presenter.webm", b"webm")
        await processor.process(request_for(recording_key="recordings/pres-1/presenter.webm"))
        assert editor.cuts[0] == ("presenter.webm", 0.0, 2.0)

    @pytest.mark.asyncio
    async def test_missing_presenter_recording_ignored(self, processor, editor):
        await processor.process(request_for(recording_key="recordings/pres-1/presenter.webm"))
        assert editor.cuts[0] == ("conv-a.mp3", 0.0, 2.0)

    @pytest.mark.asyncio
    async def test_empty_plan(self, processor, editor):
        result = await processor.process(request_for(
            timeline=[{"start": 0.0, "end": 4.0, "conversation_id": "user"}],
            conversation_ids=[],
        ))
        assert result["audio_key"] is None
        assert editor.cuts == []

    @pytest.mark.asyncio
    async def test_no_source_audio_for_any_clip(self, processor, editor):
        result = await processor.process(request_for(
            timeline=[
                {"start": 0.0, "end": 2.0, "conversation_id": "user"},
                {"start": 2.0, "end": 6.0, "conversation_id": "conv-gone"},
            ],
            conversation_ids=["conv-a"],
        ))
        assert result["audio_key"] is None
        assert result["transcript"] == []
        assert [c["source"] for c in result["splice_plan"]] == ["conv-gone", "conv-gone"]
        assert editor.cuts == []
        assert editor.joined == []

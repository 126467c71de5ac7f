"""Post-processing for a finished practice session.

Pulls every agent conversation recording from the voice platform, splices
them (and the presenter's own recording, for the opening span) into one
ordered file, transcribes it and cuts a clip for each weak area.
"""

import asyncio
import logging
import os
import shutil
from typing import Optional

from pitchperfect.services.audio_editor import FfmpegAudioEditor
from pitchperfect.services.elevenlabs_client import ElevenLabsClient
from pitchperfect.services.highlight_service import HighlightGenerator
from pitchperfect.services.practice_session import ProcessingRequest
from pitchperfect.services.splice_plan import build_splice_plan
from pitchperfect.services.storage_service import StorageService
from pitchperfect.services.transcription import WhisperTranscriber
from pitchperfect.services.voice_session import USER_OWNER

logger = logging.getLogger(__name__)


def _empty_result(splice_plan: Optional[list] = None) -> dict:
    return {
        "audio_key": None,
        "transcript": [],
        "weak_areas": [],
        "splice_plan": splice_plan or [],
    }


class RecordingPostProcessor:
    def __init__(
        self,
        platform: ElevenLabsClient,
        editor: FfmpegAudioEditor,
        transcriber: WhisperTranscriber,
        highlighter: HighlightGenerator,
        storage: Optional[StorageService] = None,
    ):
        self.platform = platform
        self.editor = editor
        self.transcriber = transcriber
        self.highlighter = highlighter
        self.storage = storage or StorageService()

    async def process(self, request: ProcessingRequest) -> dict:
        sid = request.session_id
        logger.info(
            f"Session {sid}: post-processing {len(request.timeline)} timeline "
            f"entries from {len(request.conversation_ids)} conversation(s)"
        )

        sources = await self._fetch_sources(sid, request.conversation_ids)
        user_source = None
        if request.recording_key and await self.storage.exists(request.recording_key):
            sources[USER_OWNER] = self.storage.path_for(request.recording_key)
            user_source = USER_OWNER

        plan = build_splice_plan(request.timeline, request.pauses, user_source)
        if not plan:
            logger.warning(f"Session {sid}: empty splice plan, nothing to process")
            return _empty_result()

        work_dir = self.storage.path_for(f"processing/{sid}")
        try:
            clip_paths = []
            for i, clip in enumerate(plan):
                source_path = sources.get(clip.source)
                if source_path is None:
                    logger.warning(
                        f"Session {sid}: no audio for {clip.source}, skipping clip {i}"
                    )
                    continue
                clip_paths.append(
                    await self.editor.cut(
                        source_path,
                        clip.start,
                        clip.end,
                        os.path.join(work_dir, f"clip_{i}.mp3"),
                    )
                )

            if not clip_paths:
                logger.warning(f"Session {sid}: no source audio for any clip")
                return _empty_result([c.to_dict() for c in plan])

            audio_key = f"recordings/{sid}/combined.mp3"
            combined_path = self.storage.path_for(audio_key)
            await self.editor.concat(clip_paths, combined_path)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        transcript = await self.transcriber.transcribe(combined_path)
        weak_areas = await self.highlighter.highlight(transcript)

        for i, area in enumerate(weak_areas):
            clip_key = f"recordings/{sid}/weak_area_clips/clip_{i}.mp3"
            await self.editor.cut(
                combined_path,
                area["start"],
                area["end"],
                self.storage.path_for(clip_key),
            )
            area["clip_url"] = await self.storage.get_url(clip_key)

        logger.info(
            f"Session {sid}: processed {len(plan)} clip(s), "
            f"{len(transcript)} transcript segment(s), {len(weak_areas)} weak area(s)"
        )
        return {
            "audio_key": audio_key,
            "audio_url": await self.storage.get_url(audio_key),
            "transcript": transcript,
            "weak_areas": weak_areas,
            "splice_plan": [c.to_dict() for c in plan],
        }

    async def _fetch_sources(self, sid: str, conversation_ids: list[str]) -> dict[str, str]:
        """Download every conversation's audio; returns conversation id -> local path."""
        payloads = await asyncio.gather(
            *(self.platform.fetch_conversation_audio(c) for c in conversation_ids)
        )
        sources = {}
        for conversation_id, data in zip(conversation_ids, payloads):
            key = f"recordings/{sid}/{conversation_id}.mp3"
            await self.storage.upload(key, data, "audio/mpeg")
            sources[conversation_id] = self.storage.path_for(key)
        return sources

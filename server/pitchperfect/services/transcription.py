import logging
from typing import Optional

from openai import AsyncOpenAI

from pitchperfect.config import settings

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    """Timestamped transcription of the spliced session recording."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model or settings.whisper_model
        self.client = client or AsyncOpenAI(api_key=api_key or settings.openai_api_key)

    async def transcribe(self, path: str) -> list[dict]:
        """Return ``[{id, start, end, text}]`` segments for the audio at *path*."""
        with open(path, "rb") as audio:
            response = await self.client.audio.transcriptions.create(
                file=audio,
                model=self.model,
                response_format="verbose_json",
            )

        segments = []
        for seg in getattr(response, "segments", None) or []:
            segments.append(
                {
                    "id": seg.id,
                    "start": round(float(seg.start), 2),
                    "end": round(float(seg.end), 2),
                    "text": seg.text.strip(),
                }
            )
        logger.info(f"Transcribed {path}: {len(segments)} segment(s)")
        return segments

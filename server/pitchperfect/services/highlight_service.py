import logging
import re
from typing import Optional

from pitchperfect.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

FILLER_WORDS = {
    "um", "uh", "ah", "like", "you know", "basically", "actually",
    "sort of", "kind of", "i mean",
}

_FILLER_PATTERN = re.compile(
    r"\b(" + "|".join(sorted((re.escape(w) for w in FILLER_WORDS), key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

HIGHLIGHT_SYSTEM_PROMPT = """You are an expert speech coach reviewing the transcript of a practice presentation
in which AI audience members asked the presenter questions.

Find the transcript lines where the presenter:
- leans on filler words ("um", "uh", "like", "you know", ...)
- is hard to follow or not speaking clearly
- does not get their point across
- gives a weak or evasive answer to an audience question

The transcript is given one line per segment as: <id>, "<text>"

Respond ONLY with valid JSON matching this exact schema:
{
  "weak_areas": [
    {"id": number, "explanation": "string", "improvement": "string"}
  ]
}"""


def count_fillers(text: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for match in _FILLER_PATTERN.finditer(text or ""):
        word = match.group(1).lower()
        counts[word] = counts.get(word, 0) + 1
    return counts


class HighlightGenerator:
    """Marks weak areas of a timestamped transcript."""

    def __init__(self, llm_client: Optional[LLMClient]):
        self.llm = llm_client

    async def highlight(self, segments: list[dict]) -> list[dict]:
        """Weak areas as ``{segment_id, start, end, transcript, explanation, improvement, fillers}``."""
        if not segments:
            return []

        flagged: dict[int, dict] = {}
        if self.llm is not None:
            try:
                response = await self.llm.generate_json(
                    system_prompt=HIGHLIGHT_SYSTEM_PROMPT,
                    contents=self._build_transcript(segments),
                )
                flagged = self._parse_weak_areas(response)
            except Exception as e:
                logger.error(f"Weak-area highlighting failed: {e}")

        by_id = {seg["id"]: seg for seg in segments}
        weak_areas = []
        for seg in segments:
            fillers = count_fillers(seg.get("text", ""))
            note = flagged.get(seg["id"])
            if note is None and sum(fillers.values()) < 2:
                continue
            if note is None:
                note = {
                    "explanation": "Frequent filler words: " + ", ".join(sorted(fillers)),
                    "improvement": "Pause silently instead of filling the gap.",
                }
            weak_areas.append(
                {
                    "segment_id": seg["id"],
                    "start": seg["start"],
                    "end": seg["end"],
                    "transcript": seg.get("text", ""),
                    "explanation": note.get("explanation", ""),
                    "improvement": note.get("improvement", ""),
                    "fillers": fillers,
                }
            )

        unknown = set(flagged) - set(by_id)
        if unknown:
            logger.warning(f"LLM flagged unknown segment ids: {sorted(unknown)}")
        return weak_areas

    @staticmethod
    def _build_transcript(segments: list[dict]) -> str:
        return "\n".join(
            f'{seg["id"]}, "{seg.get("text", "")}"' for seg in segments
        )

    @staticmethod
    def _parse_weak_areas(response: dict) -> dict[int, dict]:
        flagged = {}
        for item in response.get("weak_areas", []) or []:
            if not isinstance(item, dict):
                continue
            try:
                seg_id = int(item.get("id"))
            except (TypeError, ValueError):
                continue
            flagged[seg_id] = {
                "explanation": str(item.get("explanation", "")),
                "improvement": str(item.get("improvement", "")),
            }
        return flagged

import json
import logging

from google import genai
from google.genai import types

from pitchperfect.config import settings

logger = logging.getLogger(__name__)


class LLMClient:
    """Wrapper for the Google Gemini API."""

    def __init__(self, api_key: str, model: str | None = None):
        self.client = genai.Client(api_key=api_key)
        self.model = model or settings.highlight_model

    async def generate_json(
        self,
        system_prompt: str,
        contents: str,
        temperature: float = 0.4,
    ) -> dict:
        """Run a prompt that must answer with a JSON object.

        Returns an empty dict when the response is not valid JSON.
        """
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                response_mime_type="application/json",
                temperature=temperature,
            ),
        )

        text = (response.text or "").strip()
        logger.info(f"LLM JSON response: len={len(text)}, text='{text[:200]}'")

        try:
            result = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse LLM JSON: {text[:200]}")
            return {}
        return result if isinstance(result, dict) else {}

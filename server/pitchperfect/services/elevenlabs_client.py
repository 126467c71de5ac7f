"""Voice platform REST client (ElevenLabs conversational agents)."""

import logging
from typing import Any, Optional

import httpx

from pitchperfect.config import settings

logger = logging.getLogger(__name__)

PREVIEW_TEXT = (
    "This is a sample text to generate a voice. I want to ensure this text is long "
    "enough to properly capture the voice characteristics and speaking patterns. "
    "Please use this audio sample to create a natural sounding voice that matches "
    "the description provided."
)


class VoicePlatformError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ElevenLabsClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.elevenlabs_api_key
        self.base_url = (base_url or settings.elevenlabs_base_url).rstrip("/")
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, connect=10.0),
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        headers = {"xi-api-key": self.api_key, **kwargs.pop("headers", {})}
        resp = await client.request(method, url, headers=headers, **kwargs)

        if resp.status_code >= 400:
            try:
                detail: Any = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            logger.error(
                f"Voice platform error {resp.status_code} on {path}: {str(detail)[:300]}"
            )
            raise VoicePlatformError(str(detail), resp.status_code)
        return resp

    async def get_signed_url(self, agent_id: str) -> str:
        """Signed websocket URL the browser uses to start a conversation."""
        resp = await self._request(
            "GET",
            "/convai/conversation/get_signed_url",
            params={"agent_id": agent_id},
        )
        return resp.json()["signed_url"]

    async def fetch_conversation_audio(self, conversation_id: str) -> bytes:
        resp = await self._request(
            "GET", f"/convai/conversations/{conversation_id}/audio"
        )
        logger.info(
            f"Fetched {len(resp.content)} bytes of audio for conversation "
            f"{conversation_id}"
        )
        return resp.content

    async def create_voice(self, name: str, voice_description: str) -> str:
        """Generate a voice from a description and save it; returns the voice id."""
        resp = await self._request(
            "POST",
            "/text-to-voice/create-previews",
            json={"voice_description": voice_description, "text": PREVIEW_TEXT},
        )
        previews = resp.json().get("previews") or []
        if not previews:
            raise VoicePlatformError("No voice previews returned")

        resp = await self._request(
            "POST",
            "/text-to-voice/create-voice-from-preview",
            json={
                "voice_name": f"{name}_voice",
                "voice_description": voice_description,
                # Always the first preview
                "generated_voice_id": previews[0]["generated_voice_id"],
            },
        )
        voice_id = resp.json()["voice_id"]
        logger.info(f"Created voice {voice_id} for {name}")
        return voice_id

    async def create_agent(self, name: str, system_prompt: str, voice_id: str) -> str:
        """Create a conversational agent; returns the platform agent id."""
        body = {
            "name": name,
            "conversation_config": {
                "agent": {
                    "language": "en",
                    "prompt": {
                        "prompt": system_prompt,
                        "llm": settings.agent_llm,
                        "temperature": 0.5,
                    },
                },
                "asr": {"quality": "high", "user_input_audio_format": "pcm_16000"},
                "tts": {
                    "voice_id": voice_id,
                    "model_id": settings.agent_tts_model,
                    "agent_output_audio_format": "pcm_16000",
                    "stability": 0.5,
                    "similarity_boost": 0.8,
                },
                "turn": {"turn_timeout": 7},
                "conversation": {
                    "max_duration_seconds": settings.agent_max_duration_secs,
                },
            },
        }
        resp = await self._request("POST", "/convai/agents/create", json=body)
        agent_id = resp.json()["agent_id"]
        logger.info(f"Created platform agent {agent_id} for {name}")
        return agent_id

    async def update_agent_prompt(self, agent_id: str, prompt: str) -> None:
        """Replace the agent's system prompt, keeping the rest of its config."""
        resp = await self._request("GET", f"/convai/agents/{agent_id}")
        config = resp.json().get("conversation_config", {})
        agent_config = config.get("agent", {})
        agent_config["prompt"] = {**agent_config.get("prompt", {}), "prompt": prompt}
        config["agent"] = agent_config
        await self._request(
            "PATCH", f"/convai/agents/{agent_id}", json={"conversation_config": config}
        )

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

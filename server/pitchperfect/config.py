from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database (SQLite by default, no install required)
    database_url: str = "sqlite+aiosqlite:///./pitchperfect.db"

    # Voice agent platform (conversational agents + conversation audio)
    elevenlabs_api_key: str = ""
    elevenlabs_base_url: str = "https://api.us.elevenlabs.io/v1"
    # Provisioned audience agents
    agent_llm: str = "claude-3-5-sonnet"
    agent_tts_model: str = "eleven_turbo_v2"
    agent_max_duration_secs: int = 300

    # OpenAI API (Whisper transcription of the spliced recording)
    openai_api_key: str = ""
    whisper_model: str = "whisper-1"

    # Gemini API (weak-area highlighting)
    gemini_api_key: str = ""
    highlight_model: str = "gemini-2.5-flash"

    # Local file storage
    storage_dir: str = "./data"

    # SQL statement logging (very noisy; separate from debug)
    db_echo: bool = False

    # App
    cors_origins: list[str] = ["http://localhost:3000"]
    debug: bool = True

    # Output gain applied to agent sessions by the volume gate
    agent_gain_audible: float = 1.0
    agent_gain_muted: float = 0.0

    # Relay timeouts (seconds) for browser-held voice sessions
    agent_connect_timeout: float = 15.0
    agent_end_timeout: float = 10.0
    microphone_timeout: float = 30.0

    # External audio editor used to cut and join conversation audio
    ffmpeg_binary: str = "ffmpeg"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()

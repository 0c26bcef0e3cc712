"""Runtime configuration for the voice assistant."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven runtime settings."""

    model_config = SettingsConfigDict(env_prefix="VOICE_ASSISTANT_", env_file=".env", extra="ignore")

    app_name: str = "voice-assistant"
    log_level: str = "INFO"

    api_base_url: str = Field(
        default="http://127.0.0.1:3000/api",
        description="Base URL of the backend that proxies the speech and language-model vendors.",
    )
    asr_path: str = "/asr"
    token_path: str = "/token"
    buffered_tts_path: str = "/tts/buffered"
    streaming_info_path: str = "/tts/streaming-info"
    chat_path: str = "/chat"
    http_timeout_seconds: float = 30.0

    device_class: str = Field(default="desktop", description="desktop, mobile, or auto (uses user_agent).")
    user_agent: str = ""
    client_identity: str = "local-client"

    token_cache_days: float = 29.0
    token_safety_margin_days: float = 1.0

    buffered_max_chars: int = 1_000
    rate_limit_requests: int = 100
    rate_limit_window_seconds: float = 900.0

    sample_rate: int = 16_000
    recognition_chunk_seconds: float = 1.0
    recognition_language: str = "zh-CN"
    phrase_time_limit_seconds: float = 10.0

    streaming_voice: str = "x4_lingbosong"
    streaming_receive_timeout_seconds: float = 15.0
    voice_speed: int = 4
    voice_pitch: int = 4
    voice_volume: int = 5
    voice_id: str = "5003"

    chat_timeout_seconds: float = 30.0
    chat_constrained_timeout_seconds: float = 15.0
    chat_connect_timeout_seconds: float = 5.0
    chat_max_retries: int = 2
    chat_retry_delay_seconds: float = 1.0
    chat_temperature: float = 0.7
    chat_history_turns: int = 6
    constrained_system_prompt_chars: int = 400
    system_prompt: str = (
        "You are a friendly spoken assistant. Answer conversationally in short paragraphs, "
        "without markdown, lists, or stage directions."
    )
    demo_mode: bool = False

    def url(self, path: str) -> str:
        """Join an endpoint path onto the configured API base URL."""
        return f"{self.api_base_url.rstrip('/')}/{path.lstrip('/')}"


settings = Settings()

import os

from pydantic_settings import BaseSettings, SettingsConfigDict


class VoiceChatConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VOICE_CHAT_")

    endpoint_url: str = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
    api_key_file: str = "~/.config/voice-chat/api-key"
    request_timeout_seconds: float = 120.0

    model: str = "glm-4.5-air"
    temperature: float = 0.7
    max_tokens: int = 1000
    top_p: float | None = None
    stop: list[str] | None = None
    system_prompt: str = ""
    max_history_turns: int = 20

    deepgram_api_key_file: str = ""
    recognizer_model: str = "nova-2"
    recognizer_language: str = "zh-CN"

    capture_device: str = ""
    sample_rate: int = 16000
    tap_buffer_size: int = 1024
    settle_delay_seconds: float = 0.5
    deactivation_delay_seconds: float = 0.3
    deactivation_attempts: int = 3
    deactivation_backoff_seconds: float = 0.5

    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(os.path.expanduser(path)) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

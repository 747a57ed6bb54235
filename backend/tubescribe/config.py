"""
Configuration settings for TubeScribe.
"""
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


TRANSCRIPT_STRATEGIES = ("caption_first", "audio_first", "hybrid")
AUDIO_SOURCES = ("yt_dlp", "player_response")
TRANSCRIPTION_BACKENDS = ("openai", "local")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application Configuration
    app_name: str = "TubeScribe"
    version: str = "1.0.0"
    debug: bool = False

    # Credentials
    api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    youtube_api_key: Optional[str] = None

    # Strategy selection
    transcript_strategy: str = "hybrid"
    caption_strategies: str = "timedtext,player_response,caption_tracks,data_api,transcript_api"
    caption_language: str = "en"
    audio_source: str = "yt_dlp"

    # Speech-to-text
    transcription_backend: str = "openai"
    openai_transcription_model: str = "whisper-1"
    local_whisper_model: str = "base"
    transcription_language: Optional[str] = "en"
    transcription_timeout_seconds: float = 600.0
    max_parallel_chunks: int = 1

    # Network
    http_timeout_seconds: float = 15.0
    http_retries: int = 2
    user_agent: str = DEFAULT_USER_AGENT
    audio_download_timeout_seconds: float = 300.0

    # Audio handling
    max_video_duration_seconds: Optional[int] = None
    chunk_max_seconds: int = 30 * 60
    audio_bitrate: str = "64k"
    audio_sample_rate: int = 16000
    ffmpeg_timeout_seconds: float = 600.0
    max_upload_bytes: int = 25 * 1024 * 1024
    tubescribe_temp_dir: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/tubescribe.log"

    # CORS Configuration: "*" or a single origin
    cors_allow_origin: str = "*"

    @property
    def caption_strategy_list(self) -> List[str]:
        """Ordered caption strategy names parsed from the comma-separated setting."""
        return [name.strip() for name in self.caption_strategies.split(",") if name.strip()]

    @property
    def temp_dir(self) -> Path:
        """Parent directory for per-request audio workspaces."""
        return Path(self.tubescribe_temp_dir or tempfile.gettempdir())


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


def get_transcript_strategy(settings: Settings) -> str:
    """Return the configured transcript strategy, defaulting to hybrid for unknown values."""
    strategy = (settings.transcript_strategy or "").strip().lower()
    if strategy not in TRANSCRIPT_STRATEGIES:
        return "hybrid"
    return strategy


def is_api_key_configured(settings: Settings) -> bool:
    """Return True when a caller credential secret is configured."""
    return bool((settings.api_key or "").strip())


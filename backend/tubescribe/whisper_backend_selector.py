"""
Backend selector for Whisper transcription.

Chooses between the hosted OpenAI API and a local openai-whisper model based
on the TRANSCRIPTION_BACKEND setting and library availability, so the rest of
the application never needs to know which backend is in use.
"""
import logging
import threading
from typing import Union

from .config import TRANSCRIPTION_BACKENDS, Settings
from .whisper_processor import (
    LocalWhisperTranscriber,
    OpenAIWhisperTranscriber,
    is_local_whisper_available,
)

logger = logging.getLogger('tubescribe.whisper')

Transcriber = Union[OpenAIWhisperTranscriber, LocalWhisperTranscriber]

_global_transcriber = None
_global_lock = threading.Lock()


def select_backend(settings: Settings) -> str:
    """
    Resolve the backend name.

    An unknown value falls back to "openai". "local" without the libraries
    installed also falls back to "openai" with a warning.
    """
    backend = (settings.transcription_backend or "").strip().lower()
    if backend not in TRANSCRIPTION_BACKENDS:
        logger.warning(f"Unknown transcription backend '{settings.transcription_backend}', using openai")
        return "openai"
    if backend == "local" and not is_local_whisper_available():
        logger.warning("Local Whisper backend requested but not available, falling back to OpenAI")
        return "openai"
    return backend


def create_transcriber(settings: Settings) -> Transcriber:
    backend = select_backend(settings)
    if backend == "local":
        logger.info(f"Creating local Whisper transcriber with model: {settings.local_whisper_model}")
        return LocalWhisperTranscriber(settings)
    logger.info(f"Creating OpenAI Whisper transcriber with model: {settings.openai_transcription_model}")
    return OpenAIWhisperTranscriber(settings)


def get_global_transcriber(settings: Settings) -> Transcriber:
    """
    Get or create the process-wide transcriber.

    A local model is expensive to load, so every request shares one instance.
    """
    global _global_transcriber
    if _global_transcriber is None:
        with _global_lock:
            if _global_transcriber is None:
                _global_transcriber = create_transcriber(settings)
                logger.info(f"Global transcriber created: {_global_transcriber.__class__.__name__}")
    return _global_transcriber


def reset_global_transcriber() -> None:
    global _global_transcriber
    with _global_lock:
        _global_transcriber = None

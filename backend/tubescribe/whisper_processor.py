"""
Speech-to-text for downloaded audio.

Two Whisper backends share one small interface (``method``,
``max_upload_bytes``, ``transcribe(asset)``): the hosted OpenAI API and an
optional in-process model loaded with openai-whisper/torch.
"""
import logging
import threading
import time
from typing import Any, Optional

import openai
from openai import OpenAI

try:
    import whisper  # type: ignore
    import torch  # type: ignore
    _WHISPER_AVAILABLE = True
except ImportError as _e:  # local backend is optional
    logging.getLogger('tubescribe.whisper').debug(f"Local Whisper/Torch not installed: {_e}")
    whisper = None  # type: ignore
    torch = None  # type: ignore
    _WHISPER_AVAILABLE = False

from .config import Settings
from .errors import TranscriptionBackendError
from .logging_config import PerformanceMonitor, log_function_call
from .models import METHOD_WHISPER_API, METHOD_WHISPER_LOCAL, AudioAsset

logger = logging.getLogger('tubescribe.whisper')

OPENAI_MAX_UPLOAD_BYTES = 25 * 1024 * 1024


def _response_text(response: Any) -> str:
    # response_format="text" yields a plain string; other formats carry .text
    if isinstance(response, str):
        return response
    text = getattr(response, "text", None)
    if text is None and isinstance(response, dict):
        text = response.get("text")
    return text or ""


class OpenAIWhisperTranscriber:
    """
    Transcribe audio files with the hosted Whisper API.
    """

    method = METHOD_WHISPER_API

    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.api_key = settings.openai_api_key
        self.model = settings.openai_transcription_model
        self.language = settings.transcription_language or None
        self.timeout = settings.transcription_timeout_seconds
        self.max_upload_bytes = min(settings.max_upload_bytes, OPENAI_MAX_UPLOAD_BYTES)
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    if not self.api_key:
                        raise TranscriptionBackendError("OPENAI_API_KEY is not configured")
                    # Retries belong to the pipeline, not the SDK
                    self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    @log_function_call
    def transcribe(self, asset: AudioAsset) -> str:
        """
        Transcribe one audio file.

        Raises:
            TranscriptionBackendError: on any API failure or an oversized file
        """
        size = asset.size_bytes
        if size > self.max_upload_bytes:
            raise TranscriptionBackendError(
                f"{asset.path.name} is {size} bytes, above the {self.max_upload_bytes} byte upload limit"
            )

        logger.info(f"[TRANSCRIPTION] OpenAI {self.model} request file={asset.path.name} bytes={size}")
        try:
            with PerformanceMonitor(f"openai_transcription_{asset.path.stem}"):
                with open(asset.path, "rb") as handle:
                    response = self.client.audio.transcriptions.create(
                        model=self.model,
                        file=handle,
                        language=self.language,
                        response_format="text",
                    )
        except openai.APITimeoutError as e:
            raise TranscriptionBackendError(f"Transcription request timed out after {self.timeout:.0f}s") from e
        except openai.APIStatusError as e:
            raise TranscriptionBackendError(f"Transcription API returned HTTP {e.status_code}: {e.message}") from e
        except openai.OpenAIError as e:
            raise TranscriptionBackendError(f"Transcription API call failed: {e}") from e
        except OSError as e:
            raise TranscriptionBackendError(f"Could not read audio file {asset.path}: {e}") from e

        text = _response_text(response).strip()
        logger.info(f"[TRANSCRIPTION] OpenAI result file={asset.path.name} chars={len(text)}")
        return text


class LocalWhisperTranscriber:
    """
    Transcribe audio files with a locally loaded Whisper model.

    The model is loaded on first use under a lock so concurrent chunk workers
    share a single instance.
    """

    method = METHOD_WHISPER_LOCAL
    max_upload_bytes = None

    def __init__(self, settings: Settings):
        self.model_name = settings.local_whisper_model
        self.language = settings.transcription_language or None
        self.model = None
        self.device = "cpu"
        self._load_lock = threading.Lock()
        self._transcribe_lock = threading.Lock()
        if _WHISPER_AVAILABLE:
            try:
                # Priority: Apple Silicon MPS > NVIDIA CUDA > CPU
                if hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
                    self.device = "mps"
                elif torch.cuda.is_available():
                    self.device = "cuda"
            except RuntimeError as e:
                logger.warning(f"Device detection failed, using CPU: {e}")
                self.device = "cpu"
        else:
            logger.warning("Whisper/Torch not available. Local transcription disabled.")
        logger.info(f"Local Whisper transcriber initialized with model: {self.model_name} on {self.device}")

    def ensure_loaded(self) -> None:
        if self.model is not None:
            return
        if not _WHISPER_AVAILABLE:
            raise TranscriptionBackendError("Local Whisper backend requires openai-whisper and torch")
        with self._load_lock:
            if self.model is not None:
                return
            started = time.perf_counter()
            logger.info(f"[WHISPER] model_load status=begin model={self.model_name}")
            try:
                self.model = whisper.load_model(self.model_name, device=self.device)
            except (RuntimeError, OSError) as e:
                logger.error(f"Failed to load Whisper model {self.model_name}: {e}")
                raise TranscriptionBackendError(f"Whisper model {self.model_name} failed to load: {e}") from e
            logger.info(f"[WHISPER] model_load status=complete elapsed={time.perf_counter() - started:.3f}s")

    @log_function_call
    def transcribe(self, asset: AudioAsset) -> str:
        self.ensure_loaded()
        logger.info(f"[TRANSCRIPTION] local {self.model_name} file={asset.path.name} device={self.device}")
        try:
            # One model instance is not safe for concurrent decoding
            with self._transcribe_lock, PerformanceMonitor(f"local_transcription_{asset.path.stem}"):
                result = self.model.transcribe(
                    str(asset.path),
                    language=self.language,
                    fp16=self.device in ["cuda", "mps"],
                    verbose=False,
                )
        except (RuntimeError, OSError) as e:
            raise TranscriptionBackendError(f"Local transcription failed for {asset.path.name}: {e}") from e
        return _response_text(result).strip()


def is_local_whisper_available() -> bool:
    return _WHISPER_AVAILABLE

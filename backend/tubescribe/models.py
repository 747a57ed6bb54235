"""
Data models for the transcript pipeline and the API envelope.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


METHOD_CAPTIONS = "youtube-captions"
METHOD_WHISPER_API = "whisper-audio"
METHOD_WHISPER_LOCAL = "whisper-local"


@dataclass(frozen=True)
class VideoReference:
    """Identifier extracted from a caller-supplied URL."""

    id: str
    source_url: str

    @property
    def watch_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.id}"


@dataclass(frozen=True)
class CaptionTrack:
    """One available subtitle stream for a video."""

    language_code: str
    base_url: str
    kind: str = "unknown"  # "asr" | "manual" | "unknown"
    is_default: bool = False
    name: Optional[str] = None


@dataclass
class TranscriptSegment:
    """A timed piece of transcript text; timing is best-effort."""

    text: str
    start_offset_ms: Optional[int] = None
    duration_ms: Optional[int] = None


@dataclass
class AudioSource:
    """Resolved, not yet downloaded, audio stream for a video."""

    url: Optional[str]
    mime_type: Optional[str] = None
    bitrate: Optional[int] = None
    duration_seconds: Optional[float] = None
    title: Optional[str] = None

    @property
    def extension(self) -> str:
        mime = (self.mime_type or "").lower()
        if "webm" in mime:
            return "webm"
        if "mp4" in mime or "m4a" in mime:
            return "m4a"
        if "mpeg" in mime or "mp3" in mime:
            return "mp3"
        return "audio"


@dataclass
class AudioAsset:
    """A transient audio file owned by one pipeline run."""

    path: Path
    mime_type: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def size_bytes(self) -> int:
        return self.path.stat().st_size if self.path.exists() else 0


@dataclass
class AudioChunk:
    """A planned slice of an audio asset, in seconds."""

    index: int
    start_seconds: float
    duration_seconds: float

    @property
    def end_seconds(self) -> float:
        return self.start_seconds + self.duration_seconds


@dataclass
class CaptionTranscript:
    """Decoded caption payload together with where it came from."""

    segments: List[TranscriptSegment]
    text: str
    strategy: str
    track: Optional[CaptionTrack] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AudioTranscript:
    """Speech-to-text output for a whole video."""

    text: str
    method: str
    title: Optional[str] = None
    chunk_count: int = 1


class TranscriptRequest(BaseModel):
    url: Optional[str] = None


class TranscriptResult(BaseModel):
    """Uniform response envelope."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    transcript: Optional[str] = None
    video_id: Optional[str] = Field(default=None, alias="videoId")
    title: Optional[str] = None
    method: Optional[str] = None
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

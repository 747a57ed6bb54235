"""
Audio processing for the transcription pipeline.
Probing, re-encoding and splitting with FFmpeg, plus the per-request
workspace that owns every temporary audio file.
"""
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import ffmpeg

from .config import Settings
from .errors import AudioProcessingError
from .logging_config import PerformanceMonitor, log_function_call
from .models import AudioAsset, AudioChunk

logger = logging.getLogger('tubescribe.audio')


def plan_chunks(total_seconds: float, max_chunk_seconds: float) -> List[AudioChunk]:
    """
    Split a duration into sequential, non-overlapping chunks with no gaps.

    Args:
        total_seconds: Duration of the whole asset
        max_chunk_seconds: Ceiling for any single chunk

    Returns:
        Chunks in temporal order; a single chunk when no split is needed
    """
    if max_chunk_seconds <= 0:
        raise ValueError("max_chunk_seconds must be positive")
    if total_seconds <= max_chunk_seconds:
        return [AudioChunk(index=0, start_seconds=0.0, duration_seconds=float(total_seconds))]

    chunks: List[AudioChunk] = []
    start = 0.0
    index = 0
    while start < total_seconds:
        length = min(float(max_chunk_seconds), total_seconds - start)
        chunks.append(AudioChunk(index=index, start_seconds=start, duration_seconds=length))
        start += length
        index += 1
    return chunks


class AudioWorkspace:
    """
    Temporary directory owning every audio artifact of one pipeline run.

    Use as a context manager; on exit every tracked file and the directory are
    deleted. Cleanup problems are logged and never raised, so they cannot mask
    the error that ended the run.
    """

    def __init__(self, parent_dir: Optional[Path] = None, prefix: str = "tubescribe_"):
        self.parent_dir = Path(parent_dir) if parent_dir else None
        self.prefix = prefix
        self.path: Optional[Path] = None
        self.assets: List[Path] = []

    def __enter__(self) -> "AudioWorkspace":
        if self.parent_dir is not None:
            self.parent_dir.mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix=self.prefix, dir=str(self.parent_dir) if self.parent_dir else None))
        logger.debug(f"[AUDIO] workspace created: {self.path}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    def file(self, name: str) -> Path:
        """Reserve a path inside the workspace and track it for deletion."""
        if self.path is None:
            raise RuntimeError("workspace is not open")
        target = self.path / name
        self.assets.append(target)
        return target

    def track(self, path: Path) -> Path:
        """Track a file some other tool created inside the workspace."""
        path = Path(path)
        if path not in self.assets:
            self.assets.append(path)
        return path

    def cleanup(self) -> None:
        for asset in self.assets:
            try:
                if asset.exists():
                    asset.unlink()
            except OSError as e:
                logger.error(f"[AUDIO] cleanup failed for {asset}: {e}")
        self.assets = []
        if self.path is not None:
            try:
                shutil.rmtree(self.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"[AUDIO] cleanup failed for workspace {self.path}: {e}")
            logger.debug(f"[AUDIO] workspace removed: {self.path}")
            self.path = None


class AudioProcessor:
    """
    Handles audio probing and format conversion with FFmpeg.
    """

    def __init__(self, settings: Settings):
        self.bitrate = settings.audio_bitrate
        self.sample_rate = settings.audio_sample_rate
        self.timeout = settings.ffmpeg_timeout_seconds

    def verify_ffmpeg(self) -> bool:
        """
        Verify that FFmpeg is installed and accessible.

        Returns:
            True if FFmpeg is available, False otherwise
        """
        try:
            result = subprocess.run(
                ['ffmpeg', '-version'],
                capture_output=True,
                text=True,
                timeout=10
            )
        except FileNotFoundError:
            logger.error("FFmpeg not found in system PATH")
            return False
        except subprocess.TimeoutExpired:
            logger.error("FFmpeg verification timed out")
            return False

        if result.returncode == 0:
            logger.debug(f"FFmpeg available: {result.stdout.splitlines()[0] if result.stdout else 'unknown version'}")
            return True
        logger.error(f"FFmpeg verification failed: {result.stderr}")
        return False

    @log_function_call
    def probe(self, file_path: Path) -> Dict[str, Any]:
        """
        Probe an audio file.

        Returns:
            Dictionary with duration, size, format and codec information

        Raises:
            AudioProcessingError: if ffprobe fails or the file has no audio stream
        """
        try:
            probe = ffmpeg.probe(str(file_path))
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", errors="replace") if e.stderr else str(e)
            raise AudioProcessingError(f"ffprobe failed for {file_path}: {stderr.strip()[-500:]}") from e

        format_info = probe.get('format', {})
        audio_stream = next(
            (stream for stream in probe.get('streams', []) if stream.get('codec_type') == 'audio'),
            None,
        )
        if not audio_stream:
            raise AudioProcessingError(f"No audio stream found in {file_path}")

        return {
            "duration_seconds": float(format_info.get('duration') or audio_stream.get('duration') or 0),
            "file_size_bytes": int(format_info.get('size', 0)),
            "format": format_info.get('format_name', 'unknown'),
            "audio_codec": audio_stream.get('codec_name', 'unknown'),
            "sample_rate": int(audio_stream.get('sample_rate', 0) or 0),
            "channels": int(audio_stream.get('channels', 0) or 0),
        }

    def probe_duration(self, file_path: Path) -> float:
        return self.probe(file_path)["duration_seconds"]

    def _run(self, stream, operation: str) -> None:
        process = stream.overwrite_output().run_async(pipe_stdout=True, pipe_stderr=True)
        try:
            _, stderr = process.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise AudioProcessingError(f"{operation} timed out after {self.timeout:.0f}s") from e
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()[-500:] if stderr else ""
            raise AudioProcessingError(f"{operation} failed with code {process.returncode}: {message}")

    def transcode(self, source: AudioAsset, destination: Path) -> AudioAsset:
        """
        Re-encode to mono MP3 at the configured bitrate and sample rate.
        """
        logger.info(f"[AUDIO] re-encoding {source.path.name} -> {destination.name} ({self.bitrate}, {self.sample_rate}Hz)")
        with PerformanceMonitor("audio_transcode"):
            stream = ffmpeg.input(str(source.path)).output(
                str(destination),
                vn=None,
                acodec="libmp3lame",
                audio_bitrate=self.bitrate,
                ac=1,
                ar=self.sample_rate,
            )
            self._run(stream, "Audio re-encode")
        return AudioAsset(path=destination, mime_type="audio/mpeg", duration_seconds=source.duration_seconds)

    def extract_chunk(self, source: AudioAsset, chunk: AudioChunk, destination: Path) -> AudioAsset:
        """
        Extract one planned chunk as its own mono MP3 file.
        """
        logger.info(
            f"[AUDIO] extracting chunk {chunk.index} "
            f"({chunk.start_seconds:.1f}s..{chunk.end_seconds:.1f}s) -> {destination.name}"
        )
        with PerformanceMonitor(f"audio_chunk_{chunk.index}"):
            stream = ffmpeg.input(str(source.path), ss=chunk.start_seconds, t=chunk.duration_seconds).output(
                str(destination),
                vn=None,
                acodec="libmp3lame",
                audio_bitrate=self.bitrate,
                ac=1,
                ar=self.sample_rate,
            )
            self._run(stream, f"Chunk {chunk.index} extraction")
        return AudioAsset(path=destination, mime_type="audio/mpeg", duration_seconds=chunk.duration_seconds)

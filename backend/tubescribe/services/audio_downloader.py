"""
Audio stream resolution and download.

Two sources are supported:

* ``yt_dlp`` - yt-dlp picks the best audio-only format and downloads it.
* ``player_response`` - the audio URL is taken from the watch page's
  adaptive formats and streamed with the shared HTTP client.

Both honour the same wall-clock download bound and write only inside the
request's AudioWorkspace.
"""
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yt_dlp
from yt_dlp.utils import DownloadCancelled, DownloadError

from ..audio_processor import AudioWorkspace
from ..caption_locator import fetch_player_response
from ..config import AUDIO_SOURCES, Settings
from ..errors import (
    AudioDownloadTimeout,
    AudioProcessingError,
    AudioUnavailable,
    TranscriptFetchFailed,
    VideoNotAccessible,
)
from ..logging_config import PerformanceMonitor
from ..models import AudioAsset, AudioSource, VideoReference
from .youtube_client import YouTubeClient

logger = logging.getLogger('tubescribe.audio')


def select_audio_format(formats: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the audio-only format: webm first, then mp4, then whatever is left."""
    audio_formats = [f for f in formats if (f.get("mimeType") or "").startswith("audio/")]
    if not audio_formats:
        return None
    for container in ("webm", "mp4"):
        for fmt in audio_formats:
            if container in fmt["mimeType"]:
                return fmt
    return audio_formats[0]


def _duration(value: Any) -> Optional[float]:
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _classify_ytdlp_error(error: Exception, video_id: str) -> Exception:
    message = str(error)
    lowered = message.lower()
    if "private video" in lowered or "sign in" in lowered or "members-only" in lowered:
        return VideoNotAccessible(message, video_id=video_id)
    if "video unavailable" in lowered or "has been removed" in lowered or "does not exist" in lowered:
        return VideoNotAccessible(message, removed=True, video_id=video_id)
    return AudioUnavailable(message, video_id=video_id)


class AudioDownloader:
    def __init__(self, client: YouTubeClient, settings: Settings):
        self.client = client
        self.source = settings.audio_source if settings.audio_source in AUDIO_SOURCES else "yt_dlp"
        self.timeout = settings.audio_download_timeout_seconds
        self.user_agent = settings.user_agent

    def _ydl_options(self, **extra: Any) -> Dict[str, Any]:
        opts = {
            'format': 'bestaudio/best',
            'quiet': True,
            'no_warnings': True,
            'noplaylist': True,
            'http_headers': {'User-Agent': self.user_agent},
        }
        opts.update(extra)
        return opts

    def resolve(self, video: VideoReference) -> AudioSource:
        """
        Resolve the audio stream without downloading it.

        Raises:
            VideoNotAccessible: if the video is private, restricted or removed
            AudioUnavailable: if no audio-only stream can be found
        """
        logger.info(f"[AUDIO] resolving audio source={self.source} video={video.id}")
        if self.source == "player_response":
            return self._resolve_from_player_response(video)
        return self._resolve_with_ytdlp(video)

    def _resolve_from_player_response(self, video: VideoReference) -> AudioSource:
        try:
            player_response = fetch_player_response(self.client, video)
        except TranscriptFetchFailed as e:
            raise AudioUnavailable(str(e.detail), video_id=video.id) from e

        details = player_response.get("videoDetails") or {}
        formats = (player_response.get("streamingData") or {}).get("adaptiveFormats") or []
        best = select_audio_format(formats)
        if best is None:
            raise AudioUnavailable(f"No audio formats among {len(formats)} adaptive formats", video_id=video.id)
        if not best.get("url"):
            # Ciphered streams only carry signatureCipher
            raise AudioUnavailable("Selected audio format has no direct URL", video_id=video.id)

        logger.info(f"[AUDIO] selected format mime={best.get('mimeType')} bitrate={best.get('bitrate')}")
        return AudioSource(
            url=best["url"],
            mime_type=best.get("mimeType"),
            bitrate=best.get("bitrate"),
            duration_seconds=_duration(details.get("lengthSeconds")),
            title=details.get("title"),
        )

    def _resolve_with_ytdlp(self, video: VideoReference) -> AudioSource:
        try:
            with yt_dlp.YoutubeDL(self._ydl_options(skip_download=True)) as ydl:
                info = ydl.extract_info(video.watch_url, download=False)
        except DownloadError as e:
            raise _classify_ytdlp_error(e, video.id) from e

        if not info:
            raise AudioUnavailable("yt-dlp returned no video information", video_id=video.id)
        ext = info.get("ext")
        logger.info(f"[AUDIO] yt-dlp format={info.get('format_id')} ext={ext} abr={info.get('abr')}")
        return AudioSource(
            url=info.get("url"),
            mime_type=f"audio/{ext}" if ext else None,
            bitrate=int(info["abr"] * 1000) if info.get("abr") else None,
            duration_seconds=_duration(info.get("duration")),
            title=info.get("title"),
        )

    def download(self, video: VideoReference, source: AudioSource, workspace: AudioWorkspace) -> AudioAsset:
        """
        Download the resolved stream into the workspace.

        Raises:
            AudioDownloadTimeout: if the download exceeds the configured bound
            AudioProcessingError: on any other download failure
        """
        with PerformanceMonitor(f"audio_download_{video.id}") as monitor:
            if self.source == "player_response":
                destination = workspace.file(f"{video.id}.{source.extension}")
                self.client.download_to_file(source.url, destination, self.timeout)
                asset = AudioAsset(path=destination, mime_type=source.mime_type, duration_seconds=source.duration_seconds)
            else:
                asset = self._download_with_ytdlp(video, source, workspace)
        logger.info(f"[AUDIO] downloaded {asset.path.name} bytes={asset.size_bytes} in {monitor.duration:.2f}s")
        return asset

    def _download_with_ytdlp(self, video: VideoReference, source: AudioSource, workspace: AudioWorkspace) -> AudioAsset:
        deadline = time.monotonic() + self.timeout

        def enforce_deadline(progress: Dict[str, Any]) -> None:
            if progress.get("status") == "downloading" and time.monotonic() > deadline:
                raise DownloadCancelled(f"audio download exceeded {self.timeout:.0f}s")

        opts = self._ydl_options(
            outtmpl=str(workspace.path / f"{video.id}.%(ext)s"),
            progress_hooks=[enforce_deadline],
            socket_timeout=self.client.timeout,
            overwrites=True,
        )
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(video.watch_url, download=True)
                path = self._downloaded_path(ydl, info)
        except DownloadCancelled as e:
            self._track_leftovers(workspace, video)
            raise AudioDownloadTimeout(str(e), video_id=video.id) from e
        except DownloadError as e:
            self._track_leftovers(workspace, video)
            raise AudioProcessingError(f"yt-dlp download failed: {e}", video_id=video.id) from e

        workspace.track(path)
        if not path.exists():
            raise AudioProcessingError(f"yt-dlp reported {path.name} but no file was written", video_id=video.id)
        return AudioAsset(path=path, mime_type=source.mime_type, duration_seconds=source.duration_seconds)

    @staticmethod
    def _downloaded_path(ydl: "yt_dlp.YoutubeDL", info: Dict[str, Any]) -> Path:
        requested = info.get("requested_downloads") or []
        if requested and requested[0].get("filepath"):
            return Path(requested[0]["filepath"])
        return Path(ydl.prepare_filename(info))

    @staticmethod
    def _track_leftovers(workspace: AudioWorkspace, video: VideoReference) -> None:
        for leftover in workspace.path.glob(f"{video.id}.*"):
            workspace.track(leftover)

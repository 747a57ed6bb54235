"""
Pipeline Orchestrator for audio transcription.
Central controller for videos that have no usable captions.
Manages the flow: Resolve → Download → Re-encode/Split → Transcribe → Cleanup
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from .audio_processor import AudioProcessor, AudioWorkspace, plan_chunks
from .config import Settings
from .errors import TranscriptEmpty, VideoTooLong
from .logging_config import PerformanceMonitor
from .models import AudioAsset, AudioSource, AudioTranscript, VideoReference
from .services.audio_downloader import AudioDownloader
from .whisper_backend_selector import Transcriber

# Configure logger for this module
logger = logging.getLogger('tubescribe.pipeline')


class AudioTranscriptionPipeline:
    """
    Download, prepare and transcribe a video's audio.

    Every file created during a run lives in one AudioWorkspace which is
    removed when the run ends, whether it succeeded or not.
    """

    def __init__(
        self,
        downloader: AudioDownloader,
        processor: AudioProcessor,
        transcriber: Transcriber,
        settings: Settings,
    ):
        self.downloader = downloader
        self.processor = processor
        self.transcriber = transcriber
        self.temp_dir = settings.temp_dir
        self.max_duration = settings.max_video_duration_seconds
        self.chunk_max_seconds = settings.chunk_max_seconds
        self.max_parallel_chunks = max(1, settings.max_parallel_chunks)

    def run(self, video: VideoReference) -> AudioTranscript:
        """
        Produce a transcript from the video's audio track.

        Raises:
            VideoTooLong: before any download, if the duration exceeds the limit
            TranscriptServiceError subclasses from each stage; a failure in any
            chunk fails the whole run
        """
        logger.info(f"[PIPELINE] audio transcription started video={video.id} backend={self.transcriber.method}")
        with PerformanceMonitor(f"audio_pipeline_{video.id}") as monitor:
            with AudioWorkspace(self.temp_dir, prefix=f"tubescribe_{video.id}_") as workspace:
                source = self.downloader.resolve(video)
                self._check_duration(video, source)

                downloaded = self.downloader.download(video, source, workspace)
                duration = self.processor.probe_duration(downloaded.path) or source.duration_seconds or 0.0
                downloaded.duration_seconds = duration

                assets = self._prepare(video, downloaded, workspace)
                texts = self._transcribe_all(assets)

        transcript = " ".join(text.strip() for text in texts if text and text.strip()).strip()
        if not transcript:
            raise TranscriptEmpty("Speech-to-text returned no text", video_id=video.id)

        logger.info(
            f"[PIPELINE] audio transcription complete video={video.id} chunks={len(assets)} "
            f"chars={len(transcript)} elapsed={monitor.duration:.2f}s"
        )
        return AudioTranscript(
            text=transcript,
            method=self.transcriber.method,
            title=source.title,
            chunk_count=len(assets),
        )

    def _check_duration(self, video: VideoReference, source: AudioSource) -> None:
        if not self.max_duration or source.duration_seconds is None:
            return
        if source.duration_seconds > self.max_duration:
            raise VideoTooLong(
                f"duration {source.duration_seconds:.0f}s exceeds limit {self.max_duration}s",
                video_id=video.id,
                public_message=(
                    f"Video is too long ({source.duration_seconds / 60:.0f} minutes); "
                    f"maximum is {self.max_duration / 60:.0f} minutes"
                ),
            )

    def _prepare(self, video: VideoReference, asset: AudioAsset, workspace: AudioWorkspace) -> List[AudioAsset]:
        """Return the files to transcribe, in temporal order."""
        duration = asset.duration_seconds or 0.0
        size_limit: Optional[int] = self.transcriber.max_upload_bytes

        if duration > self.chunk_max_seconds:
            chunks = plan_chunks(duration, self.chunk_max_seconds)
            logger.info(f"[AUDIO] splitting {duration:.0f}s into {len(chunks)} chunks of at most {self.chunk_max_seconds}s")
            return [
                self.processor.extract_chunk(asset, chunk, workspace.file(f"{video.id}_part{chunk.index:03d}.mp3"))
                for chunk in chunks
            ]

        if size_limit is not None and asset.size_bytes > size_limit:
            logger.info(f"[AUDIO] {asset.size_bytes} bytes exceeds upload limit {size_limit}, re-encoding")
            return [self.processor.transcode(asset, workspace.file(f"{video.id}_normalized.mp3"))]

        return [asset]

    def _transcribe_all(self, assets: List[AudioAsset]) -> List[str]:
        if len(assets) == 1 or self.max_parallel_chunks == 1:
            return [self.transcriber.transcribe(asset) for asset in assets]

        workers = min(self.max_parallel_chunks, len(assets))
        logger.info(f"[TRANSCRIPTION] transcribing {len(assets)} chunks with {workers} workers")
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tubescribe-chunk")
        try:
            # map() yields in submission order, not completion order
            return list(executor.map(self.transcriber.transcribe, assets))
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

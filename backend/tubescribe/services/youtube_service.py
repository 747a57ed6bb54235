import asyncio
import logging
import threading
from typing import Optional, Tuple

from ..audio_processor import AudioProcessor
from ..caption_locator import CaptionLocator
from ..config import Settings, get_settings, get_transcript_strategy
from ..errors import MissingInput, InvalidInput, NoCaptionsAvailable, TranscriptServiceError, Unclassified
from ..models import METHOD_CAPTIONS, TranscriptResult, VideoReference
from ..pipeline_orchestrator import AudioTranscriptionPipeline
from ..url_parser import parse_video_reference
from ..whisper_backend_selector import get_global_transcriber
from .audio_downloader import AudioDownloader
from .video_metadata import VideoMetadataClient
from .youtube_client import YouTubeClient

logger = logging.getLogger('tubescribe.pipeline')


class YouTubeTranscriptService:
    def __init__(
        self,
        settings: Settings,
        caption_locator: CaptionLocator,
        audio_pipeline: AudioTranscriptionPipeline,
        metadata: VideoMetadataClient,
    ):
        self.settings = settings
        self.caption_locator = caption_locator
        self.audio_pipeline = audio_pipeline
        self.metadata = metadata

    def _from_captions(self, video: VideoReference) -> Tuple[str, str, Optional[str]]:
        captions = self.caption_locator.fetch_transcript(video)
        logger.info(f"[PIPELINE] captions via {captions.strategy} video={video.id}")
        return captions.text, METHOD_CAPTIONS, None

    def _from_audio(self, video: VideoReference) -> Tuple[str, str, Optional[str]]:
        result = self.audio_pipeline.run(video)
        return result.text, result.method, result.title

    def acquire_transcript(self, video: VideoReference, strategy: str) -> Tuple[str, str, Optional[str]]:
        """
        Run the configured strategy and return (transcript, method, title hint).

        caption_first never touches audio; audio_first never touches captions;
        hybrid tries captions and falls back to audio only when no captions exist.
        """
        if strategy == "audio_first":
            return self._from_audio(video)
        try:
            return self._from_captions(video)
        except NoCaptionsAvailable:
            if strategy == "caption_first":
                raise
            logger.info(f"[PIPELINE] no captions for {video.id}, falling back to audio transcription")
        return self._from_audio(video)

    async def process_video(self, url: Optional[str]) -> TranscriptResult:
        """
        Main Entry Point:
        1. Validate the URL and extract the video id.
        2. Acquire the transcript with the configured strategy while the title
           is looked up concurrently.
        """
        if url is None or not str(url).strip():
            raise MissingInput("request body has no url")
        video = parse_video_reference(str(url))
        if video is None:
            raise InvalidInput(f"no video id in {url!r}")

        strategy = get_transcript_strategy(self.settings)
        logger.info(f"[PIPELINE] processing video={video.id} strategy={strategy}")

        loop = asyncio.get_running_loop()
        # Blocking I/O, run in executor; the title lookup never raises
        title_future = loop.run_in_executor(None, self.metadata.get_title, video)
        try:
            transcript, method, title_hint = await loop.run_in_executor(
                None, self.acquire_transcript, video, strategy
            )
        except TranscriptServiceError as e:
            title_future.cancel()
            if e.video_id is None:
                e.video_id = video.id
            raise
        except Exception as e:
            title_future.cancel()
            logger.exception(f"[PIPELINE] unclassified failure video={video.id}")
            raise Unclassified(f"{type(e).__name__}: {e}", video_id=video.id) from e
        title = await title_future or title_hint

        logger.info(f"[PIPELINE] completed video={video.id} method={method} chars={len(transcript)}")
        return TranscriptResult(
            success=True,
            transcript=transcript,
            video_id=video.id,
            title=title,
            method=method,
        )


def build_transcript_service(settings: Settings, client: Optional[YouTubeClient] = None) -> YouTubeTranscriptService:
    client = client or YouTubeClient(settings)
    pipeline = AudioTranscriptionPipeline(
        downloader=AudioDownloader(client, settings),
        processor=AudioProcessor(settings),
        transcriber=get_global_transcriber(settings),
        settings=settings,
    )
    return YouTubeTranscriptService(
        settings=settings,
        caption_locator=CaptionLocator(client, settings),
        audio_pipeline=pipeline,
        metadata=VideoMetadataClient(client, settings),
    )


_service: Optional[YouTubeTranscriptService] = None
_service_lock = threading.Lock()


def get_transcript_service() -> YouTubeTranscriptService:
    """FastAPI dependency returning the process-wide service."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = build_transcript_service(get_settings())
    return _service

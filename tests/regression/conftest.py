"""
Pytest configuration for regression tests.

External collaborators (YouTube, ffmpeg, the speech-to-text API) are replaced
with in-process fakes that count their calls; no test touches the network.
"""

import json
import os
import sys
import threading
from collections import Counter
from types import SimpleNamespace

import pytest
import requests

# Add repository root to Python path
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from backend.tubescribe.config import Settings  # noqa: E402
from backend.tubescribe.errors import TranscriptFetchFailed, TranscriptionBackendError  # noqa: E402
from backend.tubescribe.models import METHOD_WHISPER_API, AudioAsset, AudioSource  # noqa: E402

API_KEY = "test-key"
VIDEO_ID = "abc123"
TRACK_URL = f"https://www.youtube.com/api/timedtext?v={VIDEO_ID}&lang=en"

CAPTION_XML = (
    '<?xml version="1.0" encoding="utf-8" ?><transcript>'
    '<text start="0" dur="1.5">Hello &amp;amp; welcome</text>'
    '<text start="1.5" dur="2.25">to the   zoo</text>'
    '</transcript>'
)


def player_response(status="OK", reason=None, tracks=None, formats=None, length_seconds="19", title="Me at the zoo"):
    playability = {"status": status}
    if reason:
        playability["reason"] = reason
    response = {
        "playabilityStatus": playability,
        "videoDetails": {"videoId": VIDEO_ID, "title": title, "lengthSeconds": length_seconds},
    }
    if tracks is not None:
        response["captions"] = {"playerCaptionsTracklistRenderer": {"captionTracks": tracks}}
    if formats is not None:
        response["streamingData"] = {"adaptiveFormats": formats}
    return response


def watch_page(player: dict) -> str:
    return (
        "<!DOCTYPE html><html><head><title>YouTube</title></head><body>"
        f"<script>var ytInitialPlayerResponse = {json.dumps(player)};var meta = {{}};</script>"
        "</body></html>"
    )


ENGLISH_TRACK = {"baseUrl": TRACK_URL, "languageCode": "en", "name": {"simpleText": "English"}, "vssId": ".en"}


class FakeYouTubeClient:
    """Stands in for services.youtube_client.YouTubeClient."""

    timeout = 5.0

    def __init__(self, watch_page_html="", timedtext=None, payloads=None, json_docs=None, audio_bytes=b"\x00" * 64):
        self.watch_page_html = watch_page_html
        self.timedtext = timedtext or {}
        self.payloads = payloads or {}
        self.json_docs = json_docs or {}
        self.audio_bytes = audio_bytes
        self.calls = Counter()

    @property
    def total_calls(self):
        return sum(self.calls.values())

    def get_watch_page(self, video_id):
        self.calls["watch_page"] += 1
        if isinstance(self.watch_page_html, Exception):
            raise self.watch_page_html
        return self.watch_page_html

    def get_timedtext(self, video_id, lang, kind=None, fmt="json3"):
        self.calls["timedtext"] += 1
        return self.timedtext.get(kind)

    def get_caption_payload(self, url):
        self.calls["caption_payload"] += 1
        if url not in self.payloads:
            raise TranscriptFetchFailed(f"no payload for {url}")
        return self.payloads[url]

    def get_json(self, url, params=None):
        self.calls["json"] += 1
        if url not in self.json_docs:
            raise requests.HTTPError(f"404 for {url}")
        return self.json_docs[url]

    def download_to_file(self, url, destination, timeout_seconds):
        self.calls["download"] += 1
        destination.write_bytes(self.audio_bytes)
        return len(self.audio_bytes)


class FakeTranscriptApi:
    """Stands in for YouTubeTranscriptApi; list() returns prepared transcripts."""

    def __init__(self, transcripts=None, error=None):
        self.transcripts = transcripts or []
        self.error = error
        self.list_calls = 0

    def __call__(self):
        return self

    def list(self, video_id):
        self.list_calls += 1
        if self.error is not None:
            raise self.error
        return self.transcripts


def fake_transcript(language_code, texts, is_generated=False):
    snippets = [SimpleNamespace(text=text, start=float(i), duration=1.0) for i, text in enumerate(texts)]
    fetched = SimpleNamespace(snippets=snippets)
    return SimpleNamespace(language_code=language_code, is_generated=is_generated, fetch=lambda: fetched)


class FakeDownloader:
    """Stands in for services.audio_downloader.AudioDownloader."""

    def __init__(self, duration_seconds=120.0, size_bytes=1024, title="Audio Title", error=None):
        self.duration_seconds = duration_seconds
        self.size_bytes = size_bytes
        self.title = title
        self.error = error
        self.calls = Counter()
        self.downloaded = []

    def resolve(self, video):
        self.calls["resolve"] += 1
        return AudioSource(
            url="https://rr1.example/audio",
            mime_type='audio/webm; codecs="opus"',
            bitrate=128000,
            duration_seconds=self.duration_seconds,
            title=self.title,
        )

    def download(self, video, source, workspace):
        self.calls["download"] += 1
        path = workspace.file(f"{video.id}.{source.extension}")
        path.write_bytes(b"\x00" * self.size_bytes)
        self.downloaded.append(path)
        if self.error is not None:
            raise self.error
        return AudioAsset(path=path, mime_type=source.mime_type, duration_seconds=source.duration_seconds)


class FakeAudioProcessor:
    """Stands in for audio_processor.AudioProcessor without running ffmpeg."""

    def __init__(self, duration_seconds=120.0):
        self.duration_seconds = duration_seconds
        self.chunks = []
        self.transcoded = []
        self.created = []

    def probe_duration(self, path):
        return self.duration_seconds

    def transcode(self, source, destination):
        destination.write_bytes(b"\x01" * 8)
        self.transcoded.append(destination)
        self.created.append(destination)
        return AudioAsset(path=destination, mime_type="audio/mpeg", duration_seconds=source.duration_seconds)

    def extract_chunk(self, source, chunk, destination):
        destination.write_bytes(b"\x02" * 8)
        self.chunks.append(chunk)
        self.created.append(destination)
        return AudioAsset(path=destination, mime_type="audio/mpeg", duration_seconds=chunk.duration_seconds)


class FakeTranscriber:
    """Stands in for a Whisper backend; returns text keyed by chunk file name."""

    method = METHOD_WHISPER_API

    def __init__(self, texts=None, default_text="spoken words from the audio", fail_on=None, max_upload_bytes=None):
        self.texts = texts or {}
        self.default_text = default_text
        self.fail_on = fail_on
        self.max_upload_bytes = max_upload_bytes
        self.calls = []
        self.completed = []
        self._lock = threading.Lock()

    def transcribe(self, asset):
        with self._lock:
            self.calls.append(asset.path.name)
        if self.fail_on and self.fail_on in asset.path.name:
            raise TranscriptionBackendError(f"backend rejected {asset.path.name}")
        text = self.texts.get(asset.path.name, self.default_text)
        with self._lock:
            self.completed.append(asset.path.name)
        return text


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings(work_dir):
    """Settings independent of the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        api_key=API_KEY,
        openai_api_key=None,
        youtube_api_key=None,
        transcript_strategy="hybrid",
        caption_strategies="timedtext,player_response,caption_tracks,data_api,transcript_api",
        caption_language="en",
        audio_source="player_response",
        transcription_backend="openai",
        max_parallel_chunks=1,
        max_video_duration_seconds=None,
        chunk_max_seconds=1800,
        tubescribe_temp_dir=str(work_dir),
        log_file="",
    )


@pytest.fixture
def caption_page():
    return watch_page(player_response(tracks=[ENGLISH_TRACK]))


@pytest.fixture
def build_service(settings):
    """Assemble the real orchestration layers around fakes."""
    from backend.tubescribe.caption_locator import CaptionLocator
    from backend.tubescribe.pipeline_orchestrator import AudioTranscriptionPipeline
    from backend.tubescribe.services.video_metadata import OEMBED_URL, VideoMetadataClient
    from backend.tubescribe.services.youtube_service import YouTubeTranscriptService

    def build(client=None, transcript_api=None, downloader=None, processor=None, transcriber=None, **overrides):
        active = settings.model_copy(update=overrides) if overrides else settings
        client = client or FakeYouTubeClient(json_docs={OEMBED_URL: {"title": "Me at the zoo"}})
        pipeline = AudioTranscriptionPipeline(
            downloader=downloader or FakeDownloader(),
            processor=processor or FakeAudioProcessor(),
            transcriber=transcriber or FakeTranscriber(),
            settings=active,
        )
        return YouTubeTranscriptService(
            settings=active,
            caption_locator=CaptionLocator(client, active, transcript_api_factory=transcript_api or FakeTranscriptApi()),
            audio_pipeline=pipeline,
            metadata=VideoMetadataClient(client, active),
        )

    return build

"""
Regression tests for the HTTP surface: credentials, envelope, status mapping,
CORS and method handling, strategy selection end to end.
"""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

from backend.tubescribe.config import get_settings
from backend.tubescribe.errors import AudioDownloadTimeout, NoCaptionsAvailable
from backend.tubescribe.main import app
from backend.tubescribe.services.video_metadata import OEMBED_URL
from backend.tubescribe.services.youtube_service import get_transcript_service

from conftest import (
    API_KEY,
    CAPTION_XML,
    ENGLISH_TRACK,
    TRACK_URL,
    FakeDownloader,
    FakeTranscriber,
    FakeTranscriptApi,
    FakeYouTubeClient,
    player_response,
    watch_page,
)

CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-headers": "Content-Type, X-API-Key",
    "access-control-allow-methods": "POST, OPTIONS",
}


@pytest.fixture
def youtube():
    return FakeYouTubeClient(
        timedtext={None: CAPTION_XML},
        json_docs={OEMBED_URL: {"title": "Me at the zoo"}},
    )


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def client(settings, build_service, youtube, downloader):
    service = build_service(client=youtube, downloader=downloader)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_transcript_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def post(client, body, api_key=API_KEY):
    headers = {"X-API-Key": api_key} if api_key is not None else {}
    return client.post("/api/transcript", json=body, headers=headers)


class TestCredentials:
    """Credentials are checked before any network activity."""

    def test_missing_key(self, client, youtube, downloader):
        response = post(client, {"url": "https://youtu.be/abc123"}, api_key=None)
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "API key is required"}
        assert youtube.total_calls == 0
        assert sum(downloader.calls.values()) == 0

    def test_wrong_key(self, client, youtube, downloader):
        response = post(client, {"url": "https://youtu.be/abc123"}, api_key="nope")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Invalid API key"}
        assert youtube.total_calls == 0
        assert sum(downloader.calls.values()) == 0

    def test_credential_checked_before_body(self, client, youtube):
        response = client.post("/api/transcript", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 401
        assert youtube.total_calls == 0

    def test_unconfigured_server_rejects_everything(self, client, settings):
        app.dependency_overrides[get_settings] = lambda: settings.model_copy(update={"api_key": None})
        response = post(client, {"url": "https://youtu.be/abc123"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid API key"

    def test_health_needs_no_key(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "OK"


class TestInputValidation:

    def test_missing_url(self, client, youtube):
        response = post(client, {})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "YouTube URL is required"}
        assert youtube.total_calls == 0

    def test_blank_url(self, client):
        assert post(client, {"url": "   "}).status_code == 400

    def test_invalid_url(self, client, youtube):
        response = post(client, {"url": "https://vimeo.com/123"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid YouTube URL"}
        assert youtube.total_calls == 0

    def test_malformed_json(self, client):
        response = client.post(
            "/api/transcript",
            content=b"{not json",
            headers={"Content-Type": "application/json", "X-API-Key": API_KEY},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False


class TestTranscriptFlow:

    def test_end_to_end_with_captions(self, client, downloader):
        response = post(client, {"url": "https://youtu.be/abc123"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["videoId"] == "abc123"
        assert body["method"] == "youtube-captions"
        assert body["transcript"] == "Hello &amp; welcome to the zoo"
        assert body["title"] == "Me at the zoo"
        assert "error" not in body
        assert sum(downloader.calls.values()) == 0

    def test_falls_back_to_audio_without_captions(self, settings, build_service):
        youtube = FakeYouTubeClient(watch_page_html=watch_page(player_response(tracks=[])))
        downloader = FakeDownloader(title="Audio Title")
        service = build_service(client=youtube, downloader=downloader)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_transcript_service] = lambda: service
        try:
            response = post(TestClient(app), {"url": "https://www.youtube.com/watch?v=abc123"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        body = response.json()
        assert body["method"] == "whisper-audio"
        assert body["transcript"] == "spoken words from the audio"
        # oEmbed failed, so the audio metadata title is used
        assert body["title"] == "Audio Title"
        assert downloader.calls["download"] == 1

    def test_private_video_is_403(self, settings, build_service):
        page = watch_page(player_response(status="LOGIN_REQUIRED", reason="Private video", tracks=[ENGLISH_TRACK]))
        downloader = FakeDownloader()
        service = build_service(client=FakeYouTubeClient(watch_page_html=page), downloader=downloader)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_transcript_service] = lambda: service
        try:
            response = post(TestClient(app), {"url": "https://youtu.be/abc123"})
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 403
        assert response.json() == {"success": False, "videoId": "abc123", "error": "Video is not accessible or may be private"}
        assert sum(downloader.calls.values()) == 0

    def test_removed_video_is_404(self, client, youtube):
        youtube.timedtext = {}
        youtube.watch_page_html = watch_page(player_response(status="ERROR", reason="Video unavailable"))
        response = post(client, {"url": "https://youtu.be/abc123"})
        assert response.status_code == 404
        assert response.json()["error"] == "Video is unavailable or has been removed"

    def test_download_timeout_is_500(self, settings, build_service):
        youtube = FakeYouTubeClient(watch_page_html=watch_page(player_response(tracks=[])))
        service = build_service(client=youtube, downloader=FakeDownloader(error=AudioDownloadTimeout("exceeded")))
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_transcript_service] = lambda: service
        try:
            response = post(TestClient(app), {"url": "https://youtu.be/abc123"})
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "videoId": "abc123",
            "error": "Audio download timed out, please retry",
        }

    def test_transcription_failure_reports_video_id(self, settings, build_service):
        youtube = FakeYouTubeClient(watch_page_html=watch_page(player_response(tracks=[])))
        service = build_service(client=youtube, transcriber=FakeTranscriber(fail_on="abc123"))
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_transcript_service] = lambda: service
        try:
            response = post(TestClient(app), {"url": "https://youtu.be/abc123"})
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "videoId": "abc123",
            "error": "Transcription service failed",
        }

    def test_unexpected_failure_is_generic_500(self, client, youtube):
        def explode(*args, **kwargs):
            raise RuntimeError("secret internals")

        youtube.get_timedtext = explode
        response = post(client, {"url": "https://youtu.be/abc123"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "videoId": "abc123", "error": "Failed to transcribe video"}
        assert "secret" not in response.text


class TestStrategySelection:

    def test_caption_first_never_touches_audio(self, build_service):
        youtube = FakeYouTubeClient(watch_page_html=watch_page(player_response(tracks=[])))
        downloader = FakeDownloader()
        service = build_service(client=youtube, downloader=downloader, transcript_strategy="caption_first")
        with pytest.raises(NoCaptionsAvailable):
            asyncio.run(service.process_video("https://youtu.be/abc123"))
        assert sum(downloader.calls.values()) == 0

    def test_failed_acquisition_cancels_title_lookup(self, build_service):
        youtube = FakeYouTubeClient(watch_page_html=watch_page(player_response(tracks=[])))
        service = build_service(client=youtube, transcript_strategy="caption_first")
        release = threading.Event()

        def slow_title(video):
            release.wait(5)
            return "late title"

        service.metadata.get_title = slow_title

        async def run():
            loop = asyncio.get_running_loop()
            futures = []
            original = loop.run_in_executor

            def recording(executor, func, *args):
                future = original(executor, func, *args)
                futures.append(future)
                return future

            loop.run_in_executor = recording
            try:
                with pytest.raises(NoCaptionsAvailable) as excinfo:
                    await service.process_video("https://youtu.be/abc123")
            finally:
                release.set()
            return futures, excinfo.value

        futures, error = asyncio.run(run())
        assert error.video_id == "abc123"
        assert futures[0].cancelled()

    def test_audio_first_skips_captions(self, build_service):
        youtube = FakeYouTubeClient(
            timedtext={None: CAPTION_XML},
            payloads={TRACK_URL: CAPTION_XML},
            json_docs={OEMBED_URL: {"title": "Me at the zoo"}},
        )
        transcript_api = FakeTranscriptApi()
        service = build_service(client=youtube, transcript_api=transcript_api, transcript_strategy="audio_first")
        result = asyncio.run(service.process_video("https://youtu.be/abc123"))
        assert result.method == "whisper-audio"
        assert result.title == "Me at the zoo"
        assert youtube.calls["timedtext"] == 0
        assert transcript_api.list_calls == 0


class TestHttpSurface:

    def test_options_is_204_everywhere(self, client):
        for path in ("/api/transcript", "/health", "/anything"):
            response = client.options(path)
            assert response.status_code == 204
            assert response.content == b""
            for header, value in CORS_HEADERS.items():
                assert response.headers[header] == value

    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_other_methods_are_405(self, client, method):
        response = client.request(method.upper(), "/api/transcript", headers={"X-API-Key": API_KEY})
        assert response.status_code == 405
        assert response.json() == {"success": False, "error": "Method not allowed"}

    def test_cors_headers_on_success_and_error(self, client):
        for response in (post(client, {"url": "https://youtu.be/abc123"}), post(client, {}, api_key=None)):
            for header, value in CORS_HEADERS.items():
                assert response.headers[header] == value

    def test_cors_origin_is_a_single_value(self, settings):
        from backend.tubescribe.main import build_cors_headers

        one = build_cors_headers(settings.model_copy(update={"cors_allow_origin": "https://app.example"}))
        assert one["Access-Control-Allow-Origin"] == "https://app.example"
        blank = build_cors_headers(settings.model_copy(update={"cors_allow_origin": "  "}))
        assert blank["Access-Control-Allow-Origin"] == "*"

    def test_root_describes_service(self, client):
        body = client.get("/").json()
        assert body["status"] == "running"
        assert "strategy" in body

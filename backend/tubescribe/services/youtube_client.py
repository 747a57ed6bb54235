"""
HTTP access to YouTube endpoints.

Wraps a requests Session with browser-like headers, a default timeout and
bounded retries for idempotent GETs. Callers never talk to requests directly,
which keeps the network seam narrow enough to fake in tests.
"""
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import Settings
from ..errors import (
    AudioDownloadTimeout,
    AudioProcessingError,
    TranscriptFetchFailed,
    VideoNotAccessible,
)

logger = logging.getLogger('tubescribe.youtube_client')

WATCH_URL = "https://www.youtube.com/watch"
TIMEDTEXT_URL = "https://www.youtube.com/api/timedtext"
DOWNLOAD_CHUNK_BYTES = 64 * 1024


def make_http_session(settings: Settings) -> requests.Session:
    """Build a Session that retries idempotent requests on transient failures."""
    retry = Retry(
        total=max(settings.http_retries, 0),
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({
        "User-Agent": settings.user_agent,
        "Accept-Language": "en-US,en;q=0.5",
    })
    return session


class YouTubeClient:
    """Thin HTTP client for the YouTube pages and endpoints the pipeline uses."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or make_http_session(settings)
        self.timeout = settings.http_timeout_seconds

    def get_watch_page(self, video_id: str) -> str:
        """
        Fetch the watch page HTML.

        Raises:
            VideoNotAccessible: on 404/410
            TranscriptFetchFailed: on any other failure
        """
        try:
            response = self.session.get(
                WATCH_URL,
                params={"v": video_id, "hl": "en"},
                headers={"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TranscriptFetchFailed(f"Watch page request failed: {e}", video_id=video_id) from e

        logger.debug(f"[YOUTUBE] watch page status={response.status_code} length={len(response.text)}")
        if response.status_code in (404, 410):
            raise VideoNotAccessible(f"HTTP {response.status_code}: video not accessible", removed=True, video_id=video_id)
        if not response.ok:
            raise TranscriptFetchFailed(f"Watch page returned HTTP {response.status_code}", video_id=video_id)
        return response.text

    def get_timedtext(self, video_id: str, lang: str, kind: Optional[str] = None, fmt: str = "json3") -> Optional[str]:
        """Query the public timed-text endpoint; None on any non-success answer."""
        params = {"v": video_id, "lang": lang, "fmt": fmt}
        if kind:
            params["kind"] = kind
        try:
            response = self.session.get(TIMEDTEXT_URL, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.info(f"[CAPTIONS] timedtext request failed lang={lang} kind={kind}: {e}")
            return None
        if not response.ok or not response.text.strip():
            logger.info(f"[CAPTIONS] timedtext lang={lang} kind={kind} status={response.status_code} empty={not response.text.strip()}")
            return None
        return response.text

    def get_caption_payload(self, url: str) -> str:
        """
        Fetch a caption track's payload.

        Raises:
            TranscriptFetchFailed: on network failure or non-success status
        """
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TranscriptFetchFailed(f"Caption request failed: {e}") from e
        if not response.ok:
            raise TranscriptFetchFailed(f"Caption endpoint returned HTTP {response.status_code}")
        return response.text

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON document; raises requests exceptions on failure."""
        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def download_to_file(self, url: str, destination: Path, timeout_seconds: float) -> int:
        """
        Stream a URL to disk within a wall-clock bound.

        The partial file is removed on every failure path.

        Returns:
            Number of bytes written

        Raises:
            AudioDownloadTimeout: if the bound is exceeded
            AudioProcessingError: on any other download failure
        """
        deadline = time.monotonic() + timeout_seconds
        written = 0
        response = None
        try:
            response = self.session.get(
                url,
                headers={"Accept": "*/*"},
                stream=True,
                timeout=(self.timeout, min(self.timeout, timeout_seconds)),
            )
            if not response.ok:
                raise AudioProcessingError(f"Failed to download audio: HTTP {response.status_code}")

            logger.info(f"[AUDIO] download started content_length={response.headers.get('content-length')}")
            with open(destination, "wb") as handle:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                    if time.monotonic() > deadline:
                        raise AudioDownloadTimeout(
                            f"Audio download exceeded {timeout_seconds:.0f}s after {written} bytes"
                        )
                    if chunk:
                        handle.write(chunk)
                        written += len(chunk)
        except requests.Timeout as e:
            _remove_partial(destination)
            raise AudioDownloadTimeout(f"Audio download timed out: {e}") from e
        except requests.RequestException as e:
            _remove_partial(destination)
            raise AudioProcessingError(f"Audio download failed: {e}") from e
        except Exception:
            _remove_partial(destination)
            raise
        finally:
            if response is not None:
                response.close()

        logger.info(f"[AUDIO] download finished bytes={written}")
        return written


def _remove_partial(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        logger.error(f"[AUDIO] failed to remove partial download {path}: {e}")

"""
Caption track discovery for YouTube videos.

The watch page embeds the player's configuration as JSON, but the exact shape
of the embedding drifts over time. Discovery is therefore an ordered list of
independent matchers, each a pure function from page text to a parsed
structure or None. Adding or retiring a pattern only touches the lists below.

Acquisition strategies, tried in the configured order:

- timedtext: the public timed-text endpoint keyed by video id and language
- player_response: caption tracks from the embedded player response
- caption_tracks: a looser match for the raw captionTracks array
- data_api: caption languages listed by the YouTube Data API v3
- transcript_api: the youtube-transcript-api library
"""
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import urlencode

import requests
from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from .config import Settings
from .errors import (
    NoCaptionsAvailable,
    TranscriptEmpty,
    TranscriptFetchFailed,
    VideoNotAccessible,
)
from .logging_config import PerformanceMonitor
from .models import CaptionTrack, CaptionTranscript, TranscriptSegment, VideoReference
from .services.youtube_client import TIMEDTEXT_URL, YouTubeClient
from .transcript_formatter import decode_caption_payload, flatten_transcript

logger = logging.getLogger('tubescribe.captions')

DATA_API_CAPTIONS_URL = "https://www.googleapis.com/youtube/v3/captions"
YOUTUBE_ORIGIN = "https://www.youtube.com"

_JSON_DECODER = json.JSONDecoder()


# ---------------------------------------------------------------------------
# Page matchers
# ---------------------------------------------------------------------------

def _decode_json_after(text: str, marker: "re.Pattern[str]", opener: str) -> Optional[Any]:
    match = marker.search(text)
    if not match:
        return None
    start = text.find(opener, match.end())
    if start < 0 or start - match.end() > 3:
        return None
    try:
        value, _ = _JSON_DECODER.raw_decode(text, start)
    except ValueError:
        return None
    return value


def _player_response_matcher(name: str, pattern: str) -> Callable[[str], Optional[Dict[str, Any]]]:
    marker = re.compile(pattern)

    def match(html: str) -> Optional[Dict[str, Any]]:
        value = _decode_json_after(html, marker, "{")
        return value if isinstance(value, dict) else None

    match.__name__ = name
    return match


PLAYER_RESPONSE_MATCHERS: List[Callable[[str], Optional[Dict[str, Any]]]] = [
    _player_response_matcher("var_assignment", r'var\s+ytInitialPlayerResponse\s*=\s*'),
    _player_response_matcher("window_key", r'window\[["\']ytInitialPlayerResponse["\']\]\s*=\s*'),
    _player_response_matcher("json_key", r'"ytInitialPlayerResponse"\s*:\s*'),
]

_CAPTION_TRACKS_MARKER = re.compile(r'"captionTracks"\s*:\s*')
_TRACK_URL_RE = re.compile(r'"baseUrl"\s*:\s*"([^"]+)"')
_TRACK_LANG_RE = re.compile(r'"languageCode"\s*:\s*"([^"]+)"')
_TRACK_KIND_RE = re.compile(r'"kind"\s*:\s*"([^"]+)"')


def find_player_response(html: str) -> Optional[Dict[str, Any]]:
    """Return the first embedded player response any matcher can parse."""
    for matcher in PLAYER_RESPONSE_MATCHERS:
        player_response = matcher(html)
        if player_response is not None:
            logger.debug(f"[CAPTIONS] player response found by {matcher.__name__}")
            return player_response
    return None


def _absolute_url(url: str) -> str:
    url = url.replace("\\u0026", "&").replace("\\/", "/")
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("/"):
        return YOUTUBE_ORIGIN + url
    return url


def _track_kind(raw: Dict[str, Any]) -> str:
    if raw.get("kind") == "asr" or str(raw.get("vssId", "")).startswith("a."):
        return "asr"
    return "manual"


def _tracks_from_dicts(raw_tracks: List[Any], default_index: Optional[int] = None) -> List[CaptionTrack]:
    tracks: List[CaptionTrack] = []
    for index, raw in enumerate(raw_tracks):
        if not isinstance(raw, dict) or not raw.get("baseUrl"):
            continue
        name = raw.get("name") or {}
        if isinstance(name, dict):
            name = name.get("simpleText") or "".join(run.get("text", "") for run in name.get("runs", []))
        tracks.append(CaptionTrack(
            language_code=raw.get("languageCode") or "",
            base_url=_absolute_url(raw["baseUrl"]),
            kind=_track_kind(raw),
            is_default=default_index == index,
            name=name or None,
        ))
    return tracks


def check_playability(player_response: Dict[str, Any], video_id: Optional[str] = None) -> None:
    """
    Raise VideoNotAccessible unless the player response reports status OK.

    Status ERROR means the video is gone; everything else (LOGIN_REQUIRED,
    UNPLAYABLE, AGE_CHECK_REQUIRED, ...) means it exists but is restricted.
    """
    playability = player_response.get("playabilityStatus") or {}
    status = playability.get("status", "OK")
    if status == "OK":
        return
    reason = playability.get("reason") or "Unknown reason"
    logger.warning(f"[CAPTIONS] video {video_id} not playable: status={status} reason={reason}")
    raise VideoNotAccessible(
        f"Video not playable: {status} ({reason})",
        removed=status == "ERROR",
        video_id=video_id,
    )


def extract_caption_tracks(player_response: Dict[str, Any]) -> List[CaptionTrack]:
    renderer = (player_response.get("captions") or {}).get("playerCaptionsTracklistRenderer") or {}
    raw_tracks = renderer.get("captionTracks") or []
    default_index = None
    audio_tracks = renderer.get("audioTracks") or []
    if audio_tracks and isinstance(audio_tracks[0], dict):
        default_index = audio_tracks[0].get("defaultCaptionTrackIndex")
    return _tracks_from_dicts(raw_tracks, default_index)


def find_raw_caption_tracks(html: str) -> List[CaptionTrack]:
    """Looser match for the captionTracks array alone."""
    value = _decode_json_after(html, _CAPTION_TRACKS_MARKER, "[")
    if isinstance(value, list):
        tracks = _tracks_from_dicts(value)
        if tracks:
            return tracks

    # Structural parse failed; pick the fields out one track at a time
    match = _CAPTION_TRACKS_MARKER.search(html)
    if not match:
        return []
    blob = html[match.end():]
    end = blob.find('"translationLanguages"')
    blob = blob[:end] if end > 0 else blob[:20000]

    tracks: List[CaptionTrack] = []
    for piece in blob.split('{"baseUrl"')[1:]:
        piece = '"baseUrl"' + piece
        url_match = _TRACK_URL_RE.search(piece)
        if not url_match:
            continue
        lang_match = _TRACK_LANG_RE.search(piece)
        kind_match = _TRACK_KIND_RE.search(piece)
        tracks.append(CaptionTrack(
            language_code=lang_match.group(1) if lang_match else "",
            base_url=_absolute_url(url_match.group(1)),
            kind="asr" if kind_match and kind_match.group(1) == "asr" else "manual",
        ))
    return tracks


def locate_caption_tracks(html: str) -> List[CaptionTrack]:
    """Caption tracks embedded in a watch page, or an empty list."""
    player_response = find_player_response(html)
    if player_response is not None:
        tracks = extract_caption_tracks(player_response)
        if tracks:
            return tracks
    return find_raw_caption_tracks(html)


def select_caption_track(tracks: List[CaptionTrack], preferred_language: str = "en") -> Optional[CaptionTrack]:
    """Prefer the preferred language (exact or regional variant), else the first track."""
    if not tracks:
        return None
    preferred = (preferred_language or "en").lower()
    for track in tracks:
        code = track.language_code.lower()
        if code == preferred or code.startswith(preferred + "-"):
            return track
    return tracks[0]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class _RequestState:
    """Per-request memo so the watch page is fetched at most once."""

    def __init__(self, client: YouTubeClient, video: VideoReference):
        self.client = client
        self.video = video
        self._html: Optional[str] = None
        self._player_response: Optional[Dict[str, Any]] = None
        self._player_response_checked = False
        self.tried_track_urls: Set[str] = set()

    @property
    def html(self) -> str:
        if self._html is None:
            self._html = self.client.get_watch_page(self.video.id)
        return self._html

    @property
    def player_response(self) -> Optional[Dict[str, Any]]:
        if not self._player_response_checked:
            self._player_response = find_player_response(self.html)
            self._player_response_checked = True
            if self._player_response is not None:
                check_playability(self._player_response, self.video.id)
        return self._player_response

    def check_playable(self) -> None:
        """Run the playability check even when only the raw track array is usable."""
        self.player_response


_RECOVERABLE = (TranscriptFetchFailed, TranscriptEmpty, ValueError, LookupError, TypeError, requests.RequestException)


class CaptionLocator:
    """
    Runs the caption strategies in order until one yields a usable transcript.

    Strategy-local failures are logged and fall through to the next strategy.
    VideoNotAccessible short-circuits everything.
    """

    def __init__(
        self,
        client: YouTubeClient,
        settings: Settings,
        transcript_api_factory: Callable[[], Any] = YouTubeTranscriptApi,
    ):
        self.client = client
        self.settings = settings
        self.transcript_api_factory = transcript_api_factory
        self._strategies = {
            "timedtext": self._from_timedtext,
            "player_response": self._from_player_response,
            "caption_tracks": self._from_raw_caption_tracks,
            "data_api": self._from_data_api,
            "transcript_api": self._from_transcript_api,
        }

    @property
    def strategy_names(self) -> List[str]:
        names = []
        for name in self.settings.caption_strategy_list:
            if name not in self._strategies:
                logger.warning(f"[CAPTIONS] ignoring unknown caption strategy '{name}'")
                continue
            names.append(name)
        return names

    def fetch_transcript(self, video: VideoReference) -> CaptionTranscript:
        """
        Acquire a caption transcript for the video.

        Raises:
            VideoNotAccessible: the video is private, removed or blocked
            NoCaptionsAvailable: every strategy was exhausted
        """
        state = _RequestState(self.client, video)
        attempted = []
        for name in self.strategy_names:
            attempted.append(name)
            with PerformanceMonitor(f"caption_strategy_{name}"):
                try:
                    result = self._strategies[name](state)
                except VideoNotAccessible:
                    raise
                except _RECOVERABLE as e:
                    logger.info(f"[CAPTIONS] strategy={name} video={video.id} failed: {type(e).__name__}: {e}")
                    continue
            if result is None:
                logger.info(f"[CAPTIONS] strategy={name} video={video.id} found nothing")
                continue
            logger.info(
                f"[CAPTIONS] strategy={name} video={video.id} succeeded "
                f"segments={len(result.segments)} chars={len(result.text)}"
            )
            return result

        raise NoCaptionsAvailable(
            f"All caption strategies exhausted: {', '.join(attempted) or 'none configured'}",
            video_id=video.id,
        )

    def _transcript_from_track(self, state: _RequestState, track: CaptionTrack, strategy: str) -> CaptionTranscript:
        state.tried_track_urls.add(track.base_url)
        logger.info(f"[CAPTIONS] fetching track lang={track.language_code} kind={track.kind} via {strategy}")
        payload = self.client.get_caption_payload(track.base_url)
        segments = decode_caption_payload(payload)
        return CaptionTranscript(
            segments=segments,
            text=flatten_transcript(segments),
            strategy=strategy,
            track=track,
        )

    def _from_timedtext(self, state: _RequestState) -> Optional[CaptionTranscript]:
        language = self.settings.caption_language
        for kind in (None, "asr"):
            payload = self.client.get_timedtext(state.video.id, language, kind=kind)
            if payload is None:
                continue
            try:
                segments = decode_caption_payload(payload)
                text = flatten_transcript(segments)
            except (TranscriptFetchFailed, TranscriptEmpty) as e:
                logger.info(f"[CAPTIONS] timedtext lang={language} kind={kind} unusable: {e}")
                continue
            return CaptionTranscript(
                segments=segments,
                text=text,
                strategy="timedtext",
                details={"language": language, "kind": kind or "manual"},
            )
        return None

    def _from_player_response(self, state: _RequestState) -> Optional[CaptionTranscript]:
        player_response = state.player_response
        if player_response is None:
            return None
        track = select_caption_track(extract_caption_tracks(player_response), self.settings.caption_language)
        if track is None:
            return None
        return self._transcript_from_track(state, track, "player_response")

    def _from_raw_caption_tracks(self, state: _RequestState) -> Optional[CaptionTranscript]:
        state.check_playable()
        # Tracks an earlier strategy already fetched are not retried
        tracks = [t for t in locate_caption_tracks(state.html) if t.base_url not in state.tried_track_urls]
        track = select_caption_track(tracks, self.settings.caption_language)
        if track is None:
            return None
        return self._transcript_from_track(state, track, "caption_tracks")

    def _from_data_api(self, state: _RequestState) -> Optional[CaptionTranscript]:
        if not self.settings.youtube_api_key:
            return None
        data = self.client.get_json(DATA_API_CAPTIONS_URL, params={
            "part": "snippet",
            "videoId": state.video.id,
            "key": self.settings.youtube_api_key,
        })
        tracks = []
        for item in data.get("items") or []:
            snippet = item.get("snippet") or {}
            language = snippet.get("language")
            if not language:
                continue
            track_kind = snippet.get("trackKind", "").lower()
            params = {"v": state.video.id, "lang": language, "fmt": "json3"}
            if track_kind == "asr":
                params["kind"] = "asr"
            tracks.append(CaptionTrack(
                language_code=language,
                base_url=f"{TIMEDTEXT_URL}?{urlencode(params)}",
                kind={"asr": "asr", "standard": "manual"}.get(track_kind, "unknown"),
                name=snippet.get("name") or None,
            ))
        track = select_caption_track(tracks, self.settings.caption_language)
        if track is None:
            return None
        return self._transcript_from_track(state, track, "data_api")

    def _from_transcript_api(self, state: _RequestState) -> Optional[CaptionTranscript]:
        try:
            transcript_list = list(self.transcript_api_factory().list(state.video.id))
        except CouldNotRetrieveTranscript as e:
            logger.info(f"[CAPTIONS] youtube-transcript-api could not list transcripts: {type(e).__name__}")
            return None
        if not transcript_list:
            return None

        preferred = (self.settings.caption_language or "en").lower()
        chosen = next(
            (t for t in transcript_list
             if t.language_code.lower() == preferred or t.language_code.lower().startswith(preferred + "-")),
            transcript_list[0],
        )
        try:
            fetched = chosen.fetch()
        except CouldNotRetrieveTranscript as e:
            raise TranscriptFetchFailed(f"youtube-transcript-api fetch failed: {type(e).__name__}") from e

        segments = [
            TranscriptSegment(
                text=" ".join(str(snippet.text).split()),
                start_offset_ms=int(snippet.start * 1000),
                duration_ms=int(snippet.duration * 1000),
            )
            for snippet in fetched.snippets
        ]
        return CaptionTranscript(
            segments=segments,
            text=flatten_transcript(segments),
            strategy="transcript_api",
            track=CaptionTrack(
                language_code=chosen.language_code,
                base_url="",
                kind="asr" if chosen.is_generated else "manual",
            ),
        )


def fetch_player_response(client: YouTubeClient, video: VideoReference) -> Dict[str, Any]:
    """
    Fetch the watch page and return its player response, checking playability.

    Raises:
        VideoNotAccessible: if the video is not playable
        TranscriptFetchFailed: if no matcher finds the player response
    """
    html = client.get_watch_page(video.id)
    player_response = find_player_response(html)
    if player_response is None:
        raise TranscriptFetchFailed("Could not find video data in page", video_id=video.id)
    check_playability(player_response, video.id)
    return player_response

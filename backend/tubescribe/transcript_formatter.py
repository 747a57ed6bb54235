"""
Transcript Formatter Module
===========================
Decode caption payloads (timed-text XML or JSON event lists) into segments and
flatten them into a single transcript string.

Entity decoding is a single pass over the five standard HTML entities, so an
escaped entity such as ``&amp;amp;`` decodes to ``&amp;`` and no further.
"""

import json
import logging
import re
from typing import List, Optional

from .errors import TranscriptEmpty, TranscriptFetchFailed
from .models import TranscriptSegment

logger = logging.getLogger('tubescribe.transcript_formatter')

MIN_TRANSCRIPT_LENGTH = 10

_ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}
_ENTITY_RE = re.compile("|".join(re.escape(entity) for entity in _ENTITIES))
_TAG_RE = re.compile(r'</?[A-Za-z][^<>]*>')
_STYLE_TAG_RE = re.compile(r"</?(?:font|b|i|u)\b[^<>]*>", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r'\s+')
_XML_CUE_RE = re.compile(r'<(text|p)\b([^>]*)>(.*?)</\1>', re.DOTALL)
_ATTR_RE = re.compile(r'([A-Za-z_:-]+)="([^"]*)"')
_JSON_PREFIX = ")]}'"


def decode_entities(text: str) -> str:
    """Decode &amp; &lt; &gt; &quot; &#39; in one pass."""
    return _ENTITY_RE.sub(lambda m: _ENTITIES[m.group(0)], text)


def strip_markup(text: str) -> str:
    return _TAG_RE.sub("", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _clean_xml_text(raw: str) -> str:
    # Escaped styling tags are dropped after decoding; any other decoded
    # angle brackets are caption text
    text = strip_markup(raw)
    text = decode_entities(text)
    text = _STYLE_TAG_RE.sub("", text)
    return collapse_whitespace(text)


def _to_ms(value: Optional[str], *, seconds: bool) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return int(round(number * 1000)) if seconds else int(number)


def parse_timedtext_xml(payload: str) -> List[TranscriptSegment]:
    """
    Parse timed-text XML into segments.

    Handles the classic ``<text start=".." dur="..">`` format (seconds) and the
    srv3 ``<p t=".." d="..">`` format (milliseconds).
    """
    segments: List[TranscriptSegment] = []
    for match in _XML_CUE_RE.finditer(payload):
        tag, attr_blob, body = match.groups()
        attrs = dict(_ATTR_RE.findall(attr_blob))
        if tag == "text":
            start = _to_ms(attrs.get("start"), seconds=True)
            duration = _to_ms(attrs.get("dur"), seconds=True)
        else:
            start = _to_ms(attrs.get("t"), seconds=False)
            duration = _to_ms(attrs.get("d"), seconds=False)
        segments.append(TranscriptSegment(
            text=_clean_xml_text(body),
            start_offset_ms=start,
            duration_ms=duration,
        ))
    return segments


def parse_json3_events(payload: str) -> List[TranscriptSegment]:
    """Parse the JSON event-list format; sub-segment text is literal."""
    body = payload.strip()
    if body.startswith(_JSON_PREFIX):
        body = body[len(_JSON_PREFIX):]
    data = json.loads(body)
    events = data.get("events") if isinstance(data, dict) else None
    if not isinstance(events, list):
        raise ValueError("payload has no events list")

    segments: List[TranscriptSegment] = []
    for event in events:
        if not isinstance(event, dict):
            continue
        segs = event.get("segs") or []
        text = "".join(seg.get("utf8", "") for seg in segs if isinstance(seg, dict))
        segments.append(TranscriptSegment(
            text=collapse_whitespace(text.replace("\u200b", "")),
            start_offset_ms=event.get("tStartMs"),
            duration_ms=event.get("dDurationMs"),
        ))
    return segments


def decode_caption_payload(payload: str) -> List[TranscriptSegment]:
    """
    Decode a caption payload of either supported shape.

    Raises:
        TranscriptFetchFailed: if the payload is neither shape
    """
    if not payload or not payload.strip():
        raise TranscriptFetchFailed("Caption payload is empty")

    body = payload.lstrip()
    if body.startswith("{") or body.startswith(_JSON_PREFIX):
        try:
            return parse_json3_events(body)
        except (ValueError, AttributeError) as e:
            raise TranscriptFetchFailed(f"Malformed caption JSON: {e}") from e

    head = body[:200].lower()
    if head.startswith("<!doctype html") or "<html" in head:
        raise TranscriptFetchFailed("Caption endpoint returned an HTML page")

    if "<text" in body or "<p " in body or "<p>" in body:
        return parse_timedtext_xml(body)

    raise TranscriptFetchFailed("Caption payload is not timed-text XML or JSON")


def join_segments(segments: List[TranscriptSegment]) -> str:
    """Join segment texts in source order, dropping empty ones."""
    parts = [segment.text.strip() for segment in segments]
    return collapse_whitespace(" ".join(part for part in parts if part))


def flatten_transcript(segments: List[TranscriptSegment]) -> str:
    """
    Flatten segments into the final transcript.

    Raises:
        TranscriptEmpty: if the result is shorter than MIN_TRANSCRIPT_LENGTH,
            which almost always means a decode failure
    """
    text = join_segments(segments)
    if len(text) < MIN_TRANSCRIPT_LENGTH:
        logger.warning(f"[CAPTIONS] Decoded transcript too short ({len(text)} chars) from {len(segments)} segments")
        raise TranscriptEmpty(f"Decoded transcript has only {len(text)} characters")
    return text


def decode_transcript(payload: str) -> str:
    """Decode a raw caption payload straight to the flat transcript."""
    return flatten_transcript(decode_caption_payload(payload))

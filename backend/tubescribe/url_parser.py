"""
YouTube URL parsing.

Pure string handling, no network access.
"""
import re
from typing import Optional

from .models import VideoReference

# Recognized URL shapes, tried in order. The identifier stops at any of & newline ? #
VIDEO_ID_PATTERNS = (
    re.compile(r'youtube\.com/watch\?(?:[^#\n]*?&)?v=([^&\n?#]+)'),
    re.compile(r'youtu\.be/([^&\n?#/]+)'),
    re.compile(r'youtube\.com/embed/([^&\n?#/]+)'),
    re.compile(r'youtube\.com/v/([^&\n?#/]+)'),
)


def extract_video_id(url: Optional[str]) -> Optional[str]:
    """
    Extract the video identifier from a YouTube URL.

    Args:
        url: Any string claimed to be a YouTube URL

    Returns:
        The identifier, or None when no recognized shape matches
    """
    if not url or not isinstance(url, str):
        return None

    candidate = url.strip()
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(candidate)
        if match:
            video_id = match.group(1).strip()
            if video_id:
                return video_id
    return None


def parse_video_reference(url: Optional[str]) -> Optional[VideoReference]:
    """Build a VideoReference for the URL, or None when it is not a video URL."""
    video_id = extract_video_id(url)
    if video_id is None:
        return None
    return VideoReference(id=video_id, source_url=url.strip())

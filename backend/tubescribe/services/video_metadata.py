"""
Video title lookup.

Uses the YouTube Data API when a key is configured and the keyless oEmbed
endpoint otherwise. A title is optional decoration on the response, so every
failure here degrades to ``None``.
"""
import logging
from typing import Optional

import requests

from ..config import Settings
from ..models import VideoReference
from .youtube_client import YouTubeClient

logger = logging.getLogger('tubescribe.metadata')

DATA_API_VIDEOS_URL = "https://www.googleapis.com/youtube/v3/videos"
OEMBED_URL = "https://www.youtube.com/oembed"


class VideoMetadataClient:
    def __init__(self, client: YouTubeClient, settings: Settings):
        self.client = client
        self.api_key = settings.youtube_api_key

    def _title_from_data_api(self, video: VideoReference) -> Optional[str]:
        data = self.client.get_json(
            DATA_API_VIDEOS_URL,
            params={"part": "snippet", "id": video.id, "key": self.api_key},
        )
        items = data.get("items") or []
        if not items:
            return None
        return (items[0].get("snippet") or {}).get("title")

    def _title_from_oembed(self, video: VideoReference) -> Optional[str]:
        data = self.client.get_json(OEMBED_URL, params={"url": video.watch_url, "format": "json"})
        return data.get("title")

    def get_title(self, video: VideoReference) -> Optional[str]:
        """Return the video title, or None when it cannot be determined."""
        lookup = self._title_from_data_api if self.api_key else self._title_from_oembed
        try:
            title = lookup(video)
        except (requests.RequestException, ValueError, AttributeError) as e:
            logger.info(f"Title lookup failed for {video.id}: {e}")
            return None
        if title:
            logger.debug(f"Title for {video.id}: {title}")
        return title or None

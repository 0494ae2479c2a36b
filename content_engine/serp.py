"""
Search-data provider client (Serper) and Stage-1 SERP intelligence.

Organic results feed the outline prompt and the references list; video
results are deduplicated by YouTube id and embedded in the article body.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from content_engine.cache import ContentCache
from content_engine.fetcher import FetchError, fetch_with_relays
from content_engine.html_utils import extract_youtube_id

logger = logging.getLogger("serp")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SERPER_SEARCH_URL = "https://google.serper.dev/search"
SERPER_VIDEOS_URL = "https://google.serper.dev/videos"

MAX_ORGANIC_RESULTS = 10
MAX_VIDEO_CANDIDATES = 10
YOUTUBE_EMBED_BASE = "https://www.youtube.com/embed/"

_EMBED_ID_RE = re.compile(r"embed/([^?&]+)")
_WATCH_ID_RE = re.compile(r"[?&]v=([^&]+)")
_SHORT_ID_RE = re.compile(r"youtu\.be/([^?&]+)")


class SerpError(Exception):
    """The search-data API returned a non-OK status."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class SerpIntelligence:
    """Cached Stage-1 output for one title."""

    serp_data: List[Dict[str, Any]] = field(default_factory=list)
    youtube_videos: List[Dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Video helpers
# ---------------------------------------------------------------------------


def _video_id(video: Dict[str, Any]) -> Optional[str]:
    if video.get("videoId"):
        return video["videoId"]
    for key, pattern in (("embedUrl", _EMBED_ID_RE), ("url", _WATCH_ID_RE), ("url", _SHORT_ID_RE)):
        value = video.get(key)
        if value:
            match = pattern.search(value)
            if match:
                return match.group(1)
    return None


def get_unique_youtube_videos(videos: Sequence[Dict[str, Any]], count: int = 2) -> List[Dict[str, Any]]:
    """
    First *count* videos with distinct YouTube ids, each given ``videoId``
    and ``embedUrl``. Returns an empty list when nothing usable was found.
    """
    unique: List[Dict[str, Any]] = []
    seen: set[str] = set()

    for video in videos or []:
        if len(unique) >= count:
            break
        video_id = _video_id(video)
        if not video_id:
            continue
        if video_id in seen:
            logger.warning("Duplicate video skipped: %s", video_id)
            continue
        seen.add(video_id)
        unique.append({**video, "videoId": video_id, "embedUrl": f"{YOUTUBE_EMBED_BASE}{video_id}"})
        logger.info("Video %d selected: %s - %r", len(unique), video_id, (video.get("title") or "")[:50])

    if len(unique) < count:
        logger.warning("Only %d unique video(s) found, wanted %d", len(unique), count)
    return unique


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SerperClient:
    """
    Minimal Serper API client. Requests go through ``fetch_with_relays``.

    Parameters
    ----------
    api_key : str
        Serper API key, sent as ``X-API-KEY``.
    session : aiohttp.ClientSession, optional
        Shared session; one is created per call otherwise.
    """

    def __init__(self, api_key: str, session: Optional[aiohttp.ClientSession] = None):
        self.api_key = api_key
        self._session = session

    def _headers(self) -> Dict[str, str]:
        return {"X-API-KEY": self.api_key, "Content-Type": "application/json"}

    async def _post(self, url: str, query: str) -> Dict[str, Any]:
        resp = await fetch_with_relays(
            url, "POST", headers=self._headers(), json_data={"q": query}, session=self._session,
        )
        if not resp.ok:
            raise SerpError(f"Serper API failed with status {resp.status}", resp.status)
        return resp.json()

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Organic results ``[{title, link, snippet}, ...]`` (at most 10)."""
        data = await self._post(SERPER_SEARCH_URL, query)
        return list(data.get("organic") or [])[:MAX_ORGANIC_RESULTS]

    async def videos(self, query: str) -> List[Dict[str, Any]]:
        """Video results ``[{title, link, ...}, ...]``."""
        data = await self._post(SERPER_VIDEOS_URL, query)
        return list(data.get("videos") or [])


async def fetch_serp_intelligence(
    client: SerperClient,
    title: str,
    cache: ContentCache,
    video_count: int = 2,
) -> Optional[SerpIntelligence]:
    """
    Organic results plus up to *video_count* unique videos for *title*.

    Cached under ``serp-<title>``. Returns None if the organic query fails;
    a failing video query is logged and skipped.
    """
    cache_key = cache.make_key("serp", title)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    try:
        serp_data = await client.search(title)
    except (FetchError, SerpError, ValueError) as exc:
        logger.error("Failed to fetch SERP data for %r: %s", title, exc)
        return None

    candidates: Dict[str, Dict[str, Any]] = {}
    for query in (f'"{title}" tutorial', f"how to {title}", title):
        if len(candidates) >= MAX_VIDEO_CANDIDATES:
            break
        try:
            for video in await client.videos(query):
                video_id = extract_youtube_id(video.get("link", ""))
                if video_id and video_id not in candidates:
                    candidates[video_id] = {**video, "videoId": video_id}
        except (FetchError, SerpError, ValueError) as exc:
            logger.warning("Video search failed for %r: %s", query, exc)

    intel = SerpIntelligence(
        serp_data=serp_data,
        youtube_videos=get_unique_youtube_videos(list(candidates.values()), video_count),
    )
    cache.set(cache_key, intel)
    return intel

"""
Sitemap discovery.

Follows sitemap indexes breadth-first and collects every page URL with its
``lastmod`` date. Parsing is regex based so malformed or non-standard XML
still yields URLs: when a file is neither an index nor has ``<url>`` blocks,
a generic ``<loc>`` scan is used instead.

The crawl can run as an independent task that reports over a queue:

    queue = start_crawl("https://example.com/sitemap_index.xml")
    while True:
        event = await queue.get()
        if event.type is not CrawlEventType.UPDATE:
            break
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

import aiohttp

from content_engine.fetcher import fetch_with_relays
from content_engine.html_utils import extract_slug_from_url
from content_engine.models import SitemapPage

logger = logging.getLogger("sitemap_crawler")

_SITEMAP_ENTRY_RE = re.compile(r"<sitemap>\s*<loc>(.*?)</loc>\s*</sitemap>")
_URL_BLOCK_RE = re.compile(r"<url>([\s\S]*?)</url>")
_LOC_RE = re.compile(r"<loc>(.*?)</loc>")
_LASTMOD_RE = re.compile(r"<lastmod>(.*?)</lastmod>")

MAX_URL_IN_MESSAGE = 100
SECONDS_PER_DAY = 86400


class CrawlEventType(str, Enum):
    UPDATE = "CRAWL_UPDATE"
    COMPLETE = "CRAWL_COMPLETE"
    ERROR = "CRAWL_ERROR"


@dataclass
class CrawlEvent:
    type: CrawlEventType
    message: str
    pages: List[SitemapPage] = field(default_factory=list)


def parse_lastmod(value: Optional[str]) -> Optional[datetime]:
    """Parse a W3C datetime from a sitemap. Naive values are taken as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    parsed = parse_lastmod(value)
    if parsed is None:
        return None
    now = now or datetime.now(timezone.utc)
    return round((now - parsed).total_seconds() / SECONDS_PER_DAY)


class SitemapCrawler:
    """
    Breadth-first sitemap crawler.

    Parameters
    ----------
    session : aiohttp.ClientSession, optional
        Shared session for all fetches.
    now : callable, optional
        Clock returning an aware datetime, used for ``days_old``.
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._session = session
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def crawl(
        self,
        sitemap_url: str,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> List[SitemapPage]:
        """
        Discover every page reachable from *sitemap_url*.

        Each sitemap file is fetched once. Pages keep discovery order and
        the first ``lastmod`` seen for a URL.

        Raises
        ------
        FetchError
            If a sitemap file cannot be fetched on any path.
        """

        def _emit(message: str) -> None:
            logger.info(message)
            if on_update is not None:
                on_update(message)

        queue: List[str] = [sitemap_url]
        crawled: set[str] = set()
        found: Dict[str, Optional[str]] = {}

        _emit("Discovering all pages from sitemap(s)...")
        while queue:
            current = queue.pop(0)
            if not current or current in crawled:
                continue
            crawled.add(current)
            _emit(f"Parsing sitemap: {current[:MAX_URL_IN_MESSAGE]}...")

            resp = await fetch_with_relays(current, session=self._session)
            text = resp.text()
            before = len(found)

            is_index = False
            for match in _SITEMAP_ENTRY_RE.finditer(text):
                queue.append(match.group(1))
                is_index = True

            for match in _URL_BLOCK_RE.finditer(text):
                block = match.group(1)
                loc = _LOC_RE.search(block)
                if loc and loc.group(1) not in found:
                    lastmod = _LASTMOD_RE.search(block)
                    found[loc.group(1)] = lastmod.group(1) if lastmod else None

            if not is_index and len(found) == before:
                _emit(f"Using fallback parser for: {current[:MAX_URL_IN_MESSAGE]}...")
                for match in _LOC_RE.finditer(text):
                    loc = match.group(1).strip()
                    if loc.startswith("http") and loc not in found:
                        found[loc] = None

        now = self._now()
        return [
            SitemapPage(
                id=url,
                title=url,
                slug=extract_slug_from_url(url),
                last_mod=lastmod,
                days_old=days_since(lastmod, now),
            )
            for url, lastmod in found.items()
        ]

    async def run(self, sitemap_url: str, events: asyncio.Queue) -> None:
        """Crawl and report progress, the result and any failure as events."""

        def _update(message: str) -> None:
            events.put_nowait(CrawlEvent(CrawlEventType.UPDATE, message))

        try:
            pages = await self.crawl(sitemap_url, on_update=_update)
        except Exception as exc:
            logger.error("Sitemap crawl failed for %s: %s", sitemap_url, exc)
            await events.put(CrawlEvent(CrawlEventType.ERROR, f"An error occurred during crawl: {exc}"))
            return

        if not pages:
            message = "Crawl complete, but no page URLs were found."
        else:
            message = f"Discovery successful! Found {len(pages)} pages."
        logger.info(message)
        await events.put(CrawlEvent(CrawlEventType.COMPLETE, message, pages))


_running: set[asyncio.Task] = set()


def start_crawl(
    sitemap_url: str,
    session: Optional[aiohttp.ClientSession] = None,
) -> asyncio.Queue:
    """
    Start a crawl as a background task; returns the queue it reports on.

    Exactly one COMPLETE or ERROR event ends the stream. Must be called from
    a running event loop.
    """
    events: asyncio.Queue = asyncio.Queue()
    task = asyncio.get_running_loop().create_task(SitemapCrawler(session).run(sitemap_url, events))
    _running.add(task)
    task.add_done_callback(_running.discard)
    return events

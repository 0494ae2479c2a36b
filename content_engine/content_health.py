"""
Content-health analysis for existing site pages.

For each SitemapPage: fetch the live HTML, extract title and readable body
text, flag stale titles, then ask the AI for a 0-100 health score, an update
priority and a one-sentence justification. Results are cached per page URL
so re-running an analysis is cheap.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

import aiohttp

from content_engine.cache import ContentCache
from content_engine.concurrency import process_concurrently
from content_engine.fetcher import FetchError, fetch_with_relays
from content_engine.html_utils import count_words, extract_title, strip_boilerplate
from content_engine.json_extractor import parse_json
from content_engine.models import SitemapPage, UpdatePriority
from content_engine.prompts import TASK_HEALTH_ANALYZER, get_template
from content_engine.providers import TextGenerator

logger = logging.getLogger("content_health")

MIN_ANALYZABLE_WORDS = 100
DEFAULT_HEALTH_CONCURRENCY = 8
MAX_JUSTIFICATION_ERROR = 100

# Years that mark a title as dated
_STALE_YEAR_RE = re.compile(r"\b(201[5-9]|202[0-3])\b")


class ThinContentError(ValueError):
    pass


@dataclass
class HealthAnalysis:
    """Cached result for one page."""

    title: str
    word_count: int
    crawled_content: str
    is_stale: bool
    health_score: int
    update_priority: UpdatePriority
    justification: str

    def apply_to(self, page: SitemapPage) -> None:
        page.title = self.title
        page.word_count = self.word_count
        page.crawled_content = self.crawled_content
        page.is_stale = self.is_stale
        page.health_score = self.health_score
        page.update_priority = self.update_priority
        page.justification = self.justification


def is_stale_title(title: str, current_year: Optional[int] = None) -> bool:
    """True if *title* names a year between 2015 and 2023 that is already past."""
    match = _STALE_YEAR_RE.search(title or "")
    if not match:
        return False
    current_year = current_year or datetime.now().year
    return int(match.group(1)) < current_year


def _coerce_score(value) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid healthScore in response: {value!r}") from None
    return max(0, min(100, score))


class ContentHealthAnalyzer:
    """
    Scores existing pages for update priority.

    Parameters
    ----------
    text_provider : TextGenerator
        Provider for the health-analysis prompt (JSON mode).
    cache : ContentCache, optional
        Per-URL result cache, key ``health-analysis-<url>``.
    session : aiohttp.ClientSession, optional
        Shared session for page fetches.
    """

    def __init__(
        self,
        text_provider: TextGenerator,
        cache: Optional[ContentCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
        current_year: Optional[int] = None,
    ):
        self.text_provider = text_provider
        self.cache = cache if cache is not None else ContentCache()
        self._session = session
        self._current_year = current_year

    async def _fetch_page(self, url: str) -> str:
        try:
            resp = await fetch_with_relays(url, session=self._session)
        except FetchError as exc:
            raise FetchError(f"Failed to fetch page content: {exc}", url) from exc
        return resp.text()

    async def _score(self, body_text: str) -> tuple[int, UpdatePriority, str]:
        system, user = get_template(TASK_HEALTH_ANALYZER).render(body_text)
        raw = await self.text_provider.generate(system, user, json_mode=True, task=TASK_HEALTH_ANALYZER)
        parsed = parse_json(raw)
        if not isinstance(parsed, dict):
            raise ValueError("Health analysis response was not a JSON object.")

        score = _coerce_score(parsed.get("healthScore"))
        priority = UpdatePriority.parse(parsed.get("updatePriority")) or UpdatePriority.from_score(score)
        return score, priority, str(parsed.get("justification") or "")

    async def analyze_page(self, page: SitemapPage) -> SitemapPage:
        """
        Analyze one page in place and return it.

        Never raises for per-page failures: the page gets score 0, priority
        ``Error`` and the truncated error message as justification. Page
        metadata (title, word count, text, staleness) found before a
        failure is kept.
        """
        cache_key = self.cache.make_key("health-analysis", page.id)
        cached: Optional[HealthAnalysis] = self.cache.get(cache_key)
        if cached is not None:
            cached.apply_to(page)
            return page

        try:
            page_html = await self._fetch_page(page.id)
            title = html.unescape(extract_title(page_html))
            body_text = strip_boilerplate(page_html)
            word_count = count_words(body_text)
            is_stale = is_stale_title(title, self._current_year)

            page.title = title
            page.word_count = word_count
            page.crawled_content = body_text
            page.is_stale = is_stale

            if word_count < MIN_ANALYZABLE_WORDS:
                raise ThinContentError("Content is too thin for analysis.")

            score, priority, justification = await self._score(body_text)
            analysis = HealthAnalysis(
                title=title,
                word_count=word_count,
                crawled_content=body_text,
                is_stale=is_stale,
                health_score=score,
                update_priority=priority,
                justification=justification,
            )
            analysis.apply_to(page)
            self.cache.set(cache_key, analysis)
            logger.info("Health %d (%s) for %s", score, priority.value, page.id)

        except Exception as exc:
            logger.error("Failed to analyze content for %s: %s", page.id, exc)
            page.health_score = 0
            page.update_priority = UpdatePriority.ERROR
            page.justification = str(exc)[:MAX_JUSTIFICATION_ERROR]

        return page

    async def analyze_pages(
        self,
        pages: Sequence[SitemapPage],
        concurrency: int = DEFAULT_HEALTH_CONCURRENCY,
        on_progress: Optional[Callable[[int, int], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> List[SitemapPage]:
        """Analyze *pages* with bounded parallelism; returns the same list."""
        pages = list(pages)
        logger.info("Analyzing content health for %d page(s), concurrency=%d", len(pages), concurrency)
        await process_concurrently(
            pages,
            self.analyze_page,
            concurrency=concurrency,
            on_progress=on_progress,
            should_stop=should_stop,
        )
        return pages

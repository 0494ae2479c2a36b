"""
Link Integrity Engine.

Generated HTML carries internal links as placeholders::

    [INTERNAL_LINK slug="seo-guide" text="our SEO guide"]

Three passes turn them into real anchors, always in this order:

1. **Repair** - a placeholder whose slug is not a known page is re-pointed at
   the best-matching page by anchor text, or degraded to plain text.
2. **Quota** - if fewer than ``min_links`` placeholders remain, new ones are
   injected where titles of unlinked pages appear verbatim in the text.
3. **Resolution** - placeholders become ``<a href="...">`` tags pointing at
   each page's canonical URL.

No AI calls: matching is deterministic string and word-overlap scoring.

Usage:
    from content_engine.internal_linker import run_link_integrity

    html = run_link_integrity(html, pages, primary_keyword="seo basics", min_links=8)
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence, Set

from content_engine.models import INTERNAL_LINK_PATTERN, SitemapPage

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("internal_linker")
logger.setLevel(logging.DEBUG)

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_handler)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REPAIR_SCORE_THRESHOLD = 50.0
SCORE_EXACT_TITLE = 100.0
SCORE_TITLE_CONTAINS_ANCHOR = 60.0
SCORE_ANCHOR_CONTAINS_TITLE = 50.0

MIN_MEANINGFUL_WORD_LENGTH = 3
MIN_SEARCH_PHRASE_LENGTH = 11


def _escape_quotes(text: str) -> str:
    return text.replace('"', "&quot;")


def make_placeholder(slug: str, text: str) -> str:
    return f'[INTERNAL_LINK slug="{slug}" text="{_escape_quotes(text)}"]'


def count_link_placeholders(content: str) -> int:
    return len(INTERNAL_LINK_PATTERN.findall(content or ""))


def _meaningful_words(text: str) -> Set[str]:
    return {w for w in text.lower().split() if len(w) >= MIN_MEANINGFUL_WORD_LENGTH}


# ---------------------------------------------------------------------------
# Pass 1: repair
# ---------------------------------------------------------------------------


def score_page_match(anchor_text: str, page: SitemapPage) -> Optional[float]:
    """
    Relevance of *page* as a target for *anchor_text*.

    +100 exact title match, +60 title contains anchor, +50 anchor contains
    title, plus the mean of the anchor-side and title-side word-overlap
    percentages. Words shorter than 3 characters are ignored for overlap.

    Returns None for pages that cannot be scored (no slug, no title, or a
    title without any meaningful word).
    """
    if not page.slug or not page.title:
        return None

    anchor = anchor_text.lower()
    title = page.title.lower()
    title_words = _meaningful_words(title)
    if not title_words:
        return None

    score = 0.0
    if title == anchor:
        score += SCORE_EXACT_TITLE
    if anchor in title:
        score += SCORE_TITLE_CONTAINS_ANCHOR
    if title in anchor:
        score += SCORE_ANCHOR_CONTAINS_TITLE

    anchor_words = _meaningful_words(anchor)
    overlap = anchor_words & title_words
    if overlap:
        anchor_pct = len(overlap) / len(anchor_words) * 100
        title_pct = len(overlap) / len(title_words) * 100
        score += (anchor_pct + title_pct) / 2
    return score


def _best_match(anchor_text: str, pages: Sequence[SitemapPage]) -> tuple[Optional[SitemapPage], float]:
    best: Optional[SitemapPage] = None
    best_score = -1.0
    for page in pages:
        score = score_page_match(anchor_text, page)
        if score is not None and score > best_score:
            best, best_score = page, score
    return best, best_score


def validate_and_repair_internal_links(content: str, pages: Sequence[SitemapPage]) -> str:
    """Re-point or drop placeholders whose slug is not a known page."""
    if not content or not pages:
        return content

    known_slugs = {p.slug for p in pages if p.slug}

    def _repair(match: re.Match) -> str:
        slug, text = match.group(1), match.group(2)
        if slug in known_slugs:
            return match.group(0)

        logger.warning("[Link Repair] Unknown slug %r, repairing from anchor text %r", slug, text)
        page, score = _best_match(text, pages)
        if page is not None and score > REPAIR_SCORE_THRESHOLD:
            logger.info("[Link Repair] Best match %r (score %.2f)", page.slug, score)
            return make_placeholder(page.slug, text)

        logger.warning(
            "[Link Repair] No suitable match for %r (best score %.2f). Keeping text only.",
            slug, score,
        )
        return text

    return INTERNAL_LINK_PATTERN.sub(_repair, content)


# ---------------------------------------------------------------------------
# Pass 2: quota
# ---------------------------------------------------------------------------


def search_phrases(title: str) -> List[str]:
    """
    Phrases to look for in the body when injecting a link to *title*.

    Full title, then the title without its last word (titles over 4 words),
    then without its first word (titles over 3 words). Only phrases longer
    than 10 characters are kept, deduplicated, longest first.
    """
    words = title.split(" ")
    candidates = [title]
    if len(words) > 4:
        candidates.append(" ".join(words[:-1]))
    if len(words) > 3:
        candidates.append(" ".join(words[1:]))

    phrases: List[str] = []
    for phrase in candidates:
        if phrase not in phrases and len(phrase) >= MIN_SEARCH_PHRASE_LENGTH:
            phrases.append(phrase)
    return sorted(phrases, key=len, reverse=True)


def _phrase_pattern(phrase: str) -> re.Pattern:
    # Preceded by a tag end, whitespace or "(" and followed by a tag start,
    # whitespace or punctuation, i.e. plain text rather than inside a tag.
    return re.compile(rf"(?<=[>\s(])({re.escape(phrase)})(?=[<\s.,!?)])", re.IGNORECASE)


def _first_free_match(pattern: re.Pattern, content: str) -> Optional[re.Match]:
    """First match of *pattern* that does not fall inside an existing placeholder."""
    taken = [m.span() for m in INTERNAL_LINK_PATTERN.finditer(content)]
    for match in pattern.finditer(content):
        if not any(start <= match.start() < end for start, end in taken):
            return match
    return None


def enforce_internal_link_quota(
    content: str,
    pages: Sequence[SitemapPage],
    primary_keyword: str,
    min_links: int,
) -> str:
    """
    Inject placeholders until *content* carries at least *min_links*.

    Candidates are unlinked pages with titles of three or more words; the
    page whose title is the article's own primary keyword is skipped. Each
    candidate gets at most one link, at the first plain-text occurrence of
    its highest-priority phrase. A residual deficit is logged, not raised.
    """
    if not content or not pages:
        return content

    existing = INTERNAL_LINK_PATTERN.findall(content)
    deficit = min_links - len(existing)
    if deficit <= 0:
        return content

    logger.info("[Link Quota] Deficit detected, need %d more link(s)", deficit)
    linked_slugs = {slug for slug, _ in existing}
    own_title = (primary_keyword or "").strip().lower()

    for page in pages:
        if deficit <= 0:
            break
        if not page.slug or not page.title or page.slug in linked_slugs:
            continue
        if len(page.title.split(" ")) <= 2 or page.title.strip().lower() == own_title:
            continue

        for phrase in search_phrases(page.title):
            match = _first_free_match(_phrase_pattern(phrase), content)
            if match is None:
                continue
            anchor = match.group(1)
            logger.info("[Link Quota] Injected link to %r using anchor %r", page.slug, anchor)
            content = content[: match.start()] + make_placeholder(page.slug, anchor) + content[match.end():]
            linked_slugs.add(page.slug)
            deficit -= 1
            break

    if deficit > 0:
        logger.warning("[Link Quota] Could not meet the full link quota. %d link(s) still missing.", deficit)
    return content


# ---------------------------------------------------------------------------
# Pass 3: resolution
# ---------------------------------------------------------------------------


def process_internal_links(content: str, pages: Sequence[SitemapPage]) -> str:
    """
    Replace every placeholder with an anchor to the page's canonical URL.

    Placeholders with no matching page, including every placeholder when no
    pages are known at all, degrade to their anchor text.
    """
    if not content:
        return content

    pages_by_slug: Dict[str, SitemapPage] = {p.slug: p for p in pages or [] if p.slug}

    def _resolve(match: re.Match) -> str:
        slug, text = match.group(1), match.group(2)
        page = pages_by_slug.get(slug)
        if page is not None and page.id:
            logger.debug("[Link Resolve] %r -> %s", slug, page.id)
            return f'<a href="{page.id}">{_escape_quotes(text)}</a>'
        if pages_by_slug:
            logger.warning("[Link Resolve] No page for slug %r. Replacing with plain text.", slug)
        return text

    return INTERNAL_LINK_PATTERN.sub(_resolve, content)


def run_link_integrity(
    content: str,
    pages: Sequence[SitemapPage],
    primary_keyword: str,
    min_links: int,
) -> str:
    """Repair, enforce quota, then resolve. Output carries no placeholders."""
    content = validate_and_repair_internal_links(content, pages)
    content = enforce_internal_link_quota(content, pages, primary_keyword, min_links)
    return process_internal_links(content, pages)

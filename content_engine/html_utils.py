"""
Regex-based HTML helpers: tag stripping, text extraction, slugs and
video-id parsing. No DOM, no third-party parser.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger("html_utils")

# Blocks whose text is navigation/boilerplate rather than article body
BOILERPLATE_TAGS = ("head", "script", "style", "nav", "footer", "header", "aside")

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>[\s\S]*?</script\s*>", re.IGNORECASE)
_YOUTUBE_ID_RE = re.compile(r"^.*(youtu\.be/|v/|u/\w/|embed/|watch\?v=|&v=)([^#&?]*).*")


def strip_tags(html: str) -> str:
    """Remove all tags and collapse whitespace."""
    text = _TAG_RE.sub(" ", html or "")
    return _WS_RE.sub(" ", text).strip()


def strip_boilerplate(html: str) -> str:
    """Extract readable body text from a full HTML page.

    Drops the head and any script/style/nav/footer/header/aside blocks, then strips the
    remaining tags and collapses whitespace.
    """
    text = html or ""
    for tag in BOILERPLATE_TAGS:
        text = re.sub(rf"<{tag}\b[\s\S]*?</{tag}>", "", text, flags=re.IGNORECASE)
    return strip_tags(text)


def count_words(html: str) -> int:
    text = strip_tags(html)
    return len([w for w in text.split(" ") if w])


def extract_title(html: str, default: str = "Untitled Page") -> str:
    match = re.search(r"<title>([\s\S]*?)</title>", html or "", re.IGNORECASE)
    return match.group(1).strip() if match else default


def slugify(text: str) -> str:
    """Lowercase and collapse runs of non-word characters into hyphens."""
    slug = re.sub(r"[\W_]+", "-", (text or "").lower())
    return slug.strip("-")


def extract_slug_from_url(url: str) -> str:
    """Last path segment of *url* without trailing slash or file extension."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        logger.warning("Could not parse URL to extract slug: %s", url)
        return url.rstrip("/").split("/")[-1]
    path = parsed.path
    if path.endswith("/") and len(path) > 1:
        path = path[:-1]
    last_segment = path[path.rfind("/") + 1:]
    return re.sub(r"\.[a-zA-Z0-9]{2,5}$", "", last_segment)


def extract_youtube_id(url: str) -> Optional[str]:
    """11-character YouTube video id from any common URL form."""
    match = _YOUTUBE_ID_RE.match(url or "")
    if match and len(match.group(2)) == 11:
        return match.group(2)
    return None


def escape_regex(text: str) -> str:
    return re.escape(text)


def strip_script_blocks(html: str) -> str:
    return _SCRIPT_BLOCK_RE.sub("", html or "")


def clean_html_response(html: str) -> str:
    """
    Clean up a model's HTML fragment.

    Removes markdown code fences, any non-HTML preamble or trailing chatter,
    and script blocks (schema markup is carried out-of-band).
    """
    html = (html or "").strip()

    html = re.sub(r"^```(?:html)?\s*\n?", "", html)
    html = re.sub(r"\n?```\s*$", "", html)

    first_tag = re.search(r"<(?:h[1-6]|p|div|ul|ol|table|blockquote)", html, re.IGNORECASE)
    if first_tag and first_tag.start() > 0:
        preamble = html[: first_tag.start()].strip()
        if preamble and not preamble.startswith("<"):
            logger.debug("Removing non-HTML preamble (%d chars)", len(preamble))
            html = html[first_tag.start():]

    last_tag = None
    for match in re.finditer(r"</(?:h[1-6]|p|div|ul|ol|table|blockquote)>", html, re.IGNORECASE):
        last_tag = match
    if last_tag:
        end_pos = last_tag.end()
        trailing = html[end_pos:].strip()
        # Placeholders are plain text too, keep them
        if trailing and not trailing.startswith("<") and not trailing.startswith("["):
            logger.debug("Removing non-HTML trailing text (%d chars)", len(trailing))
            html = html[:end_pos]

    return strip_script_blocks(html).strip()

"""Tests for regex HTML helpers."""
from __future__ import annotations

import pytest

from content_engine.html_utils import (
    clean_html_response,
    count_words,
    extract_slug_from_url,
    extract_title,
    extract_youtube_id,
    slugify,
    strip_boilerplate,
    strip_tags,
)


class TestText:

    @pytest.mark.unit
    def test_strip_tags_collapses_whitespace(self):
        assert strip_tags("<p>Hello\n  <b>world</b></p>") == "Hello world"

    @pytest.mark.unit
    def test_count_words_ignores_markup(self):
        assert count_words("<h2>Two words</h2><p>and three more</p>") == 5

    @pytest.mark.unit
    def test_count_words_empty(self):
        assert count_words("") == 0

    @pytest.mark.unit
    def test_strip_boilerplate(self):
        page = (
            "<html><head><style>p{}</style><script>var x=1;</script></head>"
            "<body><header>Site Name</header><nav>Home | Blog</nav>"
            "<article><p>Actual body text.</p></article>"
            "<aside>Related</aside><footer>Copyright</footer></body></html>"
        )
        assert strip_boilerplate(page) == "Actual body text."

    @pytest.mark.unit
    def test_extract_title(self):
        assert extract_title("<title> My Post </title>") == "My Post"
        assert extract_title("<p>No title</p>") == "Untitled Page"


class TestSlugs:

    @pytest.mark.unit
    def test_slugify(self):
        assert slugify("How to Brew Espresso at Home!") == "how-to-brew-espresso-at-home"

    @pytest.mark.unit
    @pytest.mark.parametrize("url, slug", [
        ("https://example.com/blog/my-post/", "my-post"),
        ("https://example.com/blog/my-post", "my-post"),
        ("https://example.com/page.html", "page"),
        ("https://example.com/", ""),
    ])
    def test_extract_slug_from_url(self, url, slug):
        assert extract_slug_from_url(url) == slug


class TestYoutube:

    @pytest.mark.unit
    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ",
    ])
    def test_extracts_id(self, url):
        assert extract_youtube_id(url) == "dQw4w9WgXcQ"

    @pytest.mark.unit
    def test_rejects_non_video(self):
        assert extract_youtube_id("https://example.com/video") is None


class TestCleanHtmlResponse:

    @pytest.mark.unit
    def test_removes_fences_and_chatter(self):
        raw = "```html\nSure, here is the section:\n<p>Body.</p>\nLet me know if you need more.\n```"
        assert clean_html_response(raw) == "<p>Body.</p>"

    @pytest.mark.unit
    def test_removes_script_blocks(self):
        raw = '<p>Body.</p><script type="application/ld+json">{"@type": "Article"}</script>'
        assert "<script" not in clean_html_response(raw)

    @pytest.mark.unit
    def test_keeps_trailing_placeholder(self):
        raw = '<p>Body.</p>\n[INTERNAL_LINK slug="a" text="b"]'
        assert clean_html_response(raw).endswith('[INTERNAL_LINK slug="a" text="b"]')

"""Tests for the link integrity passes."""
from __future__ import annotations

import pytest

from content_engine.internal_linker import (
    count_link_placeholders,
    enforce_internal_link_quota,
    make_placeholder,
    process_internal_links,
    run_link_integrity,
    score_page_match,
    search_phrases,
    validate_and_repair_internal_links,
)
from content_engine.models import INTERNAL_LINK_PATTERN, SitemapPage

BODY = (
    "<p>Start with keyword research basics explained simply. "
    "Then read the complete seo guide today.</p>"
)


class TestScoring:

    @pytest.mark.unit
    def test_exact_title_scores_highest(self, sitemap_pages):
        exact = score_page_match("The Complete SEO Guide", sitemap_pages[0])
        partial = score_page_match("SEO Guide", sitemap_pages[0])
        assert exact > partial > 50

    @pytest.mark.unit
    def test_unscorable_pages(self):
        assert score_page_match("x", SitemapPage(id="u", title="", slug="s")) is None
        assert score_page_match("x", SitemapPage(id="u", title="A b", slug="s")) is None

    @pytest.mark.unit
    def test_search_phrases(self):
        assert search_phrases("Link Building Strategies That Work") == [
            "Link Building Strategies That Work",
            "Link Building Strategies That",
            "Building Strategies That Work",
        ]
        assert search_phrases("About") == []


class TestRepair:

    @pytest.mark.unit
    def test_unknown_slug_repointed(self, sitemap_pages):
        content = f"<p>See {make_placeholder('seo-tips', 'SEO Guide')}.</p>"
        repaired = validate_and_repair_internal_links(content, sitemap_pages)
        assert INTERNAL_LINK_PATTERN.search(repaired).groups() == ("seo-guide", "SEO Guide")

    @pytest.mark.unit
    def test_no_match_degrades_to_text(self, sitemap_pages):
        content = f"<p>Try {make_placeholder('espresso', 'espresso machines')}.</p>"
        assert validate_and_repair_internal_links(content, sitemap_pages) == "<p>Try espresso machines.</p>"

    @pytest.mark.unit
    def test_known_slug_untouched(self, sitemap_pages):
        content = make_placeholder("about", "who we are")
        assert validate_and_repair_internal_links(content, sitemap_pages) == content


class TestQuota:

    @pytest.mark.unit
    def test_injects_at_plain_text_occurrences(self, sitemap_pages):
        result = enforce_internal_link_quota(BODY, sitemap_pages, "espresso", min_links=2)
        slugs = [slug for slug, _ in INTERNAL_LINK_PATTERN.findall(result)]
        assert sorted(slugs) == ["keyword-research-basics", "seo-guide"]
        assert 'text="the complete seo guide"' in result

    @pytest.mark.unit
    def test_skips_own_title(self, sitemap_pages):
        result = enforce_internal_link_quota(BODY, sitemap_pages, "The Complete SEO Guide", min_links=2)
        assert [s for s, _ in INTERNAL_LINK_PATTERN.findall(result)] == ["keyword-research-basics"]

    @pytest.mark.unit
    def test_already_linked_page_not_repeated(self, sitemap_pages):
        content = BODY + f"<p>{make_placeholder('seo-guide', 'guide')}</p>"
        result = enforce_internal_link_quota(content, sitemap_pages, "espresso", min_links=5)
        assert [s for s, _ in INTERNAL_LINK_PATTERN.findall(result)].count("seo-guide") == 1
        assert count_link_placeholders(result) == 2

    @pytest.mark.unit
    def test_quota_met_is_noop(self, sitemap_pages):
        assert enforce_internal_link_quota(BODY, sitemap_pages, "espresso", min_links=0) == BODY

    @pytest.mark.unit
    def test_does_not_match_inside_tags(self, sitemap_pages):
        content = '<p><img alt="The Complete SEO Guide"></p>'
        assert enforce_internal_link_quota(content, sitemap_pages, "x", min_links=1) == content


COFFEE_TITLES = {
    "cold-brew": "Cold Brew Coffee Ratios",
    "pour-over": "Pour Over Coffee Technique",
    "french-press": "French Press Brewing Guide",
    "grind-size": "Espresso Grind Size Chart",
    "milk-frothing": "Milk Frothing For Beginners",
    "bean-storage": "Coffee Bean Storage Tips",
    "descaling": "Descaling Your Espresso Machine",
    "home-roasting": "Home Roasting Coffee Beans",
    "latte-art": "Latte Art Step By Step",
}


@pytest.fixture
def coffee_pages():
    return [
        SitemapPage(id=f"https://example.com/{slug}/", title=title, slug=slug)
        for slug, title in COFFEE_TITLES.items()
    ]


@pytest.fixture
def coffee_body():
    linked = (
        f"<p>Start with {make_placeholder('cold-brew', 'cold brew ratios')} "
        f"and {make_placeholder('pour-over', 'pour over technique')}.</p>"
    )
    mentions = "".join(
        f"<p>We cover {title.lower()} in detail here.</p>"
        for slug, title in COFFEE_TITLES.items()
        if slug not in ("cold-brew", "pour-over")
    )
    return linked + mentions


class TestQuotaFromTwoLinks:

    @pytest.mark.unit
    def test_quota_fills_to_minimum(self, coffee_pages, coffee_body):
        result = enforce_internal_link_quota(coffee_body, coffee_pages, "espresso at home", min_links=8)
        assert count_link_placeholders(coffee_body) == 2
        assert count_link_placeholders(result) == 8
        slugs = [slug for slug, _ in INTERNAL_LINK_PATTERN.findall(result)]
        assert len(set(slugs)) == 8

    @pytest.mark.unit
    def test_full_run_ends_with_at_least_eight_anchors(self, coffee_pages, coffee_body):
        result = run_link_integrity(coffee_body, coffee_pages, "espresso at home", min_links=8)
        assert "[INTERNAL_LINK" not in result
        assert result.count('<a href="https://example.com/') >= 8
        assert '<a href="https://example.com/cold-brew/">cold brew ratios</a>' in result


class TestResolution:

    @pytest.mark.unit
    def test_placeholders_become_anchors(self, sitemap_pages):
        content = make_placeholder("link-building", "link strategies")
        assert process_internal_links(content, sitemap_pages) == (
            '<a href="https://example.com/link-building/">link strategies</a>'
        )

    @pytest.mark.unit
    def test_no_pages_degrades_everything(self):
        content = f"<p>{make_placeholder('a', 'first')} and {make_placeholder('b', 'second')}</p>"
        assert process_internal_links(content, []) == "<p>first and second</p>"

    @pytest.mark.unit
    def test_full_run_leaves_no_placeholders(self, sitemap_pages):
        content = BODY + f"<p>{make_placeholder('bogus', 'zzz qqq')}</p>"
        result = run_link_integrity(content, sitemap_pages, "espresso", min_links=8)
        assert "[INTERNAL_LINK" not in result
        assert '<a href="https://example.com/seo-guide/">the complete seo guide</a>' in result
        assert '<a href="https://example.com/keyword-research-basics/">' in result
        assert "<p>zzz qqq</p>" in result

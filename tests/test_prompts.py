"""Tests for prompt templates."""
from __future__ import annotations

import pytest

from content_engine.models import SitemapPage
from content_engine.prompts import (
    GEO_TARGET_TOKEN,
    MAX_LINKING_PAGES,
    MAX_REWRITE_SOURCE_CHARS,
    MAX_SERP_SNIPPET_LENGTH,
    PROMPT_TEMPLATES,
    TASK_HEALTH_ANALYZER,
    TASK_META_AND_OUTLINE,
    TASK_WRITE_FAQ,
    TASK_WRITE_SECTION,
    cluster_planner_system,
    get_template,
)


class TestRegistry:

    @pytest.mark.unit
    def test_every_template_renders(self):
        for name, template in PROMPT_TEMPLATES.items():
            assert template.name == name
            assert template.system_instruction

    @pytest.mark.unit
    def test_unknown_template(self):
        with pytest.raises(KeyError, match="Unknown prompt template"):
            get_template("summarize_everything")


class TestClusterPlanner:

    @pytest.mark.unit
    def test_geo_target_inserted(self):
        system = cluster_planner_system("Austin, TX")
        assert 'geo-targeted for "Austin, TX"' in system
        assert GEO_TARGET_TOKEN not in system

    @pytest.mark.unit
    def test_geo_token_removed_without_target(self):
        system = cluster_planner_system(None)
        assert GEO_TARGET_TOKEN not in system
        assert "geo-targeted" not in system


class TestMetaAndOutline:

    @pytest.mark.unit
    def test_minimal_prompt(self):
        _, user = get_template(TASK_META_AND_OUTLINE).render("espresso at home")
        assert '"espresso at home"' in user
        assert "REWRITE MANDATE" not in user
        assert "serp_data" not in user

    @pytest.mark.unit
    def test_rewrite_source_truncated(self):
        original = "x" * (MAX_REWRITE_SOURCE_CHARS + 500)
        _, user = get_template(TASK_META_AND_OUTLINE).render("kw", None, None, None, original)
        assert "REWRITE MANDATE" in user
        assert "x" * MAX_REWRITE_SOURCE_CHARS in user
        assert "x" * (MAX_REWRITE_SOURCE_CHARS + 1) not in user

    @pytest.mark.unit
    def test_serp_snippets_truncated(self):
        serp = [{"title": "T", "link": "https://a.com", "snippet": "s" * 500}]
        _, user = get_template(TASK_META_AND_OUTLINE).render("kw", ["a", "b"], serp)
        assert "s" * MAX_SERP_SNIPPET_LENGTH in user
        assert "s" * (MAX_SERP_SNIPPET_LENGTH + 1) not in user
        assert '["a", "b"]' in user

    @pytest.mark.unit
    def test_linking_targets_capped(self):
        pages = [
            SitemapPage(id=f"https://example.com/p{i}/", title=f"Page {i}", slug=f"p{i}")
            for i in range(MAX_LINKING_PAGES + 10)
        ]
        _, user = get_template(TASK_META_AND_OUTLINE).render("kw", existing_pages=pages)
        assert f'"p{MAX_LINKING_PAGES - 1}"' in user
        assert f'"p{MAX_LINKING_PAGES}"' not in user


class TestWriters:

    @pytest.mark.unit
    def test_section_prompt(self, sitemap_pages):
        system, user = get_template(TASK_WRITE_SECTION).render(
            "seo", "The SEO Handbook", "Why Links Matter", sitemap_pages
        )
        assert "[INTERNAL_LINK" in system
        assert '"Why Links Matter"' in user
        assert "keyword-research-basics" in user

    @pytest.mark.unit
    def test_faq_prompt(self):
        _, user = get_template(TASK_WRITE_FAQ).render("Is SEO dead?")
        assert user == 'Question: "Is SEO dead?"'

    @pytest.mark.unit
    def test_health_prompt_wraps_content(self):
        _, user = get_template(TASK_HEALTH_ANALYZER).render("Some page text")
        assert "<content>\nSome page text\n</content>" in user

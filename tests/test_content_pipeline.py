"""Tests for the four-stage content pipeline, driven by a scripted provider."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from content_engine.ai_gateway import AIProviderError
from content_engine.cache import ContentCache
from content_engine.config import EngineConfig, QualityThresholds
from content_engine.content_pipeline import (
    STOPPED_STATUS,
    ArticlePlan,
    ContentPipeline,
    build_references_html,
    item_for_rewrite,
    item_from_keyword,
    pillar_from_page,
    video_embed_html,
)
from content_engine.models import ItemStatus, ItemType, SitemapPage
from content_engine.prompts import (
    TASK_CLUSTER_PLANNER,
    TASK_META_AND_OUTLINE,
    TASK_SEMANTIC_KEYWORDS,
    TASK_WRITE_FAQ,
    TASK_WRITE_SECTION,
)

HEADINGS = [f"Heading {i}" for i in range(1, 11)]
QUESTIONS = [f"Question {i}?" for i in range(1, 9)]

# 231 words per section, ten sections land inside the 2200-2800 band
SECTION_HTML = "<p>" + "Brew the coffee slowly and taste it. " * 33 + "</p>"
FAQ_HTML = "<p>Yes, and it gets easier with practice every single day.</p>"


def _outline(**overrides):
    outline = {
        "title": "Espresso at Home",
        "slug": "espresso-at-home",
        "metaDescription": "Pull great shots at home.",
        "outline": HEADINGS,
        "keyTakeaways": [f"Takeaway number {i}" for i in range(1, 9)],
        "faqSection": [{"question": q} for q in QUESTIONS],
        "introduction": '<p>Good espresso starts with fresh beans.</p><script type="application/ld+json">{}</script>',
        "conclusion": "<p>Now go pull a shot.</p>",
        "jsonLdSchema": {"@type": "Article"},
    }
    outline.update(overrides)
    return json.dumps(outline)


def _script(**overrides):
    script = {
        TASK_SEMANTIC_KEYWORDS: '{"semanticKeywords": ["crema", "tamping"]}',
        TASK_META_AND_OUTLINE: _outline(),
        TASK_WRITE_SECTION: SECTION_HTML,
        TASK_WRITE_FAQ: FAQ_HTML,
    }
    script.update(overrides)
    return script


def _serper():
    serper = MagicMock()
    serper.search = AsyncMock(return_value=[
        {"title": "Espresso Basics", "link": "https://coffee.example.org/basics", "snippet": "s"},
        {"title": "No link here"},
    ])
    serper.videos = AsyncMock(return_value=[
        {"title": "Pulling a shot", "link": "https://www.youtube.com/watch?v=AAAAAAAAAAA"},
        {"title": "Dialing in", "link": "https://www.youtube.com/watch?v=BBBBBBBBBBB"},
    ])
    return serper


def _image_provider(result="data:image/png;base64,AAAA"):
    provider = MagicMock()
    provider.name = "stub"
    provider.generate_image = AsyncMock(return_value=result)
    return provider


class TestArticlePlan:

    @pytest.mark.unit
    def test_from_dict_accepts_string_questions(self):
        plan = ArticlePlan.from_dict({
            "outline": ["A", "", 3],
            "faqSection": ["Q1?", {"question": "Q2?"}, {"answer": "no question"}],
            "conclusion": "<p>End</p><script>x()</script>",
        })
        assert plan.headings == ["A", "3"]
        assert plan.faq_questions == ["Q1?", "Q2?"]
        assert plan.conclusion == "<p>End</p>"
        assert plan.key_takeaways == []


class TestItemFactories:

    @pytest.mark.unit
    def test_item_from_keyword(self):
        item = item_from_keyword("  espresso at home ")
        assert item.id == item.title == "espresso at home"
        assert item.type == ItemType.STANDARD
        assert item.status == ItemStatus.IDLE

    @pytest.mark.unit
    def test_rewrite_and_pillar(self):
        page = SitemapPage(
            id="https://example.com/old-post/", title="Old Post", slug="old-post",
            crawled_content="old text",
        )
        rewrite = item_for_rewrite(page)
        assert rewrite.is_rewrite
        assert rewrite.original_url == "https://example.com/old-post/"
        assert rewrite.crawled_content == "old text"
        assert rewrite.status_text == "Ready to Rewrite"

        pillar = pillar_from_page(page)
        assert pillar.is_pillar
        assert not pillar.is_rewrite
        assert pillar.status_text == "Ready to Generate"


class TestHtmlFragments:

    @pytest.mark.unit
    def test_references_skip_incomplete_entries(self):
        html = build_references_html([
            {"title": "A", "link": "https://a.com"},
            {"title": "B"},
        ])
        assert html.startswith("<h2>References</h2><ul>")
        assert html.count("<li>") == 1
        assert 'href="https://a.com"' in html

    @pytest.mark.unit
    def test_references_without_data(self):
        assert build_references_html(None) == "<h2>References</h2><ul></ul>"

    @pytest.mark.unit
    def test_video_title_escaped(self):
        html = video_embed_html({"embedUrl": "https://www.youtube.com/embed/AAAAAAAAAAA", "title": 'Say "hi"'})
        assert 'title="Say &quot;hi&quot;"' in html


class TestGenerateItem:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_run(self, scripted_provider, engine_config, sitemap_pages):
        provider = scripted_provider(_script())
        updates = []
        pipeline = ContentPipeline(
            engine_config,
            provider,
            image_providers=[_image_provider()],
            serper=_serper(),
            existing_pages=sitemap_pages,
            on_update=lambda item: updates.append(item.status_text),
        )
        item = item_from_keyword("espresso at home")

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.DONE, item.status_text
        assert item.status_text == "Completed"
        content = item.generated_content
        assert content.title == "Espresso at Home"
        assert content.primary_keyword == "espresso at home"
        assert content.semantic_keywords == ["crema", "tamping"]
        assert content.json_ld_schema == {"@type": "Article"}
        assert not content.has_unresolved_placeholders()

        body = content.content
        assert "<script" not in body
        assert body.count("<h2>Heading") == 10
        assert "<h2>Frequently Asked Questions</h2>" in body
        assert body.count("<h3>Question") == 8
        assert body.index("Heading 3</h2>") < body.index("embed/AAAAAAAAAAA") < body.index("Heading 4</h2>")
        assert body.index("Heading 7</h2>") < body.index("embed/BBBBBBBBBBB") < body.index("Heading 8</h2>")
        assert body.count("<figure") == 2
        assert all(d.generated_image_src for d in content.image_details)
        assert 'href="https://coffee.example.org/basics"' in body
        assert body.index("Now go pull a shot.") < body.index("<h2>References</h2>")

        tasks = provider.tasks()
        assert tasks[:2] == [TASK_SEMANTIC_KEYWORDS, TASK_META_AND_OUTLINE]
        assert tasks.count(TASK_WRITE_SECTION) == 10
        assert tasks.count(TASK_WRITE_FAQ) == 8

        assert updates[0] == "Initializing..."
        assert "Stage 1/4: Fetching SERP Data..." in updates
        assert "Stage 3/4: Writing Section 10/10" in updates
        assert "Stage 4/4: Generating Image 2/2..." in updates
        assert updates[-1] == "Completed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_without_images_placeholders_are_stripped(self, scripted_provider, engine_config):
        pipeline = ContentPipeline(engine_config, scripted_provider(_script()))
        item = item_from_keyword("espresso at home")

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.DONE, item.status_text
        assert "PLACEHOLDER" not in item.generated_content.content
        assert "<figure" not in item.generated_content.content

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_image_leaves_marker(self, scripted_provider, engine_config):
        pipeline = ContentPipeline(
            engine_config, scripted_provider(_script()), image_providers=[_image_provider(None)],
        )
        item = item_from_keyword("espresso at home")

        await pipeline.generate_item(item)

        assert "<!-- Image generation failed for prompt:" in item.generated_content.content
        assert not item.generated_content.has_unresolved_placeholders()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rewrite_sends_original_content(self, scripted_provider, engine_config):
        provider = scripted_provider(_script())
        pipeline = ContentPipeline(engine_config, provider)
        page = SitemapPage(id="https://example.com/old/", title="Old Espresso Tips", slug="old",
                           crawled_content="Outdated espresso advice.")

        await pipeline.generate_item(item_for_rewrite(page))

        outline_prompt = next(user for task, user, _ in provider.calls if task == TASK_META_AND_OUTLINE)
        assert "Outdated espresso advice." in outline_prompt

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_short_content_is_kept_for_review(self, scripted_provider, engine_config):
        provider = scripted_provider(_script(**{TASK_WRITE_SECTION: "<p>Too short.</p>"}))
        seen = []
        pipeline = ContentPipeline(
            engine_config, provider,
            on_update=lambda i: seen.append((i.status, i.generated_content)),
        )
        item = item_from_keyword("espresso at home")

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.ERROR
        assert item.status_text.startswith("Quality Check Failed: CONTENT TOO SHORT:")
        assert "<h2>Heading 1</h2>" in item.generated_content.content
        last_status, last_content = seen[-1]
        assert last_status == ItemStatus.ERROR
        assert last_content is item.generated_content

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pillar_uses_long_band(self, scripted_provider, engine_config):
        pipeline = ContentPipeline(engine_config, scripted_provider(_script()))
        item = item_from_keyword("espresso at home", ItemType.PILLAR)

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.ERROR
        assert "minimum 3500 required" in item.status_text

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_outline_sets_error(self, scripted_provider, engine_config):
        provider = scripted_provider(_script(**{TASK_META_AND_OUTLINE: "I cannot help with that."}))
        pipeline = ContentPipeline(engine_config, provider)
        item = item_from_keyword("espresso at home")

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.ERROR
        assert item.status_text.startswith("Error: ")
        assert item.status_text.endswith("...")
        assert item.generated_content is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_semantic_keyword_failure_is_not_fatal(self, scripted_provider, engine_config):
        provider = scripted_provider(_script(**{TASK_SEMANTIC_KEYWORDS: AIProviderError("quota", status_code=429)}))
        pipeline = ContentPipeline(engine_config, provider)
        item = item_from_keyword("espresso at home")

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.DONE, item.status_text
        assert item.generated_content.semantic_keywords == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_semantic_keywords_cached_per_title(self, scripted_provider, engine_config):
        provider = scripted_provider(_script())
        pipeline = ContentPipeline(engine_config, provider)

        await pipeline.generate_item(item_from_keyword("espresso at home"))
        await pipeline.generate_item(item_from_keyword("espresso at home"))

        assert provider.tasks().count(TASK_SEMANTIC_KEYWORDS) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_shared_cache_spans_pipelines(self, scripted_provider, engine_config):
        provider = scripted_provider(_script())
        cache = ContentCache()

        await ContentPipeline(engine_config, provider, cache=cache).generate_item(item_from_keyword("espresso at home"))
        await ContentPipeline(engine_config, provider, cache=cache).generate_item(item_from_keyword("espresso at home"))

        assert provider.tasks().count(TASK_SEMANTIC_KEYWORDS) == 1
        assert len(cache) > 0


class TestStop:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_during_sections(self, scripted_provider, engine_config):
        item = item_from_keyword("espresso at home")
        pipeline = None

        def first_section(system, user):
            pipeline.stop(item.id)
            return SECTION_HTML

        provider = scripted_provider(_script(**{TASK_WRITE_SECTION: first_section}))
        pipeline = ContentPipeline(engine_config, provider)

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.IDLE
        assert item.status_text == STOPPED_STATUS
        assert item.generated_content is None
        assert provider.tasks().count(TASK_WRITE_SECTION) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_error_after_stop_is_ignored(self, scripted_provider, engine_config):
        item = item_from_keyword("espresso at home")
        pipeline = None

        def failing_outline(system, user):
            pipeline.stop(item.id)
            raise AIProviderError("server exploded", status_code=500)

        provider = scripted_provider(_script(**{TASK_META_AND_OUTLINE: failing_outline}))
        pipeline = ContentPipeline(engine_config, provider)

        await pipeline.generate_item(item)

        assert item.status == ItemStatus.IDLE
        assert item.status_text == STOPPED_STATUS

    @pytest.mark.unit
    def test_stop_unknown_item_is_noop(self, scripted_provider, engine_config):
        pipeline = ContentPipeline(engine_config, scripted_provider())
        pipeline.stop("not running")


class TestBatch:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, scripted_provider, engine_config):
        def outline(system, user):
            if "Broken Topic" in user:
                raise AIProviderError("bad request", status_code=400)
            return _outline()

        pipeline = ContentPipeline(engine_config, scripted_provider(_script(**{TASK_META_AND_OUTLINE: outline})))
        items = [item_from_keyword("Broken Topic"), item_from_keyword("espresso at home")]
        progress = []

        await pipeline.generate_batch(items, concurrency=2, on_progress=lambda done, total: progress.append(done))

        assert items[0].status == ItemStatus.ERROR
        assert items[1].status == ItemStatus.DONE
        assert progress[-1] == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stop_all_skips_queued_items(self, scripted_provider, engine_config):
        pipeline = None

        def outline(system, user):
            pipeline.stop()
            return _outline()

        pipeline = ContentPipeline(engine_config, scripted_provider(_script(**{TASK_META_AND_OUTLINE: outline})))
        items = [item_from_keyword("first"), item_from_keyword("second"), item_from_keyword("third")]

        await pipeline.generate_batch(items, concurrency=1)

        assert items[0].status == ItemStatus.IDLE
        assert items[0].status_text == STOPPED_STATUS
        assert items[1].status_text == "Not started"
        assert items[2].status_text == "Not started"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_defaults_to_idle_items(self, scripted_provider):
        config = EngineConfig(thresholds=QualityThresholds(min_words=0))
        pipeline = ContentPipeline(config, scripted_provider(_script()))
        pipeline.items.replace_all([item_from_keyword("espresso at home")])

        batch = await pipeline.generate_batch()

        assert [i.status for i in batch] == [ItemStatus.DONE]


class TestPlanCluster:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_plan_replaces_items(self, scripted_provider):
        systems = []

        def planner(system, user):
            systems.append(system)
            return '```json\n{"pillarTitle": "Home Espresso Guide", "clusterTitles": ["How to Tamp?", "", 7]}\n```'

        config = EngineConfig(geo_target="Austin, TX")
        pipeline = ContentPipeline(config, scripted_provider({TASK_CLUSTER_PLANNER: planner}))
        pipeline.items.replace_all([item_from_keyword("old")])

        items = await pipeline.plan_cluster("home espresso")

        assert [(i.title, i.type) for i in items] == [
            ("Home Espresso Guide", ItemType.PILLAR),
            ("How to Tamp?", ItemType.CLUSTER),
        ]
        assert len(pipeline.items) == 2
        assert pipeline.items.get("old") is None
        assert 'geo-targeted for "Austin, TX"' in systems[0]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_pillar_raises(self, scripted_provider, engine_config):
        pipeline = ContentPipeline(engine_config, scripted_provider({TASK_CLUSTER_PLANNER: '{"clusterTitles": []}'}))
        with pytest.raises(ValueError, match="pillarTitle"):
            await pipeline.plan_cluster("home espresso")


class TestFromConfig:

    @pytest.mark.unit
    def test_requires_text_key(self):
        with pytest.raises(ValueError, match="not initialized"):
            ContentPipeline.from_config(EngineConfig(ai_provider="openai"))

"""
Content Assembly Pipeline.

Turns a ContentItem (a keyword, a planned pillar/cluster title, or an
existing page to rewrite) into a finished GeneratedContent in four stages:

1. Keyword intelligence: SERP results, unique YouTube videos and semantic
   keywords (all cached per title).
2. Outline and metadata: one JSON call, normalized so missing fields never
   fail the run.
3. Section-by-section writing plus FAQ answers, with images and videos
   interleaved at fixed section indices.
4. Post-processing: quality gates, link integrity, video correction,
   references list and image generation.

Each item moves ``idle -> generating -> done | error``. Cancellation is
cooperative: a per-item CancellationToken is checked at every stage entry
and before every section or FAQ call. A stopped item is left ``idle``.

Usage:
    from content_engine.config import load_config
    from content_engine.content_pipeline import ContentPipeline

    pipeline = ContentPipeline.from_config(load_config())
    items = await pipeline.plan_cluster("home espresso")
    await pipeline.generate_batch(items)
"""

from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from content_engine.cache import ContentCache
from content_engine.concurrency import process_concurrently
from content_engine.config import EngineConfig
from content_engine.html_utils import clean_html_response, strip_script_blocks
from content_engine.internal_linker import run_link_integrity
from content_engine.json_extractor import parse_json
from content_engine.models import (
    IMAGE_PLACEHOLDER_PATTERN,
    REFERENCES_PLACEHOLDER,
    ContentItem,
    GeneratedContent,
    ImageDetail,
    ItemCollection,
    ItemStatus,
    ItemType,
    SitemapPage,
)
from content_engine.normalizer import normalize_generated_content
from content_engine.prompts import (
    TASK_CLUSTER_PLANNER,
    TASK_META_AND_OUTLINE,
    TASK_SEMANTIC_KEYWORDS,
    TASK_WRITE_FAQ,
    TASK_WRITE_SECTION,
    cluster_planner_system,
    get_template,
)
from content_engine.providers import (
    ImageGenerator,
    TextGenerator,
    build_image_providers,
    build_text_provider,
    generate_image_with_fallback,
)
from content_engine.quality_gates import (
    ContentTooShortError,
    check_human_writing_score,
    enforce_unique_video_embeds,
    enforce_word_count,
    normalize_video_embed_size,
    word_count_band,
)
from content_engine.serp import SerperClient, fetch_serp_intelligence

logger = logging.getLogger("content_pipeline")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STOPPED_STATUS = "Stopped by user"
MAX_REFERENCES = 8
MAX_ERROR_DETAIL = 100

# Fixed interleaving positions (0-based outline index)
FIRST_VIDEO_AFTER_SECTION = 2
SECOND_IMAGE_AFTER_SECTION = 4
SECOND_VIDEO_AFTER_SECTION = 6

ItemCallback = Callable[[ContentItem], None]


class PipelineStopped(Exception):
    """Raised at a stage boundary once an item's stop was requested."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Generation stopped for {item_id!r}")


class CancellationToken:
    """Per-item stop flag passed through every stage boundary."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise PipelineStopped(self.item_id)


@dataclass
class ArticlePlan:
    """Stage 2 output that is not part of GeneratedContent."""

    headings: List[str] = field(default_factory=list)
    key_takeaways: List[str] = field(default_factory=list)
    faq_questions: List[str] = field(default_factory=list)
    introduction: str = ""
    conclusion: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ArticlePlan:
        def _strings(value: Any) -> List[str]:
            if not isinstance(value, list):
                return []
            return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]

        questions: List[str] = []
        for entry in data.get("faqSection") or data.get("faq_section") or []:
            question = entry.get("question") if isinstance(entry, dict) else entry
            if question and str(question).strip():
                questions.append(str(question).strip())

        return cls(
            headings=_strings(data.get("outline")),
            key_takeaways=_strings(data.get("keyTakeaways") or data.get("key_takeaways")),
            faq_questions=questions,
            introduction=strip_script_blocks(str(data.get("introduction") or "")),
            conclusion=strip_script_blocks(str(data.get("conclusion") or "")),
        )


# ---------------------------------------------------------------------------
# Item factories
# ---------------------------------------------------------------------------


def item_from_keyword(keyword: str, item_type: ItemType = ItemType.STANDARD) -> ContentItem:
    """A fresh item for a single keyword or title."""
    keyword = keyword.strip()
    return ContentItem(id=keyword, title=keyword, type=item_type)


def item_for_rewrite(page: SitemapPage) -> ContentItem:
    """A rewrite of an existing page, carrying its crawled text and URL."""
    return ContentItem(
        id=page.title,
        title=page.title,
        type=ItemType.STANDARD,
        status_text="Ready to Rewrite",
        crawled_content=page.crawled_content,
        original_url=page.id,
    )


def pillar_from_page(page: SitemapPage) -> ContentItem:
    """A new pillar article using an existing page's title as the topic."""
    return ContentItem(
        id=page.title,
        title=page.title,
        type=ItemType.PILLAR,
        status_text="Ready to Generate",
    )


# ---------------------------------------------------------------------------
# HTML fragments
# ---------------------------------------------------------------------------


def video_embed_html(video: Dict[str, Any]) -> str:
    title = html.escape(str(video.get("title") or ""), quote=True)
    return (
        '<div class="video-container"><iframe width="100%" height="410" '
        f'src="{video["embedUrl"]}" frameborder="0" allowfullscreen title="{title}"></iframe></div>'
    )


def key_takeaways_html(takeaways: Sequence[str]) -> str:
    items = "".join(f"<li>{t}</li>" for t in takeaways)
    return f"<h3>Key Takeaways</h3><ul>{items}</ul>"


def build_references_html(serp_data: Optional[Sequence[Dict[str, Any]]]) -> str:
    """Top SERP results as a references list. Entries without a link or title are skipped."""
    parts = ["<h2>References</h2><ul>"]
    for ref in list(serp_data or [])[:MAX_REFERENCES]:
        if ref.get("link") and ref.get("title"):
            parts.append(
                f'<li><a href="{ref["link"]}" target="_blank" rel="noopener noreferrer">{ref["title"]}</a></li>'
            )
    parts.append("</ul>")
    return "".join(parts)


def image_figure_html(detail: ImageDetail, src: str) -> str:
    return (
        f'<figure class="wp-block-image size-large"><img src="{src}" alt="{detail.alt_text}" '
        f'title="{detail.title}"/><figcaption>{detail.alt_text}</figcaption></figure>'
    )


def image_failure_marker(detail: ImageDetail) -> str:
    return f'<!-- Image generation failed for prompt: "{detail.prompt}" -->'


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ContentPipeline:
    """
    Orchestrates the four generation stages for content items.

    Parameters
    ----------
    config : EngineConfig
        Thresholds, geo target and concurrency settings.
    text_provider : TextGenerator
        Provider for every text task.
    image_providers : list of ImageGenerator, optional
        Image providers in fallback order. With none, image placeholders are
        stripped from the output.
    serper : SerperClient, optional
        Search-data client. Stage 1 SERP and video lookup is skipped without it.
    cache : ContentCache, optional
        Shared cache for SERP data and semantic keywords.
    existing_pages : list of SitemapPage, optional
        Known site pages used as internal-link targets.
    on_update : callable, optional
        ``on_update(item)`` after every status or content change.
    """

    def __init__(
        self,
        config: EngineConfig,
        text_provider: TextGenerator,
        image_providers: Optional[Sequence[ImageGenerator]] = None,
        serper: Optional[SerperClient] = None,
        cache: Optional[ContentCache] = None,
        existing_pages: Optional[Sequence[SitemapPage]] = None,
        on_update: Optional[ItemCallback] = None,
    ):
        self.config = config
        self.text_provider = text_provider
        self.image_providers: List[ImageGenerator] = list(image_providers or [])
        self.serper = serper
        self.cache = cache if cache is not None else ContentCache(ttl_seconds=config.cache_ttl)
        self.existing_pages: List[SitemapPage] = list(existing_pages or [])
        self.on_update = on_update
        self.items = ItemCollection()

        self._active: Dict[str, Tuple[ContentItem, CancellationToken]] = {}
        self._stop_all = False

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        existing_pages: Optional[Sequence[SitemapPage]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        on_update: Optional[ItemCallback] = None,
    ) -> ContentPipeline:
        """Wire providers, search client and cache from configuration.

        Raises
        ------
        ValueError
            If the selected text provider has no API key.
        """
        serper = SerperClient(config.api_keys.serper, session=session) if config.api_keys.serper else None
        return cls(
            config,
            text_provider=build_text_provider(config),
            image_providers=build_image_providers(config),
            serper=serper,
            existing_pages=existing_pages,
            on_update=on_update,
        )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _update(
        self,
        item: ContentItem,
        status: ItemStatus,
        text: str,
        content: Optional[GeneratedContent] = None,
    ) -> None:
        if content is not None:
            item.generated_content = content
        item.set_status(status, text)
        if self.on_update is not None:
            self.on_update(item)

    def _finish(self, item: ContentItem, content: GeneratedContent) -> None:
        item.set_content(content)
        if self.on_update is not None:
            self.on_update(item)

    def stop(self, item_id: Optional[str] = None) -> None:
        """
        Request a cooperative stop for one item, or for every running item
        and the rest of the current batch when *item_id* is None.

        The item is marked idle immediately; an AI call already in flight
        is allowed to finish but its result is discarded.
        """
        if item_id is None:
            self._stop_all = True
            targets = list(self._active.values())
        else:
            targets = [self._active[item_id]] if item_id in self._active else []

        for item, token in targets:
            token.cancel()
            self._update(item, ItemStatus.IDLE, STOPPED_STATUS)
            logger.info("Stop requested for %r", item.id)

    # ------------------------------------------------------------------
    # AI calls
    # ------------------------------------------------------------------

    async def _ask(
        self,
        task: str,
        *args: Any,
        json_mode: bool = False,
        system_instruction: Optional[str] = None,
        **kwargs: Any,
    ) -> str:
        system, user = get_template(task).render(*args, **kwargs)
        return await self.text_provider.generate(
            system_instruction or system, user, json_mode=json_mode, task=task,
        )

    async def _semantic_keywords(self, title: str) -> List[str]:
        """Semantic keyword list for *title*, cached under ``sk-<title>``. Failures yield []."""
        cache_key = self.cache.make_key("sk", title)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            raw = await self._ask(TASK_SEMANTIC_KEYWORDS, title, json_mode=True)
            parsed = parse_json(raw)
        except Exception as exc:
            logger.warning("Semantic keyword generation failed for %r: %s", title, exc)
            return []

        keywords = parsed.get("semanticKeywords") if isinstance(parsed, dict) else None
        if not isinstance(keywords, list):
            logger.warning("Semantic keyword response for %r had no keyword list", title)
            return []
        keywords = [str(k) for k in keywords if str(k).strip()]
        self.cache.set(cache_key, keywords)
        return keywords

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _stage_keyword_intelligence(
        self, item: ContentItem, token: CancellationToken,
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]], List[str]]:
        serp_data: List[Dict[str, Any]] = []
        videos: List[Dict[str, Any]] = []

        if self.serper is not None:
            token.raise_if_cancelled()
            self._update(item, ItemStatus.GENERATING, "Stage 1/4: Fetching SERP Data...")
            intel = await fetch_serp_intelligence(
                self.serper, item.title, self.cache, self.config.thresholds.youtube_embed_count,
            )
            if intel is not None:
                serp_data, videos = intel.serp_data, intel.youtube_videos

        token.raise_if_cancelled()
        self._update(item, ItemStatus.GENERATING, "Stage 1/4: Analyzing Topic...")
        semantic = await self._semantic_keywords(item.title)
        return serp_data, videos, semantic

    async def _stage_outline(
        self,
        item: ContentItem,
        token: CancellationToken,
        semantic: List[str],
        serp_data: List[Dict[str, Any]],
    ) -> Tuple[Dict[str, Any], str]:
        token.raise_if_cancelled()
        self._update(item, ItemStatus.GENERATING, "Stage 2/4: Generating Article Outline...")
        raw = await self._ask(
            TASK_META_AND_OUTLINE,
            item.title,
            semantic,
            serp_data,
            self.existing_pages,
            item.crawled_content,
            json_mode=True,
        )
        parsed = parse_json(raw)
        if not isinstance(parsed, dict):
            raise ValueError("Outline response was not a JSON object.")
        return parsed, raw

    async def _stage_write(
        self,
        item: ContentItem,
        token: CancellationToken,
        plan: ArticlePlan,
        draft: GeneratedContent,
        videos: List[Dict[str, Any]],
    ) -> str:
        parts: List[str] = [plan.introduction, key_takeaways_html(plan.key_takeaways)]
        images = draft.image_details
        if images and images[0].placeholder:
            parts.append(f"<p>{images[0].placeholder}</p>")

        total = len(plan.headings)
        for i, heading in enumerate(plan.headings):
            token.raise_if_cancelled()
            self._update(item, ItemStatus.GENERATING, f"Stage 3/4: Writing Section {i + 1}/{total}")
            section = await self._ask(
                TASK_WRITE_SECTION, item.title, draft.title, heading, self.existing_pages,
            )
            parts.append(f"<h2>{heading}</h2>\n{clean_html_response(section)}")

            if i == FIRST_VIDEO_AFTER_SECTION and len(videos) > 0:
                parts.append(video_embed_html(videos[0]))
            if i == SECOND_VIDEO_AFTER_SECTION and len(videos) > 1:
                parts.append(video_embed_html(videos[1]))
            if i == SECOND_IMAGE_AFTER_SECTION and len(images) > 1 and images[1].placeholder:
                parts.append(f"<p>{images[1].placeholder}</p>")

        parts.append("<h2>Frequently Asked Questions</h2>")
        faq_total = len(plan.faq_questions)
        for i, question in enumerate(plan.faq_questions):
            token.raise_if_cancelled()
            self._update(item, ItemStatus.GENERATING, f"Stage 3/4: Writing FAQ {i + 1}/{faq_total}")
            answer = await self._ask(TASK_WRITE_FAQ, question)
            parts.append(f"<h3>{question}</h3>\n{clean_html_response(answer)}")

        parts.append(plan.conclusion)
        parts.append(REFERENCES_PLACEHOLDER)
        return "\n\n".join(parts)

    async def _render_images(self, item: ContentItem, token: CancellationToken, content: GeneratedContent) -> None:
        if not self.image_providers:
            content.content = IMAGE_PLACEHOLDER_PATTERN.sub("", content.content)
            return

        total = len(content.image_details)
        for i, detail in enumerate(content.image_details):
            token.raise_if_cancelled()
            self._update(item, ItemStatus.GENERATING, f"Stage 4/4: Generating Image {i + 1}/{total}...")
            src = await generate_image_with_fallback(self.image_providers, detail.prompt)
            if src:
                detail.generated_image_src = src
                replacement = image_figure_html(detail, src)
            else:
                logger.warning("No image for %r, leaving an omission marker", detail.placeholder)
                replacement = image_failure_marker(detail)
            if detail.placeholder:
                content.content = content.content.replace(detail.placeholder, replacement)

        # Tokens the writer invented without a matching image plan
        content.content = IMAGE_PLACEHOLDER_PATTERN.sub("", content.content)

    async def _stage_post_process(
        self,
        item: ContentItem,
        token: CancellationToken,
        content: GeneratedContent,
        serp_data: List[Dict[str, Any]],
        videos: List[Dict[str, Any]],
    ) -> None:
        token.raise_if_cancelled()
        self._update(item, ItemStatus.GENERATING, "Stage 4/4: Finalizing...")
        thresholds = self.config.thresholds

        min_words, max_words = word_count_band(item.type, thresholds)
        enforce_word_count(content.content, min_words, max_words)
        check_human_writing_score(content.content)

        content.content = run_link_integrity(
            content.content, self.existing_pages, content.primary_keyword, thresholds.min_internal_links,
        )
        if videos:
            content.content = enforce_unique_video_embeds(content.content, videos)
        content.content = normalize_video_embed_size(content.content)

        if REFERENCES_PLACEHOLDER in content.content:
            content.content = content.content.replace(REFERENCES_PLACEHOLDER, build_references_html(serp_data))

        await self._render_images(item, token, content)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate_item(self, item: ContentItem) -> ContentItem:
        """
        Run all four stages for *item* and record the outcome on it.

        Never raises for per-item failures:

        * ContentTooShortError keeps the partial content, status ``error``
          with a "Quality Check Failed" text.
        * A stop request leaves the item ``idle``.
        * Any other error sets ``error`` with a truncated diagnostic.
        """
        token = CancellationToken(item.id)
        self._active[item.id] = (item, token)
        if self._stop_all:
            token.cancel()

        logger.info("=" * 70)
        logger.info("PIPELINE START: %r type=%s rewrite=%s", item.title, item.type.value, item.is_rewrite)
        logger.info("=" * 70)
        started = time.monotonic()

        raw_outline: Optional[str] = None
        draft: Optional[GeneratedContent] = None
        try:
            token.raise_if_cancelled()
            self._update(item, ItemStatus.GENERATING, "Initializing...")

            serp_data, videos, semantic = await self._stage_keyword_intelligence(item, token)
            parsed, raw_outline = await self._stage_outline(item, token, semantic, serp_data)

            plan = ArticlePlan.from_dict(parsed)
            draft = normalize_generated_content(parsed, item.title)
            draft.primary_keyword = item.title
            draft.semantic_keywords = semantic

            draft.content = await self._stage_write(item, token, plan, draft, videos)
            await self._stage_post_process(item, token, draft, serp_data, videos)

            token.raise_if_cancelled()
            self._finish(item, draft)
            logger.info(
                "PIPELINE COMPLETE in %.1fs: %r", time.monotonic() - started, item.title,
            )

        except PipelineStopped:
            logger.info("Generation stopped for %r", item.id)
            if item.status != ItemStatus.IDLE:
                self._update(item, ItemStatus.IDLE, STOPPED_STATUS)

        except ContentTooShortError as exc:
            logger.error("Quality gate failed for %r: %s", item.id, exc)
            if draft is not None:
                draft.content = exc.content
            self._update(item, ItemStatus.ERROR, f"Quality Check Failed: {exc}", content=draft)

        except Exception as exc:
            if token.cancelled:
                logger.info("Error after stop for %r ignored: %s", item.id, exc)
            else:
                logger.error("Generation failed for %r: %s", item.id, exc)
                if raw_outline is not None:
                    logger.error("Raw outline response for %r:\n%s", item.id, raw_outline)
                self._update(item, ItemStatus.ERROR, f"Error: {str(exc)[:MAX_ERROR_DETAIL]}...")

        finally:
            self._active.pop(item.id, None)

        return item

    async def generate_batch(
        self,
        items: Optional[Sequence[ContentItem]] = None,
        concurrency: Optional[int] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[ContentItem]:
        """
        Generate many items with bounded parallelism.

        Defaults to every idle item in ``self.items``. One item failing never
        aborts the batch; ``stop()`` without an id skips the queued rest.
        """
        batch = list(items) if items is not None else self.items.by_status(ItemStatus.IDLE)
        workers = concurrency or self.config.generation_concurrency
        self._stop_all = False

        logger.info("BATCH GENERATION: %d item(s), concurrency=%d", len(batch), workers)
        await process_concurrently(
            batch,
            self.generate_item,
            concurrency=workers,
            on_progress=on_progress,
            should_stop=lambda: self._stop_all,
        )
        done = sum(1 for i in batch if i.status == ItemStatus.DONE)
        logger.info("BATCH COMPLETE: %d/%d item(s) generated", done, len(batch))
        return batch

    async def plan_cluster(self, topic: str) -> List[ContentItem]:
        """
        Ask the cluster planner for a pillar title plus cluster titles.

        The resulting items replace ``self.items``.

        Raises
        ------
        ValueError
            If the plan has no pillar title.
        """
        raw = await self._ask(
            TASK_CLUSTER_PLANNER,
            topic,
            json_mode=True,
            system_instruction=cluster_planner_system(self.config.geo_target),
        )
        plan = parse_json(raw)
        if not isinstance(plan, dict) or not plan.get("pillarTitle"):
            raise ValueError("Cluster plan response is missing 'pillarTitle'.")

        items = [item_from_keyword(str(plan["pillarTitle"]), ItemType.PILLAR)]
        for title in plan.get("clusterTitles") or []:
            if isinstance(title, str) and title.strip():
                items.append(item_from_keyword(title, ItemType.CLUSTER))

        logger.info("Cluster plan for %r: 1 pillar, %d cluster(s)", topic, len(items) - 1)
        self.items.replace_all(items)
        return items

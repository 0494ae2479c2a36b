"""
Data model for the content engine.

ContentItem is the unit of work moving through the pipeline, GeneratedContent
is the artifact it produces, and SitemapPage describes an existing page on the
target site that can be linked to or rewritten.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

# ---------------------------------------------------------------------------
# Placeholder patterns shared by the pipeline, linker and publisher
# ---------------------------------------------------------------------------

INTERNAL_LINK_PATTERN = re.compile(r'\[INTERNAL_LINK\s+slug="([^"]+)"\s+text="([^"]+)"\]')
IMAGE_PLACEHOLDER_PATTERN = re.compile(r"\[IMAGE_\d+_PLACEHOLDER\]")
REFERENCES_PLACEHOLDER = "[REFERENCES_PLACEHOLDER]"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ItemType(str, Enum):
    """Variant tag of a content item."""
    PILLAR = "pillar"
    CLUSTER = "cluster"
    STANDARD = "standard"


class ItemStatus(str, Enum):
    """Lifecycle of a content item: idle -> generating -> done | error."""
    IDLE = "idle"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


class UpdatePriority(str, Enum):
    """Content-health classification of an existing page."""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    HEALTHY = "Healthy"
    ERROR = "Error"

    @classmethod
    def from_score(cls, score: int) -> UpdatePriority:
        if score <= 25:
            return cls.CRITICAL
        if score <= 50:
            return cls.HIGH
        if score <= 75:
            return cls.MEDIUM
        return cls.HEALTHY

    @classmethod
    def parse(cls, value: Any) -> Optional[UpdatePriority]:
        if value is None:
            return None
        for member in cls:
            if str(value).strip().lower() == member.value.lower():
                return member
        return None


class PublishState(str, Enum):
    NONE = "none"
    UPDATED = "updated"


# ---------------------------------------------------------------------------
# Generated artifact
# ---------------------------------------------------------------------------


@dataclass
class ImageDetail:
    """An image planned during the outline stage and filled in post-processing."""

    prompt: str
    alt_text: str
    title: str
    placeholder: str
    generated_image_src: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ImageDetail:
        return cls(
            prompt=str(data.get("prompt", "")),
            alt_text=str(data.get("alt_text", data.get("altText", ""))),
            title=str(data.get("title", "")),
            placeholder=str(data.get("placeholder", "")),
            generated_image_src=data.get("generated_image_src", data.get("generatedImageSrc")),
        )


@dataclass
class ContentStrategy:
    target_audience: str = ""
    search_intent: str = ""
    competitor_analysis: str = ""
    content_angle: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> ContentStrategy:
        data = data or {}
        return cls(
            target_audience=str(data.get("target_audience", data.get("targetAudience", ""))),
            search_intent=str(data.get("search_intent", data.get("searchIntent", ""))),
            competitor_analysis=str(data.get("competitor_analysis", data.get("competitorAnalysis", ""))),
            content_angle=str(data.get("content_angle", data.get("contentAngle", ""))),
        )


@dataclass
class SocialMediaCopy:
    twitter: str = ""
    linkedin: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> SocialMediaCopy:
        data = data or {}
        return cls(
            twitter=str(data.get("twitter", "")),
            linkedin=str(data.get("linkedin", data.get("linkedIn", ""))),
        )


@dataclass
class GeneratedContent:
    """The pipeline's output artifact.

    ``content`` never carries schema markup; the schema seed travels
    out-of-band in ``json_ld_schema``.
    """

    title: str
    slug: str
    meta_description: str
    primary_keyword: str
    content: str
    semantic_keywords: List[str] = field(default_factory=list)
    image_details: List[ImageDetail] = field(default_factory=list)
    strategy: ContentStrategy = field(default_factory=ContentStrategy)
    json_ld_schema: Dict[str, Any] = field(default_factory=dict)
    social_media_copy: SocialMediaCopy = field(default_factory=SocialMediaCopy)

    def has_unresolved_placeholders(self) -> bool:
        """True if raw link or image tokens are still present in the body."""
        return bool(
            INTERNAL_LINK_PATTERN.search(self.content)
            or IMAGE_PLACEHOLDER_PATTERN.search(self.content)
            or REFERENCES_PLACEHOLDER in self.content
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GeneratedContent:
        return cls(
            title=data.get("title", ""),
            slug=data.get("slug", ""),
            meta_description=data.get("meta_description", ""),
            primary_keyword=data.get("primary_keyword", ""),
            content=data.get("content", ""),
            semantic_keywords=list(data.get("semantic_keywords", [])),
            image_details=[ImageDetail.from_dict(d) for d in data.get("image_details", [])],
            strategy=ContentStrategy.from_dict(data.get("strategy")),
            json_ld_schema=dict(data.get("json_ld_schema", {})),
            social_media_copy=SocialMediaCopy.from_dict(data.get("social_media_copy")),
        )


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


@dataclass
class ContentItem:
    """Unit of work. ``id`` is usually the title."""

    id: str
    title: str
    type: ItemType = ItemType.STANDARD
    status: ItemStatus = ItemStatus.IDLE
    status_text: str = "Not started"
    generated_content: Optional[GeneratedContent] = None
    crawled_content: Optional[str] = None
    original_url: Optional[str] = None

    @property
    def is_pillar(self) -> bool:
        return self.type == ItemType.PILLAR

    @property
    def is_rewrite(self) -> bool:
        return bool(self.original_url)

    def set_status(self, status: ItemStatus, status_text: str) -> None:
        self.status = status
        self.status_text = status_text

    def set_content(self, content: GeneratedContent) -> None:
        self.generated_content = content
        self.status = ItemStatus.DONE
        self.status_text = "Completed"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContentItem:
        generated = data.get("generated_content")
        return cls(
            id=data["id"],
            title=data.get("title", data["id"]),
            type=ItemType(data.get("type", ItemType.STANDARD.value)),
            status=ItemStatus(data.get("status", ItemStatus.IDLE.value)),
            status_text=data.get("status_text", "Not started"),
            generated_content=GeneratedContent.from_dict(generated) if generated else None,
            crawled_content=data.get("crawled_content"),
            original_url=data.get("original_url"),
        )


class ItemCollection:
    """Ordered collection of content items keyed by id.

    Items are replaced, never deleted, and only mutated through status and
    content transitions.
    """

    def __init__(self, items: Optional[Iterable[ContentItem]] = None):
        self._items: Dict[str, ContentItem] = {}
        if items:
            self.replace_all(items)

    def replace_all(self, items: Iterable[ContentItem]) -> None:
        self._items = {item.id: item for item in items}

    def get(self, item_id: str) -> Optional[ContentItem]:
        return self._items.get(item_id)

    def update_status(self, item_id: str, status: ItemStatus, status_text: str) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.set_status(status, status_text)

    def set_content(self, item_id: str, content: GeneratedContent) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.set_content(content)

    def set_crawled_content(self, item_id: str, text: str) -> None:
        item = self._items.get(item_id)
        if item is not None:
            item.crawled_content = text

    def by_status(self, status: ItemStatus) -> List[ContentItem]:
        return [i for i in self._items.values() if i.status == status]

    def __iter__(self):
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)


# ---------------------------------------------------------------------------
# Existing site pages
# ---------------------------------------------------------------------------


@dataclass
class SitemapPage:
    """A page discovered from the target site's sitemap. ``id`` is the canonical URL."""

    id: str
    title: str
    slug: str
    last_mod: Optional[str] = None
    word_count: Optional[int] = None
    crawled_content: Optional[str] = None
    health_score: Optional[int] = None
    update_priority: Optional[UpdatePriority] = None
    justification: Optional[str] = None
    days_old: Optional[int] = None
    is_stale: bool = False
    publish_state: PublishState = PublishState.NONE

    @property
    def url(self) -> str:
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["update_priority"] = self.update_priority.value if self.update_priority else None
        d["publish_state"] = self.publish_state.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SitemapPage:
        return cls(
            id=data["id"],
            title=data.get("title", data["id"]),
            slug=data.get("slug", ""),
            last_mod=data.get("last_mod"),
            word_count=data.get("word_count"),
            crawled_content=data.get("crawled_content"),
            health_score=data.get("health_score"),
            update_priority=UpdatePriority.parse(data.get("update_priority")),
            justification=data.get("justification"),
            days_old=data.get("days_old"),
            is_stale=bool(data.get("is_stale", False)),
            publish_state=PublishState(data.get("publish_state", "none")),
        )

"""
Output normalization for the outline/metadata stage.

Models drop fields, rename them, or return the wrong types. Normalization
never fails: every missing GeneratedContent field is backfilled with a
usable default so the rest of the pipeline can rely on the shape.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from content_engine.html_utils import slugify
from content_engine.models import (
    ContentStrategy,
    GeneratedContent,
    ImageDetail,
    SocialMediaCopy,
)

logger = logging.getLogger("normalizer")

IMAGE_1_PLACEHOLDER = "[IMAGE_1_PLACEHOLDER]"
IMAGE_2_PLACEHOLDER = "[IMAGE_2_PLACEHOLDER]"

# Paragraph boundary after which each forced placeholder is inserted
_FORCED_PLACEHOLDER_POSITIONS = ((IMAGE_1_PLACEHOLDER, 2), (IMAGE_2_PLACEHOLDER, 5))


def default_image_details(title: str, slug: str) -> List[ImageDetail]:
    """A feature image and an infographic derived from the article title."""
    return [
        ImageDetail(
            prompt=(
                f'A high-quality, photorealistic image representing the concept of: "{title}". '
                "Cinematic, professional blog post header image, 16:9 aspect ratio."
            ),
            alt_text=f'A conceptual image for "{title}"',
            title=f"{slug}-feature-image",
            placeholder=IMAGE_1_PLACEHOLDER,
        ),
        ImageDetail(
            prompt=(
                f'An infographic or diagram illustrating a key point from the article: "{title}". '
                "Clean, modern design with clear labels. 16:9 aspect ratio."
            ),
            alt_text=f'Infographic explaining a key concept from "{title}"',
            title=f"{slug}-infographic",
            placeholder=IMAGE_2_PLACEHOLDER,
        ),
    ]


def insert_placeholder(content: str, placeholder: str, paragraph_index: int) -> str:
    """Insert ``<p>placeholder</p>`` at a ``</p>`` boundary, or append it."""
    if placeholder in content:
        return content
    paragraphs = content.split("</p>")
    block = f"<p>{placeholder}"
    if len(paragraphs) > paragraph_index:
        paragraphs.insert(paragraph_index, block)
        return "</p>".join(paragraphs)
    return content + f"<p>{placeholder}</p>"


def _parse_image_details(raw: Any) -> List[ImageDetail]:
    if not isinstance(raw, list):
        return []
    details = []
    for entry in raw:
        if isinstance(entry, dict) and entry.get("prompt") and entry.get("placeholder"):
            details.append(ImageDetail.from_dict(entry))
    return details


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def normalize_generated_content(parsed: Optional[Dict[str, Any]], item_title: str) -> GeneratedContent:
    """
    Build a complete GeneratedContent from a possibly partial model object.

    Accepts both the camelCase keys the prompts ask for and snake_case keys.

    Parameters
    ----------
    parsed : dict or None
        Parsed JSON from the outline stage.
    item_title : str
        Fallback title, also the default primary keyword.
    """
    data = parsed if isinstance(parsed, dict) else {}

    title = str(_first(data, "title") or item_title)
    slug = str(_first(data, "slug") or slugify(item_title))
    content = _first(data, "content")
    if not content:
        logger.warning("'content' field was missing for %r. Defaulting to empty string.", item_title)
        content = ""
    content = str(content)

    image_details = _parse_image_details(_first(data, "imageDetails", "image_details"))
    if not image_details:
        logger.warning("'imageDetails' missing or invalid for %r. Generating default image prompts.", item_title)
        image_details = default_image_details(title, slug or slugify(item_title))
        if content:
            for placeholder, position in _FORCED_PLACEHOLDER_POSITIONS:
                content = insert_placeholder(content, placeholder, position)

    semantic = _first(data, "semanticKeywords", "semantic_keywords")
    if not isinstance(semantic, list):
        semantic = []

    strategy = _first(data, "strategy")
    social = _first(data, "socialMediaCopy", "social_media_copy")
    schema = _first(data, "jsonLdSchema", "json_ld_schema")

    return GeneratedContent(
        title=title,
        slug=slug,
        meta_description=str(
            _first(data, "metaDescription", "meta_description")
            or f"Read this comprehensive guide on {title}."
        ),
        primary_keyword=str(_first(data, "primaryKeyword", "primary_keyword") or item_title),
        content=content,
        semantic_keywords=[str(k) for k in semantic],
        image_details=image_details,
        strategy=ContentStrategy.from_dict(strategy if isinstance(strategy, dict) else None),
        json_ld_schema=schema if isinstance(schema, dict) else {},
        social_media_copy=SocialMediaCopy.from_dict(social if isinstance(social, dict) else None),
    )

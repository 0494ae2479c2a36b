"""
Quality gates applied to assembled article HTML.

* word-count gate (blocking, raises ContentTooShortError)
* AI-phrase / human-writing score (observability only)
* duplicate-video correction and embed sizing (transforms)

All checks are deterministic, pure Python and regex based.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from content_engine.config import QualityThresholds
from content_engine.html_utils import count_words, strip_tags
from content_engine.models import ItemType

logger = logging.getLogger("quality_gates")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

AI_PHRASE_PENALTY = 10
LONG_SENTENCE_PENALTY = 15
MAX_AVG_SENTENCE_WORDS = 25

EMBED_WIDTH = "100%"
EMBED_HEIGHT = "410"

# Overused phrases that mark text as machine-written. Substring matched,
# case-insensitive, so "landscape" also fires inside longer phrases.
AI_PHRASES: Tuple[str, ...] = (
    "delve into", "in today's digital landscape", "revolutionize", "game-changer",
    "unlock", "leverage", "robust", "seamless", "cutting-edge", "elevate", "empower",
    "it's important to note", "it's worth mentioning", "needless to say",
    "in conclusion", "to summarize", "in summary", "holistic", "paradigm shift",
    "utilize", "commence", "endeavor", "facilitate", "implement", "demonstrate",
    "ascertain", "procure", "terminate", "disseminate", "expedite",
    "in order to", "due to the fact that", "for the purpose of", "with regard to",
    "in the event that", "at this point in time", "for all intents and purposes",
    "furthermore", "moreover", "additionally", "consequently", "nevertheless",
    "notwithstanding", "aforementioned", "heretofore", "whereby", "wherein",
    "landscape", "realm", "sphere", "domain", "ecosystem", "framework",
    "navigate", "embark", "journey", "transform", "transition",
    "plethora", "myriad", "multitude", "abundance", "copious",
    "crucial", "vital", "essential", "imperative", "paramount",
    "optimize", "maximize", "enhance", "augment", "amplify",
    "intricate", "nuanced", "sophisticated", "elaborate", "comprehensive",
    "comprehensive guide", "ultimate guide", "complete guide",
    "dive deep", "take a deep dive", "let's explore", "let's dive in",
)

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
_YOUTUBE_IFRAME_RE = re.compile(
    r'<iframe[^>]+src="https://www\.youtube\.com/embed/([^"?&]+)[^>]*></iframe>'
)
_YOUTUBE_IFRAME_OPEN_RE = re.compile(r'<iframe[^>]+src="https://www\.youtube\.com/embed/[^>]+>')


class ContentTooShortError(Exception):
    """
    Assembled content is below the minimum word count.

    Recoverable: the offending content travels with the error so it can be
    kept for manual review instead of being discarded.
    """

    def __init__(self, message: str, content: str, word_count: int, min_words: int = 0):
        self.content = content
        self.word_count = word_count
        self.min_words = min_words
        super().__init__(message)


# ---------------------------------------------------------------------------
# Word count
# ---------------------------------------------------------------------------


def word_count_band(item_type: ItemType, thresholds: Optional[QualityThresholds] = None) -> Tuple[int, int]:
    """``(min_words, max_words)`` for an item variant. Pillars get the long band."""
    thresholds = thresholds or QualityThresholds()
    if item_type == ItemType.PILLAR:
        return thresholds.min_words_pillar, thresholds.max_words_pillar
    return thresholds.min_words, thresholds.max_words


def enforce_word_count(content: str, min_words: int, max_words: int) -> int:
    """
    Count words in the tag-stripped text and enforce the lower bound.

    Returns
    -------
    int
        The word count.

    Raises
    ------
    ContentTooShortError
        If the count is below *min_words*. Exceeding *max_words* is only
        logged.
    """
    word_count = count_words(content)
    logger.info("Word count: %d (target: %d-%d)", word_count, min_words, max_words)

    if word_count < min_words:
        raise ContentTooShortError(
            f"CONTENT TOO SHORT: {word_count} words (minimum {min_words} required)",
            content=content,
            word_count=word_count,
            min_words=min_words,
        )
    if word_count > max_words:
        logger.warning("Content is %d words over target", word_count - max_words)
    return word_count


# ---------------------------------------------------------------------------
# Human-writing score
# ---------------------------------------------------------------------------


def find_ai_phrases(content: str) -> Dict[str, int]:
    """Occurrence count for every AI phrase present in *content*."""
    lower = (content or "").lower()
    hits: Dict[str, int] = {}
    for phrase in AI_PHRASES:
        count = lower.count(phrase)
        if count:
            hits[phrase] = count
    return hits


def average_sentence_length(content: str) -> float:
    sentences = _SENTENCE_RE.findall(strip_tags(content))
    if not sentences:
        return 0.0
    return sum(len(s.split()) for s in sentences) / len(sentences)


def check_human_writing_score(content: str) -> int:
    """
    Human-likeness score in [0, 100]; never blocks.

    10 points off per occurrence of each AI phrase, 15 more if the average
    sentence runs over 25 words.
    """
    penalty = 0
    for phrase, count in find_ai_phrases(content).items():
        penalty += count * AI_PHRASE_PENALTY
        logger.warning("AI phrase detected %dx: %r", count, phrase)

    avg = average_sentence_length(content)
    if avg > MAX_AVG_SENTENCE_WORDS:
        penalty += LONG_SENTENCE_PENALTY
        logger.warning("Average sentence too long (%.1f words)", avg)

    score = max(0, 100 - penalty)
    logger.info("Human writing score: %d%%", score)
    return score


# ---------------------------------------------------------------------------
# Video embeds
# ---------------------------------------------------------------------------


def enforce_unique_video_embeds(content: str, videos: Optional[Sequence[Dict[str, Any]]]) -> str:
    """
    Fix the case where every YouTube embed shows the same video.

    When two or more embeds exist and all share one id, the second embed is
    pointed at the second intended video, if that video differs.
    """
    if not videos or len(videos) < 2:
        return content

    matches = list(_YOUTUBE_IFRAME_RE.finditer(content))
    if len(matches) < 2:
        return content

    ids = [m.group(1) for m in matches]
    duplicate_id = ids[0]
    if any(video_id != duplicate_id for video_id in ids):
        return content

    logger.warning("[Video Check] Duplicate video id %r in every embed, fixing the second one", duplicate_id)
    replacement_id = videos[1].get("videoId")
    if not replacement_id or replacement_id == duplicate_id:
        return content

    second = matches[1]
    corrected = second.group(0).replace(duplicate_id, replacement_id, 1)
    logger.info("[Video Check] Replaced second embed with %r", replacement_id)
    return content[: second.start()] + corrected + content[second.end():]


def normalize_video_embed_size(content: str) -> str:
    """Force every YouTube iframe to width 100% and height 410."""

    def _resize(match: re.Match) -> str:
        tag = re.sub(r'width="[^"]*"', f'width="{EMBED_WIDTH}"', match.group(0), count=1)
        return re.sub(r'height="[^"]*"', f'height="{EMBED_HEIGHT}"', tag, count=1)

    return _YOUTUBE_IFRAME_OPEN_RE.sub(_resize, content)


def embedded_video_ids(content: str) -> List[str]:
    return [m.group(1) for m in _YOUTUBE_IFRAME_RE.finditer(content or "")]

"""Tests for the deterministic quality gates."""
from __future__ import annotations

import pytest

from content_engine.config import QualityThresholds
from content_engine.models import ItemType
from content_engine.quality_gates import (
    ContentTooShortError,
    average_sentence_length,
    check_human_writing_score,
    embedded_video_ids,
    enforce_unique_video_embeds,
    enforce_word_count,
    find_ai_phrases,
    normalize_video_embed_size,
    word_count_band,
)


def _iframe(video_id, width="560", height="315"):
    return (
        f'<iframe width="{width}" height="{height}" '
        f'src="https://www.youtube.com/embed/{video_id}" title="v" frameborder="0"></iframe>'
    )


def _words(n):
    return "<p>" + " ".join(["word"] * n) + "</p>"


class TestWordCount:

    @pytest.mark.unit
    def test_short_content_raises_with_content(self):
        content = _words(50)
        with pytest.raises(ContentTooShortError) as excinfo:
            enforce_word_count(content, 2200, 2800)
        assert str(excinfo.value) == "CONTENT TOO SHORT: 50 words (minimum 2200 required)"
        assert excinfo.value.content == content
        assert excinfo.value.word_count == 50

    @pytest.mark.unit
    def test_in_band_passes(self):
        assert enforce_word_count(_words(2500), 2200, 2800) == 2500

    @pytest.mark.unit
    def test_over_band_only_warns(self):
        assert enforce_word_count(_words(3000), 2200, 2800) == 3000

    @pytest.mark.unit
    def test_bands(self):
        assert word_count_band(ItemType.PILLAR) == (3500, 4500)
        assert word_count_band(ItemType.CLUSTER) == (2200, 2800)
        custom = QualityThresholds(min_words=100, max_words=200)
        assert word_count_band(ItemType.STANDARD, custom) == (100, 200)


class TestHumanScore:

    @pytest.mark.unit
    def test_clean_text_scores_100(self):
        assert check_human_writing_score("<p>The cat sat down. It was warm.</p>") == 100

    @pytest.mark.unit
    def test_phrase_penalty_per_occurrence(self):
        content = "<p>We delve into it. Then we delve into more.</p>"
        assert find_ai_phrases(content) == {"delve into": 2}
        assert check_human_writing_score(content) == 80

    @pytest.mark.unit
    def test_long_sentence_penalty(self):
        content = "<p>" + " ".join(["cat"] * 30) + ".</p>"
        assert average_sentence_length(content) == 30
        assert check_human_writing_score(content) == 85

    @pytest.mark.unit
    def test_score_floor(self):
        assert check_human_writing_score("leverage " * 20) == 0


class TestVideoEmbeds:

    @pytest.mark.unit
    def test_duplicate_second_embed_replaced(self):
        content = f"<p>a</p>{_iframe('AAAAAAAAAAA')}<p>b</p>{_iframe('AAAAAAAAAAA')}"
        videos = [{"videoId": "AAAAAAAAAAA"}, {"videoId": "BBBBBBBBBBB"}]
        fixed = enforce_unique_video_embeds(content, videos)
        assert embedded_video_ids(fixed) == ["AAAAAAAAAAA", "BBBBBBBBBBB"]

    @pytest.mark.unit
    def test_distinct_embeds_untouched(self):
        content = _iframe("AAAAAAAAAAA") + _iframe("BBBBBBBBBBB")
        videos = [{"videoId": "AAAAAAAAAAA"}, {"videoId": "CCCCCCCCCCC"}]
        assert enforce_unique_video_embeds(content, videos) == content

    @pytest.mark.unit
    def test_needs_two_intended_videos(self):
        content = _iframe("AAAAAAAAAAA") * 2
        assert enforce_unique_video_embeds(content, [{"videoId": "BBBBBBBBBBB"}]) == content
        same = [{"videoId": "AAAAAAAAAAA"}, {"videoId": "AAAAAAAAAAA"}]
        assert enforce_unique_video_embeds(content, same) == content

    @pytest.mark.unit
    def test_embed_size_normalized(self):
        resized = normalize_video_embed_size(_iframe("AAAAAAAAAAA"))
        assert 'width="100%"' in resized
        assert 'height="410"' in resized
        assert "560" not in resized

    @pytest.mark.unit
    def test_other_iframes_not_resized(self):
        content = '<iframe width="560" height="315" src="https://maps.example.com/x"></iframe>'
        assert normalize_video_embed_size(content) == content

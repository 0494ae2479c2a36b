"""
Prompt templates for every AI task in the engine.

Each template pairs a fixed system instruction with a user-prompt builder.
Builders truncate their inputs so a prompt never grows with the size of the
site or of a page being rewritten.
"""

from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from content_engine.models import SitemapPage

# ---------------------------------------------------------------------------
# Truncation limits
# ---------------------------------------------------------------------------

MAX_REWRITE_SOURCE_CHARS = 8000
MAX_LINKING_PAGES = 50
MAX_SERP_SNIPPET_LENGTH = 200
MAX_HEALTH_SNIPPET_CHARS = 12000

GEO_TARGET_TOKEN = "{{GEO_TARGET_INSTRUCTIONS}}"

# Task names; the Anthropic adapter keys its model choice off "section"
TASK_CLUSTER_PLANNER = "cluster_planner"
TASK_META_AND_OUTLINE = "content_meta_and_outline"
TASK_WRITE_SECTION = "write_article_section"
TASK_WRITE_FAQ = "write_faq_answer"
TASK_SEMANTIC_KEYWORDS = "semantic_keyword_generator"
TASK_HEALTH_ANALYZER = "content_health_analyzer"


@dataclass(frozen=True)
class PromptTemplate:
    """A system instruction plus a builder for the user prompt."""

    name: str
    system_instruction: str
    build_user_prompt: Callable[..., str]

    def render(self, *args: Any, **kwargs: Any) -> tuple[str, str]:
        """Return ``(system_instruction, user_prompt)``."""
        return self.system_instruction, self.build_user_prompt(*args, **kwargs)


def _dedent(text: str) -> str:
    return textwrap.dedent(text).strip()


def _linking_targets(pages: Optional[Sequence[SitemapPage]]) -> List[Dict[str, str]]:
    return [
        {"slug": p.slug, "title": p.title}
        for p in list(pages or [])[:MAX_LINKING_PAGES]
        if p.slug and p.title
    ]


# ---------------------------------------------------------------------------
# Cluster planner
# ---------------------------------------------------------------------------

_CLUSTER_PLANNER_SYSTEM = _dedent("""
    You are a master SEO strategist who builds topical authority with
    pillar-and-cluster content models. Analyze the user's broad topic and
    produce a complete, search-optimized content plan covering user intent at
    every stage.

    **RULES:**
    1. **Output Format:** Respond with a single valid JSON object and nothing else.
    2. **Pillar Content:** 'pillarTitle' is a broad, comprehensive title for a
       definitive guide that promises real value to the reader.
    3. **Cluster Content:** 'clusterTitles' is an array of 5 to 7 unique strings.
       Each is a question or long-tail phrase a real person would search for,
       covering a distinct sub-topic that supports the pillar page.
       - Good: "How Much Does Professional Landscaping Cost in 2025?"
       - Bad: "Landscaping Costs"
    4. **Keyword Focus:** Titles are search-optimized without sounding robotic.
    {{GEO_TARGET_INSTRUCTIONS}}
    5. **JSON Structure:**
       {
         "pillarTitle": "...",
         "clusterTitles": ["...", "..."]
       }

    Your ENTIRE response MUST be ONLY the JSON object, starting with { and
    ending with }. No introduction, no closing remarks, no code fences.
""")


def cluster_planner_system(geo_target: Optional[str] = None) -> str:
    """System instruction with the geo-targeting line filled in (or removed)."""
    geo_line = f"All titles must be geo-targeted for \"{geo_target}\"." if geo_target else ""
    return _CLUSTER_PLANNER_SYSTEM.replace(GEO_TARGET_TOKEN, geo_line)


def _cluster_planner_user(topic: str) -> str:
    return f'Generate a pillar-and-cluster content plan for the topic: "{topic}".'


# ---------------------------------------------------------------------------
# Metadata and outline
# ---------------------------------------------------------------------------

_META_AND_OUTLINE_SYSTEM = _dedent("""
    You are an elite content strategist and SEO expert. Produce ALL metadata
    and the structural plan for a world-class article: title, slug, meta
    description, image prompts, key takeaways, an outline of H2 sections, FAQ
    questions, an introduction and a conclusion.

    **RULES:**
    1. **JSON OUTPUT ONLY:** Respond with a single valid JSON object.
    2. **DO NOT WRITE THE BODY:** 'outline' is a list of H2 headings only.
       'introduction' and 'conclusion' are fully written HTML paragraphs.
    3. **WRITING STYLE (intro/conclusion):** Short, direct sentences (about
       10 words). Paragraphs of 2-3 sentences. Active voice. No stock phrases
       such as 'delve into' or 'in today's digital landscape'.
    4. **STRUCTURE:**
       - keyTakeaways: exactly 8 bullet points (array of strings).
       - outline: 10-15 H2 headings (array of strings) using the semantic keywords.
       - faqSection: exactly 8 questions (array of objects: [{"question": "..."}]).
       - imageDetails: exactly 2 entries with prompt, altText, title and
         placeholder. Placeholders MUST be '[IMAGE_1_PLACEHOLDER]' and
         '[IMAGE_2_PLACEHOLDER]'.
    5. **FIELDS:** title, slug, metaDescription, keyTakeaways, outline,
       faqSection, imageDetails, introduction, conclusion, strategy
       (targetAudience, searchIntent, competitorAnalysis, contentAngle),
       jsonLdSchema, socialMediaCopy (twitter, linkedIn). Every field present.
""")


def _meta_and_outline_user(
    primary_keyword: str,
    semantic_keywords: Optional[Sequence[str]] = None,
    serp_data: Optional[Sequence[Dict[str, Any]]] = None,
    existing_pages: Optional[Sequence[SitemapPage]] = None,
    original_content: Optional[str] = None,
) -> str:
    parts = [f'**PRIMARY KEYWORD:** "{primary_keyword}"']

    if original_content:
        parts.append(
            "***REWRITE MANDATE:*** Deconstruct the following outdated article and "
            "rebuild its plan.\n<original_content_to_rewrite>\n"
            f"{original_content[:MAX_REWRITE_SOURCE_CHARS]}\n"
            "</original_content_to_rewrite>"
        )
    if semantic_keywords:
        parts.append(
            "**MANDATORY SEMANTIC KEYWORDS:** Integrate these into the outline headings: "
            f"<semantic_keywords>{json.dumps(list(semantic_keywords))}</semantic_keywords>"
        )
    if serp_data:
        trimmed = [
            {
                "title": d.get("title"),
                "link": d.get("link"),
                "snippet": (d.get("snippet") or "")[:MAX_SERP_SNIPPET_LENGTH],
            }
            for d in serp_data
        ]
        parts.append(
            "**SERP COMPETITOR DATA:** Analyze for gaps. "
            f"<serp_data>{json.dumps(trimmed)}</serp_data>"
        )
    targets = _linking_targets(existing_pages)
    if targets:
        parts.append(
            "**INTERNAL LINKING TARGETS (for context):** "
            f"<existing_articles_for_linking>{json.dumps(targets)}</existing_articles_for_linking>"
        )

    parts.append("Generate the complete JSON plan.")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Section writer
# ---------------------------------------------------------------------------

_WRITE_SECTION_SYSTEM = _dedent("""
    You are an elite content writer. Your only task is to write the body of a
    single section of a larger article, based on the heading provided.

    **RULES:**
    1. **RAW HTML OUTPUT:** Respond with ONLY the HTML for the section. No JSON,
       no markdown, no explanations. Start directly with a <p> tag. Do not
       include the <h2> for the heading; it is added automatically.
    2. **WORD COUNT:** The section MUST be between 250 and 300 words.
    3. **STYLE:**
       - Short, direct sentences. Average 10 words, max 15.
       - Paragraphs of 2-3 sentences at most.
       - Use contractions. Active voice. Plain language. No filler.
       - Ask the reader direct questions. Use analogies.
    4. **FORBIDDEN PHRASES:** 'delve into', 'in today's digital landscape',
       'revolutionize', 'game-changer', 'unlock', 'leverage', 'in conclusion',
       'to summarize', 'utilize', 'furthermore', 'moreover', 'landscape',
       'realm', 'dive deep'.
    5. **STRUCTURE:**
       - You MAY use <h3> sub-headings.
       - Include at least one <table>, <ul>/<ol> or <blockquote> where relevant.
       - Naturally integrate 1-2 internal link placeholders where they fit:
         [INTERNAL_LINK slug="example-slug" text="anchor text"]
""")


def _write_section_user(
    primary_keyword: str,
    article_title: str,
    section_heading: str,
    existing_pages: Optional[Sequence[SitemapPage]] = None,
) -> str:
    prompt = (
        f'**Primary Keyword:** "{primary_keyword}"\n'
        f'**Main Article Title:** "{article_title}"\n'
        f'**Section to Write:** "{section_heading}"\n'
    )
    targets = _linking_targets(existing_pages)
    if targets:
        prompt += (
            "\n**Available Internal Links:** You can link to these pages.\n"
            f"<pages>{json.dumps(targets)}</pages>\n"
        )
    return prompt + "\nWrite the HTML content for this section now."


# ---------------------------------------------------------------------------
# FAQ answer
# ---------------------------------------------------------------------------

_WRITE_FAQ_SYSTEM = _dedent("""
    You are an expert content writer. Give a clear, concise and helpful
    answer to a single FAQ question.

    **RULES:**
    1. **RAW HTML PARAGRAPH:** Respond with ONLY the answer wrapped in a single
       <p> tag. Do not repeat the question.
    2. **STYLE:** Direct and easy to understand, usually 2-4 sentences, simple
       words, active voice.
""")


def _write_faq_user(question: str) -> str:
    return f'Question: "{question}"'


# ---------------------------------------------------------------------------
# Semantic keywords
# ---------------------------------------------------------------------------

_SEMANTIC_KEYWORDS_SYSTEM = _dedent("""
    You are a world-class SEO analyst. Generate a list of semantic and LSI
    keywords related to a primary topic, covering sub-topics, intent
    variations and related entities.

    **RULES:**
    1. **Output Format:** A single valid JSON object, nothing before or after.
    2. **Quantity:** Between 15 and 25 keywords.
    3. **JSON Structure:**
       {
         "semanticKeywords": ["...", "..."]
       }

    Your ENTIRE response MUST be ONLY the JSON object, starting with { and
    ending with }.
""")


def _semantic_keywords_user(primary_keyword: str) -> str:
    return f'Generate semantic keywords for the primary topic: "{primary_keyword}".'


# ---------------------------------------------------------------------------
# Content health
# ---------------------------------------------------------------------------

_HEALTH_ANALYZER_SYSTEM = _dedent("""
    You are an expert SEO content auditor. Analyze the text of a blog post and
    assign it a "Health Score". A low score means the content is thin,
    outdated, poorly structured or unhelpful and needs an urgent update.

    **Evaluation Criteria:**
    * Content depth and helpfulness (40%)
    * Readability and structure (30%)
    * Engagement potential: lists, bullets, scannable elements (15%)
    * Freshness signals: current concepts, statistics and years (15%)

    **RULES:**
    1. **Output Format:** A single valid JSON object, nothing before or after.
    2. **healthScore:** integer between 0 and 100.
    3. **updatePriority:** one of "Critical" (0-25), "High" (26-50),
       "Medium" (51-75) or "Healthy" (76-100).
    4. **justification:** one concise sentence explaining the score.
    5. **JSON Structure:**
       {
         "healthScore": 42,
         "updatePriority": "High",
         "justification": "..."
       }

    Your ENTIRE response MUST be ONLY the JSON object, starting with { and
    ending with }.
""")


def _health_analyzer_user(content: str) -> str:
    return (
        "Analyze the following blog post content and provide its SEO health score.\n\n"
        f"<content>\n{content[:MAX_HEALTH_SNIPPET_CHARS]}\n</content>"
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

PROMPT_TEMPLATES: Dict[str, PromptTemplate] = {
    TASK_CLUSTER_PLANNER: PromptTemplate(
        TASK_CLUSTER_PLANNER, _CLUSTER_PLANNER_SYSTEM, _cluster_planner_user
    ),
    TASK_META_AND_OUTLINE: PromptTemplate(
        TASK_META_AND_OUTLINE, _META_AND_OUTLINE_SYSTEM, _meta_and_outline_user
    ),
    TASK_WRITE_SECTION: PromptTemplate(
        TASK_WRITE_SECTION, _WRITE_SECTION_SYSTEM, _write_section_user
    ),
    TASK_WRITE_FAQ: PromptTemplate(
        TASK_WRITE_FAQ, _WRITE_FAQ_SYSTEM, _write_faq_user
    ),
    TASK_SEMANTIC_KEYWORDS: PromptTemplate(
        TASK_SEMANTIC_KEYWORDS, _SEMANTIC_KEYWORDS_SYSTEM, _semantic_keywords_user
    ),
    TASK_HEALTH_ANALYZER: PromptTemplate(
        TASK_HEALTH_ANALYZER, _HEALTH_ANALYZER_SYSTEM, _health_analyzer_user
    ),
}


def get_template(name: str) -> PromptTemplate:
    try:
        return PROMPT_TEMPLATES[name]
    except KeyError:
        raise KeyError(f"Unknown prompt template: {name!r}") from None

"""
Shared fixtures for the content engine test suite.

Provides mock HTTP sessions, a scripted text provider and sample site pages
so that all tests run WITHOUT any external services.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from content_engine.config import EngineConfig, WordPressConfig
from content_engine.models import SitemapPage
from content_engine.providers import TextGenerator


# ---------------------------------------------------------------------------
# HTTP mock fixtures
# ---------------------------------------------------------------------------

def make_response(status=200, json_data=None, text="", headers=None, body=None):
    """A mock aiohttp response usable inside ``async with``."""
    if body is None:
        body = json.dumps(json_data).encode("utf-8") if json_data is not None else text.encode("utf-8")
    resp = AsyncMock()
    resp.status = status
    resp.read = AsyncMock(return_value=body)
    resp.json = AsyncMock(return_value=json_data or {})
    resp.text = AsyncMock(return_value=text)
    resp.headers = headers or {"Content-Type": "application/json"}
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def make_mock_session(*outcomes):
    """Create a mock aiohttp session whose .request() returns async context managers.

    Each outcome is either a response mock (from ``make_response``) or an
    exception instance raised when the request is entered. Outcomes are
    consumed in call order.
    """
    mock_session = AsyncMock()
    contexts = []
    for outcome in outcomes:
        ctx = AsyncMock()
        if isinstance(outcome, BaseException):
            ctx.__aenter__ = AsyncMock(side_effect=outcome)
        else:
            ctx.__aenter__ = AsyncMock(return_value=outcome)
        ctx.__aexit__ = AsyncMock(return_value=False)
        contexts.append(ctx)
    mock_session.request = MagicMock(side_effect=contexts)
    mock_session.close = AsyncMock()
    mock_session.closed = False
    return mock_session


@pytest.fixture
def mock_aiohttp_response():
    """Create a mock aiohttp response factory."""
    return make_response


@pytest.fixture
def mock_session_factory():
    """Factory for sessions that replay a scripted list of responses."""
    return make_mock_session


# ---------------------------------------------------------------------------
# AI provider fixtures
# ---------------------------------------------------------------------------

Responder = Union[str, Exception, Callable[[str, str], str]]


class ScriptedTextGenerator(TextGenerator):
    """TextGenerator that answers from a per-task script.

    ``script`` maps a task name to a string, an exception to raise, a
    callable ``(system, user) -> str`` or a list consumed one entry per call.
    Every call is recorded in ``calls`` as ``(task, user_prompt, json_mode)``.
    """

    name = "scripted"

    def __init__(self, script: Optional[Dict[str, Any]] = None):
        super().__init__(max_attempts=1, base_delay=0)
        self.script: Dict[str, Any] = dict(script or {})
        self.calls: List[tuple] = []

    def tasks(self) -> List[str]:
        return [c[0] for c in self.calls]

    async def _generate(self, system_instruction, user_prompt, json_mode, task) -> str:
        self.calls.append((task, user_prompt, json_mode))
        entry = self.script.get(task, "")
        if isinstance(entry, list):
            entry = entry.pop(0) if entry else ""
        if isinstance(entry, Exception):
            raise entry
        if callable(entry):
            return entry(system_instruction, user_prompt)
        return entry


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedTextGenerator instances."""
    return ScriptedTextGenerator


# ---------------------------------------------------------------------------
# Configuration and site fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine_config():
    """EngineConfig with no keys and default thresholds."""
    return EngineConfig(ai_provider="gemini")


@pytest.fixture
def wp_config():
    return WordPressConfig(
        url="https://example.com/",
        username="editor",
        app_password="abcd efgh ijkl mnop",
    )


@pytest.fixture
def sitemap_pages():
    """Known pages on the target site, used as internal-link targets."""
    return [
        SitemapPage(
            id="https://example.com/seo-guide/",
            title="The Complete SEO Guide",
            slug="seo-guide",
        ),
        SitemapPage(
            id="https://example.com/keyword-research-basics/",
            title="Keyword Research Basics Explained",
            slug="keyword-research-basics",
        ),
        SitemapPage(
            id="https://example.com/link-building/",
            title="Link Building Strategies That Work",
            slug="link-building",
        ),
        SitemapPage(
            id="https://example.com/about/",
            title="About",
            slug="about",
        ),
    ]

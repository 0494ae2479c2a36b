"""
Resilient Fetch Layer.

Two strategies over aiohttp:

* ``fetch_with_relays`` — direct request with browser-identity headers, then
  an ordered list of public relay endpoints, each independently timed out.
  Used for sitemaps, page crawls and the search-data API.
* ``fetch_wordpress`` — WordPress REST calls. Requests carrying an
  ``Authorization`` header go direct only (relays strip credentials) and the
  raw response is handed back for diagnosis. Anonymous requests fall back
  through relays, accepting OK or any 4xx.

Neither strategy backs off; retry-with-backoff belongs to the AI gateway.

Usage:
    from content_engine.fetcher import fetch_with_relays

    resp = await fetch_with_relays("https://example.com/sitemap.xml")
    xml = resp.text()
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
from urllib.parse import quote, urlparse

import aiohttp

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("fetcher")
logger.setLevel(logging.DEBUG)

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_handler)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REQUEST_TIMEOUT = 20  # seconds
WORDPRESS_REQUEST_TIMEOUT = 30  # seconds, uploads can be large

BROWSER_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}

# Relay builders: target URL -> relay URL
GENERAL_RELAYS: List[Callable[[str], str]] = [
    lambda url: f"https://corsproxy.io/?{url}",
    lambda url: f"https://api.codetabs.com/v1/proxy?quest={quote(url, safe='')}",
    lambda url: f"https://api.allorigins.win/raw?url={quote(url, safe='')}",
    lambda url: f"https://thingproxy.freeboard.io/fetch/{url}",
]

WORDPRESS_RELAYS: List[Callable[[str], str]] = [
    lambda url: f"https://corsproxy.io/?{quote(url, safe='')}",
    lambda url: f"https://api.allorigins.win/raw?url={quote(url, safe='')}",
]

RELAY_FAILURE_MESSAGE = (
    "Failed to fetch the resource. This is often due to a network or CORS issue "
    "where the relay servers are blocked by the website's security (like "
    "Cloudflare or a firewall), or the target server is too slow to respond.\n\n"
    "Please check that:\n"
    "1. The URL is correct and publicly accessible.\n"
    "2. The website's security settings aren't blocking anonymous relay access.\n"
    "3. Your internet connection is stable."
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """Base exception for fetch-layer failures."""

    def __init__(self, message: str, url: str = ""):
        self.url = url
        super().__init__(message)


class FetchTimeoutError(FetchError):
    """A request exceeded its timeout."""


class RelayExhaustedError(FetchError):
    """The direct attempt and every relay failed."""

    def __init__(self, message: str, url: str = "", last_error: Optional[BaseException] = None):
        self.last_error = last_error
        super().__init__(message, url)


class DirectConnectionError(FetchError):
    """Authenticated request could not reach the server directly (network or CORS)."""


# ---------------------------------------------------------------------------
# Response container
# ---------------------------------------------------------------------------


@dataclass
class FetchResponse:
    """Fully-read HTTP response, independent of the session that produced it."""

    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""
    via: str = "direct"

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.text())

    def json_or_empty(self) -> Any:
        """Parsed JSON body, or ``{}`` when the body is not JSON."""
        try:
            return self.json()
        except (json.JSONDecodeError, ValueError):
            return {}


# ---------------------------------------------------------------------------
# Low-level request
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _session_scope(session: Optional[aiohttp.ClientSession]) -> AsyncIterator[aiohttp.ClientSession]:
    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as own_session:
        yield own_session


async def _send(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    data: Any = None,
    json_data: Any = None,
    timeout: float = REQUEST_TIMEOUT,
) -> FetchResponse:
    """Issue one request and read the whole body inside the response context."""
    kwargs: Dict[str, Any] = {"timeout": aiohttp.ClientTimeout(total=timeout)}
    if headers:
        kwargs["headers"] = headers
    if data is not None:
        kwargs["data"] = data
    if json_data is not None:
        kwargs["json"] = json_data

    async with session.request(method, url, **kwargs) as resp:
        body = await resp.read()
        return FetchResponse(
            status=resp.status,
            body=body,
            headers=dict(resp.headers),
            url=url,
        )


def _short_host(url: str) -> str:
    return urlparse(url).hostname or url


def _has_credentials(headers: Optional[Dict[str, str]]) -> bool:
    return any(k.lower() == "authorization" and v for k, v in (headers or {}).items())


# ---------------------------------------------------------------------------
# General strategy: direct, then relays
# ---------------------------------------------------------------------------


async def fetch_with_relays(
    url: str,
    method: str = "GET",
    *,
    headers: Optional[Dict[str, str]] = None,
    data: Any = None,
    json_data: Any = None,
    timeout: float = REQUEST_TIMEOUT,
    session: Optional[aiohttp.ClientSession] = None,
) -> FetchResponse:
    """
    Fetch *url* directly, falling back through public relays.

    Caller headers override the browser-identity defaults. Returns the first
    response with a 2xx status.

    Raises
    ------
    RelayExhaustedError
        If the direct attempt and every relay failed. The message includes
        the last observed error.
    """
    merged_headers = {**BROWSER_HEADERS, **(headers or {})}
    last_error: Optional[BaseException] = None

    async with _session_scope(session) as sess:
        try:
            logger.debug("Attempting direct fetch (no relay): %s", url)
            resp = await _send(
                sess, method, url,
                headers=merged_headers, data=data, json_data=json_data, timeout=timeout,
            )
            if resp.ok:
                logger.debug("Fetched directly: %s", url)
                return resp
            last_error = FetchError(f"Direct request failed with status {resp.status}", url)
        except asyncio.TimeoutError:
            last_error = FetchTimeoutError(f"Direct request timed out after {timeout}s", url)
        except aiohttp.ClientError as exc:
            logger.warning("Direct fetch failed (%s). Proceeding with relays.", type(exc).__name__)
            last_error = exc

        for index, build in enumerate(GENERAL_RELAYS, start=1):
            relay_url = build(url)
            host = _short_host(relay_url)
            try:
                logger.info("Attempting fetch via relay #%d (%s)...", index, host)
                resp = await _send(
                    sess, method, relay_url,
                    headers=merged_headers, data=data, json_data=json_data, timeout=timeout,
                )
                if resp.ok:
                    logger.info("Fetched via relay #%d (%s)", index, host)
                    resp.via = host
                    resp.url = url
                    return resp
                last_error = FetchError(
                    f"Relay request failed with status {resp.status} for {host}. "
                    f"Response: {resp.text()[:100]}",
                    url,
                )
            except asyncio.TimeoutError:
                logger.error("Fetch via relay #%d (%s) timed out after %ss.", index, host, timeout)
                last_error = FetchTimeoutError(f"Request timed out for relay: {host}", url)
            except aiohttp.ClientError as exc:
                logger.error("Fetch via relay #%d (%s) failed: %s", index, host, exc)
                last_error = exc

    message = RELAY_FAILURE_MESSAGE
    if last_error is not None:
        message = f"{message}\n\nLast Error: {last_error}"
    raise RelayExhaustedError(message, url=url, last_error=last_error)


# ---------------------------------------------------------------------------
# WordPress strategy: direct-only when authenticated
# ---------------------------------------------------------------------------


async def fetch_wordpress(
    url: str,
    method: str = "GET",
    *,
    headers: Optional[Dict[str, str]] = None,
    data: Any = None,
    json_data: Any = None,
    timeout: float = WORDPRESS_REQUEST_TIMEOUT,
    session: Optional[aiohttp.ClientSession] = None,
) -> FetchResponse:
    """
    Fetch a WordPress REST endpoint.

    Authenticated requests are sent direct only and returned regardless of
    status so the caller can tell auth failures from connectivity failures.
    Anonymous requests try direct, then relays, accepting OK or any 4xx.

    Raises
    ------
    FetchTimeoutError
        Authenticated request timed out.
    DirectConnectionError
        Authenticated request could not connect (network/CORS).
    RelayExhaustedError
        Anonymous request failed on every path.
    """
    async with _session_scope(session) as sess:
        if _has_credentials(headers):
            try:
                return await _send(
                    sess, method, url,
                    headers=headers, data=data, json_data=json_data, timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                raise FetchTimeoutError("WordPress API request timed out.", url) from exc
            except aiohttp.ClientError as exc:
                raise DirectConnectionError(
                    f"Could not connect to {_short_host(url)}: {exc}", url
                ) from exc

        last_error: Optional[BaseException] = None
        try:
            resp = await _send(
                sess, method, url,
                headers=headers, data=data, json_data=json_data, timeout=timeout,
            )
            if resp.ok or resp.is_client_error:
                return resp
            last_error = FetchError(f"Direct connection failed with status {resp.status}", url)
        except asyncio.TimeoutError:
            last_error = FetchTimeoutError("Direct WordPress request timed out.", url)
        except aiohttp.ClientError as exc:
            logger.warning(
                "Direct WP API call failed (likely CORS or network issue). Trying relays. %s",
                type(exc).__name__,
            )
            last_error = exc

        for build in WORDPRESS_RELAYS:
            relay_url = build(url)
            host = _short_host(relay_url)
            try:
                logger.info("Attempting WP API call via relay: %s", host)
                resp = await _send(
                    sess, method, relay_url,
                    headers=headers, data=data, json_data=json_data, timeout=timeout,
                )
                if resp.ok or resp.is_client_error:
                    resp.via = host
                    resp.url = url
                    return resp
                last_error = FetchError(
                    f"Relay request failed with status {resp.status} for {host}. "
                    f"Response: {resp.text()[:100]}",
                    url,
                )
            except asyncio.TimeoutError:
                logger.error("Fetch via relay %s timed out.", host)
                last_error = FetchTimeoutError(f"Request timed out for relay: {host}", url)
            except aiohttp.ClientError as exc:
                last_error = exc

    raise RelayExhaustedError(
        f"All attempts to connect to the WordPress API failed. Last Error: {last_error}",
        url=url,
        last_error=last_error,
    )

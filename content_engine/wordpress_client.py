"""
WordPress publishing adapter.

Publishes generated articles through the WP REST API with an application
password: uploads every generated image to the media library, swaps the
inline data URIs (or leftover placeholders) for the hosted URLs, then
creates a new post or updates the post an item is rewriting.

Failures come back as a PublishResult / ConnectionReport with a WpErrorKind
and an operator-facing remedy rather than as exceptions, so a bulk publish
keeps going past a bad item.

Usage:
    from content_engine.config import load_config
    from content_engine.wordpress_client import WordPressPublisher

    publisher = WordPressPublisher(load_config().wordpress)
    report = await publisher.verify_connection()
    if report.ok:
        result = await publisher.publish_item(item)
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import aiohttp

from content_engine.concurrency import process_concurrently
from content_engine.config import WordPressConfig
from content_engine.fetcher import (
    DirectConnectionError,
    FetchError,
    FetchResponse,
    fetch_wordpress,
)
from content_engine.html_utils import extract_slug_from_url
from content_engine.models import ContentItem, ImageDetail, PublishState, SitemapPage

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("wordpress_client")
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

DEFAULT_PUBLISH_CONCURRENCY = 3
MAX_FILENAME_LENGTH = 50
DEFAULT_POST_STATUS = "publish"

_DATA_URI_RE = re.compile(r"^data:([^;,]+)?(;base64)?,(.*)$", re.DOTALL)


class WpErrorKind(str, Enum):
    CORS = "CORS"
    AUTH = "AUTH"
    UNREACHABLE = "UNREACHABLE"
    GENERAL = "GENERAL"


REMEDIES: Dict[WpErrorKind, str] = {
    WpErrorKind.CORS: (
        "Connection blocked by server (CORS). Your credentials are likely correct, "
        "but the WordPress server is blocking the connection.\n"
        "Primary solution: add this line to the very top of the .htaccess file "
        "in the WordPress root directory:\n"
        '    SetEnvIf Authorization "(.*)" HTTP_AUTHORIZATION=$1\n'
        "Also check: temporarily disable security plugins (Wordfence, iThemes "
        "Security) and make sure the user is an Administrator or Editor."
    ),
    WpErrorKind.AUTH: (
        "Authentication failed (401). Double-check the WordPress username and the "
        "application password. Make sure the password was copied correctly and "
        "has not been revoked."
    ),
    WpErrorKind.UNREACHABLE: (
        "Connection failed. Could not reach the WordPress REST API. Verify the "
        "WordPress URL is correct and that the site is online. Firewalls or "
        "security plugins could also be blocking all access."
    ),
}


def connection_help(kind: WpErrorKind, details: str = "") -> str:
    """Operator-facing remedy for a publishing failure."""
    if kind == WpErrorKind.GENERAL:
        return f"An unexpected error occurred: {details}"
    return REMEDIES[kind]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WordPressError(Exception):
    """Base exception for WordPress API errors."""

    kind = WpErrorKind.GENERAL

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class AuthenticationError(WordPressError):
    """Raised on 401/403 responses."""

    kind = WpErrorKind.AUTH


class WordPressConnectionError(WordPressError):
    """Authenticated request never reached the API (CORS or network)."""

    kind = WpErrorKind.CORS


class NotConfiguredError(WordPressError):
    """URL, username or application password is missing."""


def classify_publish_error(exc: BaseException) -> WpErrorKind:
    """CORS for connectivity failures, AUTH for 401/403, GENERAL otherwise."""
    if isinstance(exc, WordPressError) and exc.kind != WpErrorKind.GENERAL:
        return exc.kind
    message = str(exc)
    if isinstance(exc, DirectConnectionError) or "cors" in message.lower():
        return WpErrorKind.CORS
    if getattr(exc, "status_code", 0) in (401, 403) or "401" in message:
        return WpErrorKind.AUTH
    return WpErrorKind.GENERAL


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ConnectionReport:
    ok: bool
    message: str
    kind: Optional[WpErrorKind] = None
    user_name: str = ""
    can_publish: bool = False
    details: str = ""


@dataclass
class PublishResult:
    success: bool
    message: str
    link: Optional[str] = None
    error_kind: Optional[WpErrorKind] = None
    item_id: str = ""
    post_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Media helpers
# ---------------------------------------------------------------------------


def decode_data_uri(uri: str) -> Tuple[str, bytes]:
    """
    Split a ``data:`` URI into its MIME type and raw bytes.

    Raises
    ------
    ValueError
        If *uri* is not a data URI or its payload is not valid base64.
    """
    match = _DATA_URI_RE.match(uri or "")
    if not match:
        raise ValueError("Image source is not a data URI.")
    mime_type = match.group(1) or "application/octet-stream"
    payload = match.group(3)
    if not match.group(2):
        return mime_type, payload.encode("utf-8")
    try:
        return mime_type, base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 image payload: {exc}") from exc


def safe_filename(title: str) -> str:
    """Media filename from an image title: non-alphanumerics to hyphens, 50 chars, ``.jpg``."""
    return re.sub(r"[^a-z0-9]", "-", title or "", flags=re.IGNORECASE).lower()[:MAX_FILENAME_LENGTH] + ".jpg"


def _error_message(resp: FetchResponse, default: str) -> str:
    body = resp.json_or_empty()
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return default


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


class WordPressPublisher:
    """
    Publishes ContentItems to one WordPress site.

    Parameters
    ----------
    config : WordPressConfig
        Site URL and application-password credentials.
    session : aiohttp.ClientSession, optional
        Shared session for every request.
    pages : list of SitemapPage, optional
        Known site pages; a successful rewrite marks its page ``updated``.
    """

    def __init__(
        self,
        config: WordPressConfig,
        session: Optional[aiohttp.ClientSession] = None,
        pages: Optional[Sequence[SitemapPage]] = None,
    ):
        self.config = config
        self._session = session
        self.pages: List[SitemapPage] = list(pages or [])

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_data: Optional[Dict[str, Any]] = None,
        data: Any = None,
    ) -> FetchResponse:
        """Authenticated request, sent direct. Returns the response whatever its status.

        Raises
        ------
        WordPressConnectionError
            If the server could not be reached (network or CORS).
        WordPressError
            On timeout.
        """
        headers = {"Authorization": self.config.auth_header}
        if json_data is not None:
            headers["Content-Type"] = "application/json"
        logger.debug("API %s %s", method.upper(), url)
        try:
            return await fetch_wordpress(
                url, method, headers=headers, json_data=json_data, data=data, session=self._session,
            )
        except DirectConnectionError as exc:
            raise WordPressConnectionError(str(exc)) from exc
        except FetchError as exc:
            raise WordPressError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Connection check
    # ------------------------------------------------------------------

    async def _diagnose_unreachable(self, details: str) -> ConnectionReport:
        """The authenticated call never connected: tell CORS from a dead site."""
        try:
            resp = await fetch_wordpress(self.config.base_url, "GET", session=self._session)
        except FetchError as exc:
            logger.error("WordPress REST root unreachable: %s", exc)
            return ConnectionReport(
                False,
                connection_help(WpErrorKind.UNREACHABLE),
                WpErrorKind.UNREACHABLE,
                details="The WordPress URL is incorrect or the site is offline.",
            )
        if resp.ok:
            logger.warning("REST root reachable but authenticated request blocked, likely CORS")
            return ConnectionReport(False, connection_help(WpErrorKind.CORS), WpErrorKind.CORS, details=details)
        return ConnectionReport(
            False,
            connection_help(WpErrorKind.UNREACHABLE),
            WpErrorKind.UNREACHABLE,
            details=f"The REST API is not working correctly (HTTP {resp.status}).",
        )

    async def verify_connection(self) -> ConnectionReport:
        """
        Check credentials and publish capability.

        Calls ``/wp/v2/users/me?context=edit``. When that request cannot
        connect at all, the REST root is probed anonymously to tell a CORS
        block (root reachable) from an unreachable site.
        """
        if not self.config.is_configured:
            return ConnectionReport(False, "URL, Username, and Application Password are required.")

        url = f"{self.config.api_url}/users/me?context=edit"
        try:
            resp = await self._request("GET", url)
        except WordPressConnectionError as exc:
            return await self._diagnose_unreachable(str(exc))
        except WordPressError as exc:
            return ConnectionReport(
                False, connection_help(WpErrorKind.GENERAL, str(exc)), WpErrorKind.GENERAL, details=str(exc),
            )

        if resp.status == 401:
            details = "Authentication failed (401). Incorrect Username or Application Password."
            return ConnectionReport(False, connection_help(WpErrorKind.AUTH), WpErrorKind.AUTH, details=details)
        if not resp.ok:
            details = _error_message(resp, f"API returned HTTP {resp.status}")
            return ConnectionReport(
                False, connection_help(WpErrorKind.GENERAL, details), WpErrorKind.GENERAL, details=details,
            )

        data = resp.json_or_empty()
        name = str(data.get("name", "")) if isinstance(data, dict) else ""
        capabilities = data.get("capabilities") if isinstance(data, dict) else None
        can_publish = bool((capabilities or {}).get("publish_posts"))
        if not can_publish:
            return ConnectionReport(
                False,
                f"Connected as {name}, but user lacks permission to publish posts. "
                "Please use an Administrator or Editor account.",
                user_name=name,
            )

        logger.info("Verified WordPress connection to %s as %s", self.config.url, name)
        return ConnectionReport(
            True, f"Success! Connected as {name} with publish permissions.", user_name=name, can_publish=True,
        )

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def upload_media(self, image: ImageDetail) -> Dict[str, Any]:
        """
        Upload an image's generated payload to the media library.

        Returns
        -------
        dict
            Media object with at least ``id`` and ``source_url``.

        Raises
        ------
        ValueError
            If the image has no payload or it is not a valid data URI.
        AuthenticationError
            On 401 or 403.
        WordPressError
            On any other non-2xx response.
        """
        if not image.generated_image_src:
            raise ValueError(f"Image {image.title!r} has no generated payload to upload.")

        mime_type, payload = decode_data_uri(image.generated_image_src)
        filename = safe_filename(image.title)

        form = aiohttp.FormData()
        form.add_field("file", payload, filename=filename, content_type=mime_type)
        form.add_field("title", image.title)
        form.add_field("alt_text", image.alt_text)
        form.add_field("caption", image.alt_text)

        resp = await self._request("POST", f"{self.config.api_url}/media", data=form)
        if resp.status == 401:
            raise AuthenticationError("Authentication failed (401). Check credentials.", 401, resp.text())
        if resp.status == 403:
            raise AuthenticationError(
                "Forbidden (403). User may lack permissions or be blocked by security.", 403, resp.text(),
            )
        if not resp.ok:
            raise WordPressError(
                _error_message(resp, f"Media upload failed with HTTP {resp.status}"), resp.status, resp.text(),
            )

        media = resp.json()
        logger.info("Uploaded media %s: id=%s, url=%s", filename, media.get("id"), media.get("source_url", ""))
        return media

    @staticmethod
    def substitute_media(content: str, image: ImageDetail, media: Dict[str, Any]) -> str:
        """Point the article at the hosted image instead of the inline payload or placeholder."""
        new_tag = (
            f'<img src="{media.get("source_url", "")}" alt="{image.alt_text}" '
            f'class="wp-image-{media.get("id")}" title="{image.title}"/>'
        )
        old_tag = re.compile(rf'<img[^>]*src="{re.escape(image.generated_image_src or "")}"[^>]*>')
        if old_tag.search(content):
            return old_tag.sub(lambda _m: new_tag, content)
        if image.placeholder and image.placeholder in content:
            figure = (
                f'<figure class="wp-block-image size-large">{new_tag}'
                f"<figcaption>{image.alt_text}</figcaption></figure>"
            )
            return content.replace(image.placeholder, figure)
        return content

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def find_post_id_by_slug(self, slug: str) -> Optional[int]:
        """ID of the post with *slug*, or None if there is none.

        Raises
        ------
        WordPressError
            If the lookup itself fails.
        """
        resp = await self._request("GET", f"{self.config.api_url}/posts?slug={quote(slug)}")
        if not resp.ok:
            raise WordPressError(
                _error_message(resp, f"Could not find existing post (HTTP {resp.status})"), resp.status, resp.text(),
            )
        posts = resp.json_or_empty()
        if isinstance(posts, list) and posts:
            return posts[0].get("id")
        return None

    async def publish_item(self, item: ContentItem, status: str = DEFAULT_POST_STATUS) -> PublishResult:
        """
        Publish (or, for rewrites, update) one item.

        Images are uploaded first; the item's generated content itself is
        left untouched, substitutions happen on a copy of the HTML.
        """
        if not self.config.is_configured:
            return PublishResult(
                False, "WordPress URL, Username, and Application Password are required.", item_id=item.id,
            )
        generated = item.generated_content
        if generated is None:
            return PublishResult(False, "No content available to publish.", item_id=item.id)

        content = generated.content

        # 1. Media
        try:
            for image in generated.image_details:
                if image.generated_image_src:
                    media = await self.upload_media(image)
                    content = self.substitute_media(content, image, media)
        except (WordPressError, FetchError, ValueError) as exc:
            kind = classify_publish_error(exc)
            details = str(exc) if kind != WpErrorKind.GENERAL else f"Media upload failed: {exc}"
            logger.error("Media upload failed for %r: %s", item.id, exc)
            return PublishResult(False, connection_help(kind, details), error_kind=kind, item_id=item.id)

        # 2. Existing post for rewrites
        post_id: Optional[int] = None
        if item.is_rewrite:
            slug = extract_slug_from_url(item.original_url or "")
            try:
                post_id = await self.find_post_id_by_slug(slug)
            except (WordPressError, FetchError) as exc:
                return PublishResult(
                    False, f"Failed to find original post: {exc}",
                    error_kind=classify_publish_error(exc), item_id=item.id,
                )
            if post_id is None:
                logger.warning("Could not find existing post with slug %r. A new post will be created.", slug)

        # 3. Create or update
        post_data = {
            "title": generated.title,
            "content": content,
            "status": status,
            "slug": generated.slug,
            "excerpt": generated.meta_description,
        }
        endpoint = f"{self.config.api_url}/posts/{post_id}" if post_id else f"{self.config.api_url}/posts"
        try:
            resp = await self._request("POST", endpoint, json_data=post_data)
        except (WordPressError, FetchError) as exc:
            kind = classify_publish_error(exc)
            logger.error("Publishing %r failed: %s", item.id, exc)
            return PublishResult(False, connection_help(kind, str(exc)), error_kind=kind, item_id=item.id)

        if not resp.ok:
            message = _error_message(resp, f"HTTP {resp.status}")
            logger.error("WP Error publishing %r: %s", item.id, message)
            if resp.status in (401, 403):
                return PublishResult(
                    False, connection_help(WpErrorKind.AUTH, message),
                    error_kind=WpErrorKind.AUTH, item_id=item.id,
                )
            return PublishResult(False, f"WP Error: {message}", error_kind=WpErrorKind.GENERAL, item_id=item.id)

        body = resp.json_or_empty()
        link = body.get("link") if isinstance(body, dict) else None
        action = "updated" if post_id else "published"
        logger.info("Successfully %s %r: %s", action, item.id, link)
        return PublishResult(
            True,
            f"Successfully {action}!",
            link=link,
            item_id=item.id,
            post_id=body.get("id") if isinstance(body, dict) else post_id,
        )

    def _mark_updated(self, original_url: Optional[str]) -> None:
        for page in self.pages:
            if page.id == original_url:
                page.publish_state = PublishState.UPDATED

    async def publish_many(
        self,
        items: Sequence[ContentItem],
        concurrency: int = DEFAULT_PUBLISH_CONCURRENCY,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[PublishResult]:
        """
        Publish *items* with bounded parallelism.

        Returns one result per item in input order. Successful rewrites mark
        their SitemapPage ``updated``.
        """
        items = list(items)
        results: Dict[int, PublishResult] = {}
        indexed = list(enumerate(items))

        async def _publish(entry: Tuple[int, ContentItem]) -> None:
            index, item = entry
            result = await self.publish_item(item)
            if result.success and item.is_rewrite:
                self._mark_updated(item.original_url)
            results[index] = result

        logger.info("Bulk publishing %d item(s), concurrency=%d", len(items), concurrency)
        await process_concurrently(indexed, _publish, concurrency=concurrency, on_progress=on_progress)

        succeeded = sum(1 for r in results.values() if r.success)
        logger.info("Bulk publish complete: %d/%d succeeded", succeeded, len(items))
        return [results[i] for i in range(len(items))]

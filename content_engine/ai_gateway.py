"""
AI Invocation Gateway — retry and failure classification for provider calls.

Every provider call goes through ``call_ai_with_retry``. Errors are classified
into a small set of categories; client errors fail fast, rate limits honour
``Retry-After``, server and unclassified errors back off exponentially with
jitter.

Usage:
    from content_engine.ai_gateway import call_ai_with_retry

    text = await call_ai_with_retry(lambda: client.messages.create(...))
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

logger = logging.getLogger("ai_gateway")

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 5.0  # seconds
MAX_JITTER = 1.0  # seconds
RETRY_AFTER_BUFFER = 0.5  # seconds
RATE_LIMIT_PATIENCE = 2.0  # backoff multiplier for 429 without Retry-After

_STATUS_IN_MESSAGE_RE = re.compile(r"\[(\d{3})[^\]]*\]")


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorCategory(str, Enum):
    """How a failed provider call should be treated."""

    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    CONTEXT_LENGTH = "context_length"
    INVALID_API_KEY = "invalid_api_key"
    TRANSIENT = "transient"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_CATEGORIES


RETRYABLE_CATEGORIES = {
    ErrorCategory.RATE_LIMITED,
    ErrorCategory.SERVER_ERROR,
    ErrorCategory.TRANSIENT,
}

RECOVERY_HINTS: Dict[ErrorCategory, str] = {
    ErrorCategory.RATE_LIMITED: "Wait for the rate limit to reset or reduce concurrency.",
    ErrorCategory.SERVER_ERROR: "Provider is having trouble; retry later or switch provider.",
    ErrorCategory.CLIENT_ERROR: "Check the request parameters and model name.",
    ErrorCategory.CONTEXT_LENGTH: "Reduce the prompt size or choose a model with a longer context.",
    ErrorCategory.INVALID_API_KEY: "Check the API key in the engine configuration.",
    ErrorCategory.TRANSIENT: "Check network connectivity.",
}


class AIProviderError(Exception):
    """Provider failure carrying an HTTP status and response headers when known."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.status_code = status_code
        self.headers = dict(headers or {})
        super().__init__(message)


def extract_status_code(exc: BaseException) -> Optional[int]:
    """HTTP status of *exc* from its attributes or a ``[NNN ...]`` message tag."""
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    match = _STATUS_IN_MESSAGE_RE.search(str(exc))
    if match:
        return int(match.group(1))
    return None


def _extract_headers(exc: BaseException) -> Mapping[str, Any]:
    headers = getattr(exc, "headers", None)
    if headers is None:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
    return headers or {}


def get_retry_after(exc: BaseException) -> Optional[str]:
    headers = _extract_headers(exc)
    try:
        for key, value in headers.items():
            if str(key).lower() == "retry-after":
                return str(value)
    except AttributeError:
        return None
    return None


def classify_ai_error(exc: BaseException) -> ErrorCategory:
    """Map a provider exception to an ErrorCategory."""
    message = str(exc).lower()
    status = extract_status_code(exc)

    if status == 429:
        return ErrorCategory.RATE_LIMITED
    if status is not None and 400 <= status < 500:
        return ErrorCategory.CLIENT_ERROR
    if "context length" in message or "token limit" in message:
        return ErrorCategory.CONTEXT_LENGTH
    if "api key not valid" in message or "invalid api key" in message:
        return ErrorCategory.INVALID_API_KEY
    if status is not None and status >= 500:
        return ErrorCategory.SERVER_ERROR
    return ErrorCategory.TRANSIENT


# ---------------------------------------------------------------------------
# Delay computation
# ---------------------------------------------------------------------------


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Convert a ``Retry-After`` header into a delay in seconds (buffer included).

    Accepts delta-seconds or an HTTP date. Returns None when unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return int(value) + RETRY_AFTER_BUFFER
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - current).total_seconds()) + RETRY_AFTER_BUFFER


def _exponential_backoff(attempt: int, base_delay: float) -> float:
    return base_delay * (2 ** attempt) + random.random() * MAX_JITTER


def compute_retry_delay(
    exc: BaseException,
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> float:
    """Seconds to wait before retrying after *exc* on zero-based *attempt*."""
    if classify_ai_error(exc) == ErrorCategory.RATE_LIMITED:
        retry_after = get_retry_after(exc)
        if retry_after:
            delay = parse_retry_after(retry_after)
            if delay is not None:
                logger.info("Rate limit hit. Provider requested a delay of %.1fs.", delay)
                return delay
            logger.info(
                "Rate limit hit. Could not parse 'Retry-After' header (%r). "
                "Using exponential backoff.", retry_after,
            )
        else:
            logger.info("Rate limit hit. No 'Retry-After' header found. Using exponential backoff.")
            return _exponential_backoff(attempt, base_delay * RATE_LIMIT_PATIENCE)
    return _exponential_backoff(attempt, base_delay)


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------


async def call_ai_with_retry(
    call: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> T:
    """
    Execute *call* with classification-aware retry.

    Parameters
    ----------
    call : callable
        Zero-argument callable returning an awaitable.
    max_attempts : int
        Total attempts including the first.
    base_delay : float
        Backoff baseline in seconds.

    Raises
    ------
    Exception
        The original error immediately for non-retriable failures, or the
        last error once attempts are exhausted.
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await call()
        except Exception as exc:
            last_error = exc
            category = classify_ai_error(exc)
            logger.error(
                "AI call failed on attempt %d/%d [%s]: %s",
                attempt + 1, max_attempts, category.value, exc,
            )

            if not category.retryable:
                logger.error(
                    "Non-retriable error (status=%s). Failing immediately. Hint: %s",
                    extract_status_code(exc), RECOVERY_HINTS[category],
                )
                raise

            if attempt == max_attempts - 1:
                logger.error("AI call failed on final attempt (%d).", max_attempts)
                raise

            delay = compute_retry_delay(exc, attempt, base_delay)
            logger.info("Retrying in %.0fms...", delay * 1000)
            await asyncio.sleep(delay)

    raise AIProviderError(f"AI call failed after all retries: {last_error}")

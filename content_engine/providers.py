"""
AI provider adapters.

Core code depends only on two capabilities:

* ``TextGenerator.generate(system_instruction, user_prompt, json_mode, task)``
* ``ImageGenerator.generate_image(prompt)`` returning a data URI

Each vendor SDK is wrapped by one variant, selected from configuration at
the boundary by ``build_text_provider`` / ``build_image_providers``. Every
SDK call goes through ``call_ai_with_retry``. SDK clients are created lazily
so that importing this module never requires every vendor package.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from content_engine.ai_gateway import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    AIProviderError,
    call_ai_with_retry,
)
from content_engine.config import EngineConfig

logger = logging.getLogger("providers")

# ---------------------------------------------------------------------------
# Model identifiers
# ---------------------------------------------------------------------------

GEMINI_TEXT_MODEL = "gemini-2.5-flash"
GEMINI_IMAGE_MODEL = "imagen-4.0-generate-001"
OPENAI_TEXT_MODEL = "gpt-4o"
OPENAI_IMAGE_MODEL = "dall-e-3"
ANTHROPIC_SONNET = "claude-3-7-sonnet-20250219"
ANTHROPIC_HAIKU = "claude-3-5-haiku-20241022"

ANTHROPIC_MAX_TOKENS = 4096
OPENAI_IMAGE_SIZE = "1792x1024"

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"


def _missing(package: str, pip_name: str) -> ImportError:
    return ImportError(
        f"The '{package}' package is required. Install with: pip install {pip_name}"
    )


# ---------------------------------------------------------------------------
# Text generation
# ---------------------------------------------------------------------------


class TextGenerator(ABC):
    """Uniform text-generation capability.

    Parameters
    ----------
    max_attempts, base_delay
        Passed through to ``call_ai_with_retry`` for every SDK call.
    """

    name = "base"

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS, base_delay: float = DEFAULT_BASE_DELAY):
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def generate(
        self,
        system_instruction: str,
        user_prompt: str,
        json_mode: bool = False,
        task: Optional[str] = None,
    ) -> str:
        """
        Return the model's text for one prompt.

        Raises
        ------
        AIProviderError
            If the provider returns an empty response.
        Exception
            Any non-retriable SDK error, or the last error after retries.
        """
        logger.debug(
            "[%s] task=%s json=%s system_len=%d user_len=%d",
            self.name, task, json_mode, len(system_instruction), len(user_prompt),
        )
        text = await self._generate(system_instruction, user_prompt, json_mode, task)
        if not text:
            raise AIProviderError(f"AI returned an empty response for the '{task or 'unknown'}' stage.")
        return text

    @abstractmethod
    async def _generate(
        self,
        system_instruction: str,
        user_prompt: str,
        json_mode: bool,
        task: Optional[str],
    ) -> str:
        ...

    async def _with_retry(self, call):
        return await call_ai_with_retry(call, self.max_attempts, self.base_delay)


class AnthropicProvider(TextGenerator):
    """Claude via the Anthropic Messages API. Section writing uses Haiku."""

    name = "anthropic"

    def __init__(self, api_key: str, client: Any = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self._async_client = client

    def _ensure_async_client(self) -> None:
        """Lazily initialize the async Anthropic client."""
        if self._async_client is None:
            try:
                import anthropic
            except ImportError:
                raise _missing("anthropic", "anthropic")
            self._async_client = anthropic.AsyncAnthropic(api_key=self.api_key)

    @staticmethod
    def model_for_task(task: Optional[str]) -> str:
        return ANTHROPIC_HAIKU if task and "section" in task else ANTHROPIC_SONNET

    async def _generate(self, system_instruction, user_prompt, json_mode, task) -> str:
        self._ensure_async_client()
        model = self.model_for_task(task)
        response = await self._with_retry(
            lambda: self._async_client.messages.create(
                model=model,
                max_tokens=ANTHROPIC_MAX_TOKENS,
                system=system_instruction,
                messages=[{"role": "user", "content": user_prompt}],
            )
        )
        return "".join(getattr(block, "text", "") for block in (response.content or []))


class OpenAIProvider(TextGenerator):
    """OpenAI-compatible chat completions (also the base for OpenRouter and Groq)."""

    name = "openai"
    base_url: Optional[str] = None

    def __init__(self, api_key: str, model: str = OPENAI_TEXT_MODEL, client: Any = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self._async_client = client

    def _ensure_async_client(self) -> None:
        if self._async_client is None:
            try:
                import openai
            except ImportError:
                raise _missing("openai", "openai")
            if self.base_url:
                self._async_client = openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
            else:
                self._async_client = openai.AsyncOpenAI(api_key=self.api_key)

    async def _complete(self, model: str, system_instruction: str, user_prompt: str, json_mode: bool) -> str:
        self._ensure_async_client()
        kwargs = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self._with_retry(lambda: self._async_client.chat.completions.create(**kwargs))
        return response.choices[0].message.content or ""

    async def _generate(self, system_instruction, user_prompt, json_mode, task) -> str:
        return await self._complete(self.model, system_instruction, user_prompt, json_mode)


class GroqProvider(OpenAIProvider):
    name = "groq"
    base_url = GROQ_BASE_URL


class OpenRouterProvider(OpenAIProvider):
    """
    OpenRouter with an ordered model list.

    Each model is tried in turn; the next model is used only when the
    previous one raised (after its own retries) or returned nothing.
    """

    name = "openrouter"
    base_url = OPENROUTER_BASE_URL

    def __init__(self, api_key: str, models: Sequence[str], client: Any = None, **kwargs):
        if not models:
            raise ValueError("OpenRouter needs at least one model name")
        super().__init__(api_key, model=models[0], client=client, **kwargs)
        self.models = list(models)

    async def _generate(self, system_instruction, user_prompt, json_mode, task) -> str:
        last_error: Optional[BaseException] = None
        for model in self.models:
            try:
                logger.info("[OpenRouter] Attempting '%s' with model: %s", task, model)
                content = await self._complete(model, system_instruction, user_prompt, json_mode)
                if not content:
                    raise AIProviderError("Empty response from model.")
                return content
            except Exception as exc:
                logger.error("OpenRouter model '%s' failed for '%s'. Trying next... %s", model, task, exc)
                last_error = exc
        if last_error is None:
            raise AIProviderError("OpenRouter has no models to try.")
        raise last_error


class GeminiProvider(TextGenerator):
    """Gemini via the google-genai SDK."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = GEMINI_TEXT_MODEL, client: Any = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.model = model
        self._client = client

    def _ensure_client(self) -> None:
        if self._client is None:
            try:
                from google import genai
            except ImportError:
                raise _missing("google-genai", "google-genai")
            self._client = genai.Client(api_key=self.api_key)

    async def _generate(self, system_instruction, user_prompt, json_mode, task) -> str:
        self._ensure_client()
        config = {
            "system_instruction": system_instruction,
            "response_mime_type": "application/json" if json_mode else "text/plain",
        }
        response = await self._with_retry(
            lambda: self._client.aio.models.generate_content(
                model=self.model, contents=user_prompt, config=config,
            )
        )
        return response.text or ""


# ---------------------------------------------------------------------------
# Image generation
# ---------------------------------------------------------------------------


class ImageGenerator(ABC):
    name = "base"

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS, base_delay: float = DEFAULT_BASE_DELAY):
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @abstractmethod
    async def generate_image(self, prompt: str) -> Optional[str]:
        """Return a ``data:image/...;base64,`` URI, or None."""


class OpenAIImageProvider(ImageGenerator):
    name = "openai"

    def __init__(self, api_key: str, client: Any = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self._async_client = client

    def _ensure_async_client(self) -> None:
        if self._async_client is None:
            try:
                import openai
            except ImportError:
                raise _missing("openai", "openai")
            self._async_client = openai.AsyncOpenAI(api_key=self.api_key)

    async def generate_image(self, prompt: str) -> Optional[str]:
        self._ensure_async_client()
        logger.info("Attempting image generation with OpenAI DALL-E 3...")
        response = await call_ai_with_retry(
            lambda: self._async_client.images.generate(
                model=OPENAI_IMAGE_MODEL,
                prompt=prompt,
                n=1,
                size=OPENAI_IMAGE_SIZE,
                response_format="b64_json",
            ),
            self.max_attempts,
            self.base_delay,
        )
        b64 = response.data[0].b64_json if response.data else None
        return f"data:image/png;base64,{b64}" if b64 else None


class GeminiImageProvider(ImageGenerator):
    name = "gemini"

    def __init__(self, api_key: str, client: Any = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self._client = client

    def _ensure_client(self) -> None:
        if self._client is None:
            try:
                from google import genai
            except ImportError:
                raise _missing("google-genai", "google-genai")
            self._client = genai.Client(api_key=self.api_key)

    async def generate_image(self, prompt: str) -> Optional[str]:
        self._ensure_client()
        logger.info("Attempting image generation with Google Imagen...")
        response = await call_ai_with_retry(
            lambda: self._client.aio.models.generate_images(
                model=GEMINI_IMAGE_MODEL,
                prompt=prompt,
                config={
                    "number_of_images": 1,
                    "output_mime_type": "image/jpeg",
                    "aspect_ratio": "16:9",
                },
            ),
            self.max_attempts,
            self.base_delay,
        )
        if not response.generated_images:
            return None
        image_bytes = response.generated_images[0].image.image_bytes
        if not image_bytes:
            return None
        if isinstance(image_bytes, bytes):
            image_bytes = base64.b64encode(image_bytes).decode("ascii")
        return f"data:image/jpeg;base64,{image_bytes}"


async def generate_image_with_fallback(
    providers: Sequence[ImageGenerator],
    prompt: str,
) -> Optional[str]:
    """Try each image provider in priority order; first data URI wins."""
    for provider in providers:
        try:
            image = await provider.generate_image(prompt)
            if image:
                logger.info("%s image generation successful.", provider.name)
                return image
        except Exception as exc:
            logger.warning("%s image generation failed, falling back. %s", provider.name, exc)
    logger.error("All image generation services failed or are unavailable.")
    return None


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def build_text_provider(config: EngineConfig) -> TextGenerator:
    """Instantiate the text provider named by ``config.ai_provider``.

    Raises
    ------
    ValueError
        If the selected provider has no API key.
    """
    name = config.ai_provider
    keys = config.api_keys
    if not keys.has(name):
        raise ValueError(f"API client for '{name}' not initialized: no API key configured.")

    if name == "anthropic":
        return AnthropicProvider(keys.anthropic)
    if name == "openai":
        return OpenAIProvider(keys.openai)
    if name == "openrouter":
        return OpenRouterProvider(keys.openrouter, config.openrouter_models)
    if name == "groq":
        return GroqProvider(keys.groq, model=config.groq_model)
    return GeminiProvider(keys.gemini)


def build_image_providers(config: EngineConfig) -> List[ImageGenerator]:
    """Image providers in fallback priority order: OpenAI first, then Gemini."""
    providers: List[ImageGenerator] = []
    if config.api_keys.openai:
        providers.append(OpenAIImageProvider(config.api_keys.openai))
    if config.api_keys.gemini:
        providers.append(GeminiImageProvider(config.api_keys.gemini))
    return providers

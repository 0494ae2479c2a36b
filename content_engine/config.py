"""
Engine configuration.

Settings are passed explicitly into the pipeline, providers and publisher;
nothing here is global mutable state. Secrets are never stored in the
settings file itself: each secret is named by an ``*_env`` key and resolved
from the environment at load time.

Usage:
    from content_engine.config import load_config

    config = load_config()                      # configs/engine.json or env
    config = load_config(Path("my-site.json"))
    config = EngineConfig.from_env()            # no file at all

Example ``configs/engine.json``::

    {
      "ai_provider": "anthropic",
      "api_keys": {"anthropic_env": "ANTHROPIC_API_KEY", "serper_env": "SERPER_API_KEY"},
      "wordpress": {"url": "https://example.com", "username": "editor",
                    "app_password_env": "WP_APP_PASSWORD"},
      "geo_target": "Austin, TX"
    }
"""

from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("config")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "engine.json"
CONFIG_ENV_VAR = "CONTENT_ENGINE_CONFIG"

SUPPORTED_PROVIDERS = ("gemini", "openai", "anthropic", "openrouter", "groq")

DEFAULT_OPENROUTER_MODELS: List[str] = [
    "google/gemini-2.5-flash",
    "anthropic/claude-3-haiku",
    "microsoft/wizardlm-2-8x22b",
    "openrouter/auto",
]

GROQ_MODELS: List[str] = [
    "llama-3.3-70b-versatile",
    "llama-3.1-8b-instant",
    "gemma2-9b-it",
    "llama3-70b-8192",
    "llama3-8b-8192",
    "mixtral-8x7b-32768",
    "gemma-7b-it",
    "meta-llama/llama-4-scout-17b-16e-instruct",
]

# Word-count bands
TARGET_MIN_WORDS = 2200
TARGET_MAX_WORDS = 2800
TARGET_MIN_WORDS_PILLAR = 3500
TARGET_MAX_WORDS_PILLAR = 4500

MIN_INTERNAL_LINKS = 8
MAX_INTERNAL_LINKS = 15
FAQ_COUNT = 8
KEY_TAKEAWAYS = 8
YOUTUBE_EMBED_COUNT = 2

CACHE_TTL_SECONDS = 3600

# Environment variables consulted by EngineConfig.from_env()
_ENV_KEYS: Dict[str, str] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "groq": "GROQ_API_KEY",
    "serper": "SERPER_API_KEY",
}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ApiKeys:
    """Credentials for AI and search-data providers. Empty string = not configured."""

    gemini: str = ""
    openai: str = ""
    anthropic: str = ""
    openrouter: str = ""
    groq: str = ""
    serper: str = ""

    def has(self, name: str) -> bool:
        return bool(getattr(self, name, ""))

    def __repr__(self) -> str:
        present = [name for name in _ENV_KEYS if self.has(name)]
        return f"ApiKeys(configured={present})"


@dataclass
class WordPressConfig:
    """Target WordPress site and its application-password credentials."""

    url: str = ""
    username: str = ""
    app_password: str = ""

    @property
    def base_url(self) -> str:
        """WP REST API root URL."""
        return self.url.rstrip("/") + "/wp-json"

    @property
    def api_url(self) -> str:
        """WP REST API v2 base URL."""
        return self.base_url + "/wp/v2"

    @property
    def auth_header(self) -> str:
        """Base64-encoded Basic auth header value."""
        if not self.username or not self.app_password:
            return ""
        credentials = f"{self.username}:{self.app_password}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("utf-8")
        return f"Basic {encoded}"

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.username and self.app_password)

    def __repr__(self) -> str:
        configured = "configured" if self.is_configured else "no-creds"
        return f"WordPressConfig({self.url!r}, {self.username!r}, {configured})"


@dataclass
class QualityThresholds:
    min_words: int = TARGET_MIN_WORDS
    max_words: int = TARGET_MAX_WORDS
    min_words_pillar: int = TARGET_MIN_WORDS_PILLAR
    max_words_pillar: int = TARGET_MAX_WORDS_PILLAR
    min_internal_links: int = MIN_INTERNAL_LINKS
    max_internal_links: int = MAX_INTERNAL_LINKS
    faq_count: int = FAQ_COUNT
    key_takeaways: int = KEY_TAKEAWAYS
    youtube_embed_count: int = YOUTUBE_EMBED_COUNT

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> QualityThresholds:
        data = data or {}
        known = {k: int(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class EngineConfig:
    """Everything the engine needs, passed explicitly at the boundary."""

    ai_provider: str = "gemini"
    api_keys: ApiKeys = field(default_factory=ApiKeys)
    openrouter_models: List[str] = field(default_factory=lambda: list(DEFAULT_OPENROUTER_MODELS))
    groq_model: str = GROQ_MODELS[0]
    wordpress: WordPressConfig = field(default_factory=WordPressConfig)
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    geo_target: Optional[str] = None
    generation_concurrency: int = 1
    health_concurrency: int = 8
    publish_concurrency: int = 3
    cache_ttl: float = CACHE_TTL_SECONDS

    def __post_init__(self) -> None:
        if self.ai_provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unknown AI provider {self.ai_provider!r}. "
                f"Choose one of: {', '.join(SUPPORTED_PROVIDERS)}"
            )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a configuration purely from environment variables."""
        keys = ApiKeys(**{name: os.getenv(var, "") for name, var in _ENV_KEYS.items()})
        wordpress = WordPressConfig(
            url=os.getenv("WP_URL", ""),
            username=os.getenv("WP_USERNAME", ""),
            app_password=os.getenv("WP_APP_PASSWORD", ""),
        )
        openrouter_models = [
            m.strip() for m in os.getenv("OPENROUTER_MODELS", "").split(",") if m.strip()
        ]
        return cls(
            ai_provider=os.getenv("CONTENT_ENGINE_PROVIDER", "gemini"),
            api_keys=keys,
            openrouter_models=openrouter_models or list(DEFAULT_OPENROUTER_MODELS),
            groq_model=os.getenv("GROQ_MODEL", GROQ_MODELS[0]),
            wordpress=wordpress,
            geo_target=os.getenv("GEO_TARGET") or None,
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def _resolve_env_secrets(section: Dict[str, Any]) -> Dict[str, str]:
    """Turn ``{"openai_env": "OPENAI_API_KEY"}`` into ``{"openai": "<value>"}``.

    Literal values for the same name are used only when no ``*_env`` key is
    given.
    """
    resolved: Dict[str, str] = {}
    for key, value in section.items():
        if key.endswith("_env"):
            name = key[: -len("_env")]
            secret = os.getenv(str(value), "")
            if not secret:
                logger.debug("Env var %s not set, %s will be unconfigured", value, name)
            resolved[name] = secret
        elif key not in resolved:
            resolved[key] = str(value)
    return resolved


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """
    Load engine settings from a JSON file, resolving secrets from env vars.

    Parameters
    ----------
    config_path : Path, optional
        Settings file. Defaults to ``$CONTENT_ENGINE_CONFIG`` or
        ``configs/engine.json`` next to the package.

    Returns
    -------
    EngineConfig
        Settings from the file, or ``EngineConfig.from_env()`` when no file
        exists.

    Raises
    ------
    ValueError
        If the file names an unknown AI provider.
    json.JSONDecodeError
        If the file is not valid JSON.
    """
    if config_path is None:
        env_path = os.getenv(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else CONFIG_PATH

    if not config_path.exists():
        logger.info("No config file at %s, using environment only", config_path)
        return EngineConfig.from_env()

    with open(config_path, "r", encoding="utf-8") as fh:
        data = json.load(fh)

    keys = _resolve_env_secrets(data.get("api_keys", {}))
    wp_section = _resolve_env_secrets(data.get("wordpress", {}))

    config = EngineConfig(
        ai_provider=data.get("ai_provider", "gemini"),
        api_keys=ApiKeys(**{k: v for k, v in keys.items() if k in ApiKeys.__dataclass_fields__}),
        openrouter_models=list(data.get("openrouter_models") or DEFAULT_OPENROUTER_MODELS),
        groq_model=data.get("groq_model", GROQ_MODELS[0]),
        wordpress=WordPressConfig(
            url=wp_section.get("url", ""),
            username=wp_section.get("username", ""),
            app_password=wp_section.get("app_password", ""),
        ),
        thresholds=QualityThresholds.from_dict(data.get("thresholds")),
        geo_target=data.get("geo_target") or None,
        generation_concurrency=int(data.get("generation_concurrency", 1)),
        health_concurrency=int(data.get("health_concurrency", 8)),
        publish_concurrency=int(data.get("publish_concurrency", 3)),
        cache_ttl=float(data.get("cache_ttl", CACHE_TTL_SECONDS)),
    )
    logger.info(
        "Loaded config from %s (provider=%s, wordpress=%s)",
        config_path, config.ai_provider,
        "configured" if config.wordpress.is_configured else "not configured",
    )
    return config

"""App configuration: process environment plus stored preferences.

Environment (read once, .env loaded by python-dotenv in app.py/main.py):
  DATA_DIR                           data directory for the local store
  CHRONICLE_WEAVER_STORAGE_CAPACITY  local store capacity in bytes
  CHRONICLE_WEAVER_TIMEOUT           HTTP timeout in seconds (unset = none)
  GEMINI_BASE_URL / OPENAI_BASE_URL / ANTHROPIC_BASE_URL

Preferences are stored in the local store under CHRONICLE_WEAVER_SETTINGS.
get_config() returns defaults merged with stored values. update_config()
applies partial updates: models merged provider-by-provider and
key-by-key, scalars overwritten, unknown keys ignored.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from chronicle_weaver.store import DEFAULT_CAPACITY, LocalStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "CHRONICLE_WEAVER_SETTINGS"
DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"

DEFAULT_BASE_URLS: dict[str, str] = {
    "gemini": "https://generativelanguage.googleapis.com",
    "openai": "https://api.openai.com",
    "claude": "https://api.anthropic.com",
}

_BASE_URL_ENV: dict[str, str] = {
    "gemini": "GEMINI_BASE_URL",
    "openai": "OPENAI_BASE_URL",
    "claude": "ANTHROPIC_BASE_URL",
}

_CONFIG_DEFAULTS: dict[str, Any] = {
    "budget_threshold": 5.0,
    "text_only": False,
    "high_res": False,
    "image_quality": "standard",
    "image_size": "1K",
    "font_size": 20,
    "models": {
        "gemini": {
            "story": "gemini-2.0-flash-exp",
            "chat": "gemini-2.0-flash-exp",
            "image": "gemini-2.0-flash-exp",
            "image_pro": "gemini-3-pro-image-preview",
        },
        "openai": {
            "story": "gpt-4o-mini",
            "chat": "gpt-4o-mini",
            "image": "dall-e-3",
        },
        "claude": {
            "story": "claude-3-5-haiku-20241022",
            "chat": "claude-3-5-haiku-20241022",
        },
    },
}

_SCALARS = ("budget_threshold", "text_only", "high_res", "image_quality", "image_size", "font_size")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

def data_dir() -> Path:
    return Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))


def storage_capacity() -> int:
    raw = os.getenv("CHRONICLE_WEAVER_STORAGE_CAPACITY", "")
    return int(raw) if raw else DEFAULT_CAPACITY


def request_timeout() -> float | None:
    """HTTP timeout for provider calls. None means wait indefinitely."""
    raw = os.getenv("CHRONICLE_WEAVER_TIMEOUT", "")
    return float(raw) if raw else None


def base_url(provider: str) -> str:
    return os.getenv(_BASE_URL_ENV[provider], "") or DEFAULT_BASE_URLS[provider]


# ---------------------------------------------------------------------------
# Stored preferences
# ---------------------------------------------------------------------------

def _defaults() -> dict[str, Any]:
    return json.loads(json.dumps(_CONFIG_DEFAULTS))


def _merge(config: dict[str, Any], fields: dict[str, Any]) -> None:
    for key in _SCALARS:
        if key in fields:
            config[key] = fields[key]
    if "models" in fields and isinstance(fields["models"], dict):
        for provider, models in fields["models"].items():
            if provider in config["models"] and isinstance(models, dict):
                config["models"][provider].update(models)


def get_config(store: LocalStore) -> dict[str, Any]:
    """Read preferences, returning defaults merged with stored values."""
    config = _defaults()
    raw = store.get_item(SETTINGS_KEY)
    if raw:
        try:
            stored = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("stored settings are not valid JSON; using defaults")
            stored = {}
        if isinstance(stored, dict):
            _merge(config, stored)
    return config


def update_config(store: LocalStore, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into preferences and persist. Returns the full config."""
    config = get_config(store)
    _merge(config, fields)
    store.set_item(SETTINGS_KEY, json.dumps(config))
    return config

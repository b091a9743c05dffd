"""Configuration via environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

SUPPORTED_LANGUAGES = ("tr", "en")


def has_vision_credentials() -> bool:
    """Return True when a vision API key is configured.

    This is the only switch between the vision and mock extraction
    strategies.
    """
    return bool(os.environ.get("ANTHROPIC_API_KEY"))


def get_anthropic_api_key() -> str:
    """Return the ANTHROPIC_API_KEY from the environment."""
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        msg = "ANTHROPIC_API_KEY environment variable is required"
        raise ValueError(msg)
    return key


def get_llm_model() -> str:
    """Return the vision model identifier.

    Defaults to claude-haiku-4-5-20251001.
    """
    return os.environ.get("LLM_MODEL", "claude-haiku-4-5-20251001")


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def get_state_path() -> Path:
    """Return the RECEIPT_LIRA_STATE_PATH, defaulting to ./data/state.

    Always resolves to an absolute path to avoid issues if the
    working directory changes during execution.
    """
    return Path(os.environ.get("RECEIPT_LIRA_STATE_PATH", "./data/state")).resolve()


def get_device_language() -> str:
    """Return the notification language, "tr" unless "en" is configured."""
    language = os.environ.get("RECEIPT_LIRA_LANGUAGE", "tr").strip().lower()
    if language not in SUPPORTED_LANGUAGES:
        return "tr"
    return language


def get_mock_delay() -> float:
    """Return the artificial latency of the mock extraction strategy in seconds."""
    raw = os.environ.get("RECEIPT_LIRA_MOCK_DELAY", "1.0")
    try:
        delay = float(raw)
    except ValueError:
        msg = f"RECEIPT_LIRA_MOCK_DELAY must be a number, got {raw!r}"
        raise ValueError(msg) from None
    if delay < 0:
        msg = "RECEIPT_LIRA_MOCK_DELAY must not be negative"
        raise ValueError(msg)
    return delay

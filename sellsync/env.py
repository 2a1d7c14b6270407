from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from .constants import DEFAULT_API_URL, LOGGER


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")
    if value < 0:
        raise RuntimeError(f"{key} must not be negative.")
    return value


def get_api_url() -> str:
    return os.getenv("SELLSYNC_API_URL", DEFAULT_API_URL).strip().rstrip("/")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    try:
        from dotenv import load_dotenv
    except ImportError:
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    api_url = get_api_url()
    parsed = urlparse(api_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(
            "SELLSYNC_API_URL must be an http(s) URL (for example: "
            "https://sellsync.example.com/api)."
        )

    get_env_float("SELLSYNC_TIMEOUT", 30.0)
    get_env_float("SELLSYNC_REFRESH_TIMEOUT", 10.0)

    email = os.getenv("SELLSYNC_EMAIL", "").strip()
    password = os.getenv("SELLSYNC_PASSWORD", "")
    if bool(email) != bool(password):
        LOGGER.warning("SELLSYNC_EMAIL and SELLSYNC_PASSWORD must be set together.")
        raise RuntimeError("SELLSYNC_EMAIL and SELLSYNC_PASSWORD must be set together.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SELLSYNC_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled

from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .constants import AUTH_MODE, LOGGER, SPOTIFY_LOGGER


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_scopes_env(key: str, default: list[str]) -> list[str]:
    raw = os.getenv(key, "")
    if not raw.strip():
        return list(default)
    return raw.split()


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    required = (
        "SPOTIFY_CLIENT_ID",
        "SPOTIFY_REDIRECT_URI",
        "SHOP_SESSION_SECRET",
        "STRIPE_SECRET_KEY",
    )
    missing = [key for key in required if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(
            f"Missing required environment variables for {AUTH_MODE}: {', '.join(missing)}"
        )

    redirect_uri = os.getenv("SPOTIFY_REDIRECT_URI", "").strip()
    parsed_redirect_uri = urlparse(redirect_uri)
    if parsed_redirect_uri.scheme not in {"http", "https"} or not parsed_redirect_uri.netloc:
        raise RuntimeError(
            "SPOTIFY_REDIRECT_URI must be an absolute http(s) URL (for example: "
            "http://localhost:5173/callback)."
        )

    if len(os.getenv("SHOP_SESSION_SECRET", "").strip()) < 16:
        LOGGER.warning("SHOP_SESSION_SECRET is shorter than 16 characters.")
        raise RuntimeError("SHOP_SESSION_SECRET must be at least 16 characters long.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SHOP_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        SPOTIFY_LOGGER.setLevel(logging.INFO)
    return debug_enabled

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError

from .constants import (
    DEFAULT_BATCH_INTERVAL_MS,
    DEFAULT_BATCH_MAX,
    DEFAULT_EXPIRY_THRESHOLD_SECONDS,
    DEFAULT_GRAPHQL_PATH,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_TOKEN_STORE_PATH,
    LOGGER,
)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int | None) -> int | None:
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
        raise RuntimeError(f"{key} must be a numeric value.")


@dataclass
class Settings:
    base_url: str
    graphql_path: str = DEFAULT_GRAPHQL_PATH
    batch_interval: float = DEFAULT_BATCH_INTERVAL_MS / 1000
    batch_max: int = DEFAULT_BATCH_MAX
    batch_max_bytes: int | None = None
    expiry_threshold: float = float(DEFAULT_EXPIRY_THRESHOLD_SECONDS)
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    token_store_path: str = DEFAULT_TOKEN_STORE_PATH
    debug: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        validate_env()
        batch_max = _get_env_int("DASHLINK_BATCH_MAX", DEFAULT_BATCH_MAX)
        if batch_max < 1:
            raise RuntimeError("DASHLINK_BATCH_MAX must be at least 1.")

        return cls(
            base_url=os.getenv("DASHLINK_BASE_URL", "").strip().rstrip("/"),
            graphql_path=os.getenv("DASHLINK_GRAPHQL_PATH", DEFAULT_GRAPHQL_PATH).strip(),
            batch_interval=_get_env_int(
                "DASHLINK_BATCH_INTERVAL_MS", DEFAULT_BATCH_INTERVAL_MS
            )
            / 1000,
            batch_max=batch_max,
            batch_max_bytes=_get_env_int("DASHLINK_BATCH_MAX_BYTES", None),
            expiry_threshold=float(
                _get_env_int(
                    "DASHLINK_EXPIRY_THRESHOLD_SECONDS", DEFAULT_EXPIRY_THRESHOLD_SECONDS
                )
            ),
            timeout=_get_env_float("DASHLINK_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            token_store_path=os.getenv(
                "DASHLINK_TOKEN_STORE_PATH", DEFAULT_TOKEN_STORE_PATH
            ).strip(),
            debug=is_truthy(os.getenv("DASHLINK_DEBUG", "1")),
        )


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    base_url = os.getenv("DASHLINK_BASE_URL", "").strip()
    if not base_url:
        raise RuntimeError("Missing required environment variable: DASHLINK_BASE_URL")

    try:
        AnyHttpUrl(base_url)
    except ValidationError as error:
        raise RuntimeError(
            "DASHLINK_BASE_URL must be a valid HTTP(S) URL (for example: "
            "https://backend.example.com:8080)."
        ) from error

    graphql_path = os.getenv("DASHLINK_GRAPHQL_PATH", DEFAULT_GRAPHQL_PATH).strip()
    if not graphql_path.startswith("/"):
        # Queries must stay on the same origin as the auth endpoints.
        LOGGER.warning("DASHLINK_GRAPHQL_PATH=%s is not a path", graphql_path)
        raise RuntimeError("DASHLINK_GRAPHQL_PATH must be an absolute path such as /graphql.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("DASHLINK_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled

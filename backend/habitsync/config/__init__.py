"""Centralised configuration helper.

Exposes a process-wide :class:`Settings` instance (via :func:`get_settings`)
so the rest of the package never calls ``os.getenv`` directly.  Values come
from the environment, with a project ``.env`` file loaded through
*python-dotenv* first.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``backend/habitsync/config/__init__.py`` -> repository root
_REPO_ROOT = Path(__file__).resolve().parents[3]

_BACKENDS = {"sql", "rest"}


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    log_level: str
    log_json: bool

    # Remote backend ---------------------------------------------------
    remote_backend: str
    database_url: str
    rest_url: str | None
    rest_api_key: str | None

    # Local durable store ----------------------------------------------
    local_store_path: str

    # Sync policy ------------------------------------------------------
    sync_interval_seconds: float
    max_retries: int
    gateway_timeout_seconds: float
    start_online: bool

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:
        for key, value in kwargs.items():
            if not hasattr(self, key):
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    env_path = _REPO_ROOT / ".env"
    if env_path.exists():
        # Explicit environment wins over the file so tests can pin values.
        load_dotenv(env_path, override=False)

    testing = _truthy(os.getenv("TESTING"))
    default_db = "sqlite:///:memory:" if testing else "sqlite:///./habitsync.db"
    default_store = Path.home() / ".habitsync" / "local_state.json"

    return Settings(
        testing=testing,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_truthy(os.getenv("LOG_JSON")),
        remote_backend=os.getenv("REMOTE_BACKEND", "sql").strip().lower(),
        database_url=os.getenv("DATABASE_URL") or default_db,
        rest_url=os.getenv("REST_URL"),
        rest_api_key=os.getenv("REST_API_KEY"),
        local_store_path=os.getenv("LOCAL_STORE_PATH", str(default_store)),
        sync_interval_seconds=float(os.getenv("SYNC_INTERVAL_SECONDS", "30")),
        max_retries=int(os.getenv("MAX_RETRIES", "5")),
        gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10")),
        start_online=_truthy(os.getenv("START_ONLINE", "true")),
    )


def _validate_required(settings: Settings) -> None:  # noqa: D401 – helper
    """Abort startup when the configuration cannot work at all."""

    problems = []

    if settings.remote_backend not in _BACKENDS:
        problems.append(f"REMOTE_BACKEND (must be one of {sorted(_BACKENDS)})")

    if settings.remote_backend == "rest" and not settings.rest_url:
        problems.append("REST_URL (required when REMOTE_BACKEND=rest)")

    if settings.sync_interval_seconds <= 0:
        problems.append("SYNC_INTERVAL_SECONDS (must be > 0)")

    if settings.gateway_timeout_seconds <= 0:
        problems.append("GATEWAY_TIMEOUT_SECONDS (must be > 0)")

    if settings.max_retries < 1:
        problems.append("MAX_RETRIES (must be >= 1)")

    if problems:
        raise RuntimeError(
            f"Invalid habitsync configuration: {', '.join(problems)}\n"
            f"Set these in your .env file or deployment environment."
        )


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return :class:`Settings` instance loaded from environment."""

    settings = _load_settings()
    _validate_required(settings)
    return settings


__all__ = [
    "Settings",
    "get_settings",
]

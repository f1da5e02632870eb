"""Central process settings for relay_supervisor.

Rules, schedules and hardware settings live in the JSON configuration file
(see `config_store`); this module only covers what comes from the
environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Set

from .models.settings import Settings

logger = logging.getLogger(__name__)

_APP_DIR_NAME = "relay-supervisor"


def _split_ints(s: str) -> Set[int]:
    """Parse comma-separated string into a set of integers.

    Args:
        s: Comma-separated string of integers (e.g., "123,456,789")

    Returns:
        Set of parsed integers. Invalid entries are silently skipped.

    Example:
        >>> _split_ints("123,-456,invalid,789")
        {123, -456, 789}
    """
    out = set()
    for part in (s or "").split(","):
        p = part.strip()
        if p.lstrip("-").isdigit():
            out.add(int(p))
    return out


def default_app_dir() -> Path:
    """Return the per-user directory holding config.json and state.json."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / _APP_DIR_NAME


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Boolean values accept: 1/true/yes (case-insensitive) as True.
    """
    app_dir = default_app_dir()
    config_path = os.environ.get("RELAY_CONFIG_PATH") or str(app_dir / "config.json")
    state_path = os.environ.get("RELAY_STATE_PATH") or str(app_dir / "state.json")
    port = (os.environ.get("RELAY_PORT") or "").strip() or None
    log_level = (os.environ.get("LOG_LEVEL") or "INFO").strip().upper()
    log_file = os.environ.get("LOG_FILE") or None

    # Telegram notifications (outbound only)
    token = os.environ.get("BOT_TOKEN") or None
    allowed = _split_ints(os.environ.get("ALLOWED_CHAT_IDS", ""))
    notify_actions = os.environ.get("NOTIFY_ON_ACTIONS", "false").lower() in {
        "1",
        "true",
        "yes",
    }

    return Settings(
        RELAY_CONFIG_PATH=config_path,
        RELAY_STATE_PATH=state_path,
        RELAY_PORT=port,
        LOG_LEVEL=log_level,
        LOG_FILE=log_file,
        BOT_TOKEN=token,
        ALLOWED_CHAT_IDS=allowed,
        NOTIFY_ON_ACTIONS=notify_actions,
    )


settings = _read_settings()


def validate_settings() -> None:
    """Log warnings for settings that disable optional features."""
    if settings.BOT_TOKEN is None:
        logger.info("BOT_TOKEN is not set; notifications go to the log only.")
    elif not settings.ALLOWED_CHAT_IDS:
        logger.warning(
            "ALLOWED_CHAT_IDS is empty; Telegram notifications are disabled."
        )
    if settings.LOG_LEVEL not in logging.getLevelNamesMapping():
        logger.warning("Unknown LOG_LEVEL %r; using INFO", settings.LOG_LEVEL)


# Exported constants
RELAY_CONFIG_PATH: str = settings.RELAY_CONFIG_PATH
RELAY_STATE_PATH: str = settings.RELAY_STATE_PATH
RELAY_PORT: str | None = settings.RELAY_PORT
LOG_LEVEL: str = settings.LOG_LEVEL
LOG_FILE: str | None = settings.LOG_FILE
BOT_TOKEN: str | None = settings.BOT_TOKEN
ALLOWED: set[int] = settings.ALLOWED_CHAT_IDS
NOTIFY_ON_ACTIONS: bool = settings.NOTIFY_ON_ACTIONS

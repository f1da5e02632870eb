"""Configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Set


@dataclass
class Settings:
    """Process-level settings for relay_supervisor."""

    RELAY_CONFIG_PATH: str
    RELAY_STATE_PATH: str
    RELAY_PORT: str | None
    LOG_LEVEL: str
    LOG_FILE: str | None
    BOT_TOKEN: str | None
    ALLOWED_CHAT_IDS: Set[int]
    NOTIFY_ON_ACTIONS: bool

"""Relay state snapshot dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RelayStateSnapshot:
    """Last recorded relay change; used by series guards."""

    last_state: bool | None = None
    last_trigger: str | None = None
    last_series: str | None = None
    last_updated_utc: datetime | None = None

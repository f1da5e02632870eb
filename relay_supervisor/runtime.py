"""Runtime globals shared across modules without import cycles."""
from __future__ import annotations

from datetime import datetime, timedelta

# Process start time (module import time).
STARTUP_TIME = datetime.now()


def uptime(now: datetime | None = None) -> timedelta:
    return (now or datetime.now()) - STARTUP_TIME


def format_uptime(delta: timedelta) -> str:
    """``timedelta(days=1, hours=2, minutes=3)`` -> ``"1d 2h 3m"``."""
    total = max(0, int(delta.total_seconds()))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, seconds = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"

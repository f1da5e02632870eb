"""Cron schedules -> ``schedule:<name>`` triggers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from ..models.app_config import ScheduleConfig
from .base import PollingWatcher, TriggerCallback

logger = logging.getLogger(__name__)

TICK_S = 10.0
MIN_REFIRE = timedelta(seconds=30)
LOCALTIME_PATH = "/etc/localtime"


@lru_cache(maxsize=1)
def local_zone() -> tzinfo:
    """The machine's IANA zone: ``$TZ``, else the ``/etc/localtime`` link.

    Cron occurrences computed in this zone carry the offset in force at that
    time. Falls back to the current fixed offset when no zone name can be
    found.
    """
    candidates = [os.environ.get("TZ", "").lstrip(":")]
    try:
        target = os.path.realpath(LOCALTIME_PATH)
    except OSError:
        target = ""
    if "zoneinfo/" in target:
        candidates.append(target.split("zoneinfo/", 1)[1])
    for name in candidates:
        if not name:
            continue
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown time zone %r", name)
    logger.warning("No IANA time zone found; using the current UTC offset.")
    return datetime.now().astimezone().tzinfo


def local_now() -> datetime:
    return datetime.now(local_zone())


@dataclass
class _CronState:
    name: str
    cron: str
    use_utc: bool
    last_fired_at: Optional[datetime] = None


class ScheduleWatcher(PollingWatcher):
    """Fires a schedule when its next occurrence after the previous tick is due.

    Each tick looks for the first occurrence after the previous tick time; if
    that is not in the future the schedule fires. A schedule never fires
    twice within 30 seconds.
    """

    name = "ScheduleWatcher"
    interval_s = TICK_S
    initial_delay_s = 2.0

    def __init__(self, schedules: Iterable[ScheduleConfig], on_trigger: TriggerCallback) -> None:
        super().__init__(on_trigger)
        self._states: dict[str, _CronState] = {}
        self._last_tick: Optional[datetime] = None
        for s in schedules:
            if not s.enabled:
                continue
            if not croniter.is_valid(s.cron):
                logger.warning("Invalid cron for schedule %s: %r", s.name, s.cron)
                continue
            self._states[s.name.lower()] = _CronState(s.name, s.cron, s.use_utc)
            logger.info(
                "Schedule enabled: %s cron=%s tz=%s", s.name, s.cron, "UTC" if s.use_utc else "Local"
            )

    @property
    def schedule_names(self) -> list[str]:
        return [st.name for st in self._states.values()]

    def enabled(self) -> bool:
        return bool(self._states)

    async def tick(self, now: Optional[datetime] = None) -> list[str]:
        if not self._states:
            return []
        now = now or local_now()
        last_tick = self._last_tick or now - timedelta(seconds=TICK_S)
        self._last_tick = now

        fired: list[str] = []
        for st in self._states.values():
            base_now = now.astimezone(timezone.utc) if st.use_utc else now
            base_last = last_tick.astimezone(timezone.utc) if st.use_utc else last_tick
            nxt = croniter(st.cron, base_last).get_next(datetime)
            if nxt > base_now:
                continue
            if st.last_fired_at is not None and base_now - st.last_fired_at <= MIN_REFIRE:
                continue
            st.last_fired_at = base_now
            logger.info("Schedule due: %s (%s)", st.name, nxt.isoformat())
            self._emit(f"schedule:{st.name}")
            fired.append(st.name)
        return fired

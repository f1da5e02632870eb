"""Pre-meeting reminders.

Each rule has a cron for the meeting *start*, a lead time and a repeat
interval. Inside the window ``[start - lead, start)`` the reminder fires
once per repeat slot, where the slot is the number of whole repeat
intervals elapsed since the window opened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from croniter import croniter

from ..models.app_config import MeetingReminderRuleConfig, MeetingRemindersConfig
from .base import PollingWatcher
from .schedule import local_now

logger = logging.getLogger(__name__)

MIN_POLL_S = 5
MAX_POLL_S = 60
MAX_MINUTES = 24 * 60
PRUNE_THRESHOLD = 300
PRUNE_AGE = timedelta(days=2)

ReminderCallback = Callable[[MeetingReminderRuleConfig], Awaitable[Any]]
SlotKey = tuple[str, str, int]


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def next_meeting_start(cron: str, at_or_after: datetime) -> datetime:
    """First occurrence of ``cron`` at or after ``at_or_after``."""
    return croniter(cron, at_or_after - timedelta(seconds=1)).get_next(datetime)


@dataclass(frozen=True)
class ReminderSlot:
    meeting_start: datetime
    slot: int

    def key(self, name: str) -> SlotKey:
        return (name.lower(), self.meeting_start.isoformat(), self.slot)


def current_slot(rule: MeetingReminderRuleConfig, now: datetime) -> Optional[ReminderSlot]:
    """The reminder slot ``now`` falls into, or None outside every window."""
    lead = timedelta(minutes=_clamp(rule.lead_minutes, 1, MAX_MINUTES))
    repeat = timedelta(minutes=_clamp(rule.repeat_every_minutes, 1, MAX_MINUTES))

    start = next_meeting_start(rule.meeting_cron, now - lead)
    window_start = start - lead
    if now < window_start or now >= start:
        return None
    slot = (now - window_start) // repeat
    return ReminderSlot(meeting_start=start, slot=slot)


class ReminderWatcher(PollingWatcher):
    name = "MeetingReminderWatcher"
    initial_delay_s = 2.0

    def __init__(self, cfg: MeetingRemindersConfig, on_reminder: ReminderCallback) -> None:
        super().__init__()
        self.cfg = cfg
        self.interval_s = float(_clamp(cfg.poll_seconds, MIN_POLL_S, MAX_POLL_S))
        self._on_reminder = on_reminder
        self._rules: list[MeetingReminderRuleConfig] = []
        self._fired: dict[SlotKey, datetime] = {}
        if not cfg.enabled:
            return
        for rule in cfg.rules:
            if not rule.enabled:
                continue
            if not croniter.is_valid(rule.meeting_cron):
                logger.warning("Invalid meeting cron for %s: %r", rule.name, rule.meeting_cron)
                continue
            self._rules.append(rule)
            logger.info("Meeting reminder enabled: %s cron=%s", rule.name, rule.meeting_cron)

    @property
    def rules(self) -> list[MeetingReminderRuleConfig]:
        return list(self._rules)

    @property
    def fired_count(self) -> int:
        return len(self._fired)

    def enabled(self) -> bool:
        return bool(self._rules)

    async def tick(self, now: Optional[datetime] = None) -> list[ReminderSlot]:
        now = now or local_now()
        fired: list[ReminderSlot] = []
        for rule in self._rules:
            slot = current_slot(rule, now)
            if slot is None:
                continue
            key = slot.key(rule.name)
            if key in self._fired:
                continue
            self._fired[key] = now
            self._prune(now)
            logger.info(
                "Meeting reminder fired: %s slot=%d meeting_start=%s",
                rule.name,
                slot.slot,
                slot.meeting_start.isoformat(),
            )
            self._spawn(self._on_reminder(rule), f"meeting-reminder:{rule.name}")
            fired.append(slot)
        return fired

    def _prune(self, now: datetime) -> None:
        if len(self._fired) <= PRUNE_THRESHOLD:
            return
        threshold = now - PRUNE_AGE
        for key in [k for k, at in self._fired.items() if at < threshold]:
            del self._fired[key]

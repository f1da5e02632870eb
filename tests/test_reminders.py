from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from relay_supervisor.models.actions import Blink
from relay_supervisor.models.app_config import (
    MeetingReminderRuleConfig,
    MeetingRemindersConfig,
)
from relay_supervisor.watchers.reminders import (
    ReminderWatcher,
    current_slot,
    next_meeting_start,
)


def _rule(name="standup", cron="0 9 * * 1-5", lead=10, repeat=2, enabled=True):
    return MeetingReminderRuleConfig(
        name=name,
        enabled=enabled,
        meeting_cron=cron,
        lead_minutes=lead,
        repeat_every_minutes=repeat,
        blink=Blink(count=3, on_ms=250, off_ms=250),
    )


def _watcher(*rules, enabled=True):
    fired = []

    async def on_reminder(rule):
        fired.append(rule.name)

    cfg = MeetingRemindersConfig(enabled=enabled, poll_seconds=1, rules=list(rules))
    return ReminderWatcher(cfg, on_reminder), fired


# Monday
def _at(hour, minute, second=0) -> datetime:
    return datetime(2024, 5, 6, hour, minute, second)


def test_next_meeting_start_includes_exact_match() -> None:
    assert next_meeting_start("0 9 * * 1-5", _at(9, 0)) == _at(9, 0)
    assert next_meeting_start("0 9 * * 1-5", _at(9, 0, 1)) == datetime(2024, 5, 7, 9, 0)


def test_next_meeting_start_across_dst_change() -> None:
    berlin = ZoneInfo("Europe/Berlin")

    start = next_meeting_start("0 9 * * *", datetime(2024, 3, 30, 12, 0, tzinfo=berlin))

    assert start.utcoffset() == timedelta(hours=2)
    assert start == datetime(2024, 3, 31, 7, 0, tzinfo=timezone.utc)


def test_current_slot_windows() -> None:
    rule = _rule()

    assert current_slot(rule, _at(8, 49, 59)) is None
    assert current_slot(rule, _at(8, 50)).slot == 0
    assert current_slot(rule, _at(8, 51, 59)).slot == 0
    assert current_slot(rule, _at(8, 52)).slot == 1
    assert current_slot(rule, _at(8, 59, 59)).slot == 4
    assert current_slot(rule, _at(9, 0)) is None
    assert current_slot(rule, _at(8, 55)).meeting_start == _at(9, 0)


def test_poll_interval_is_clamped_and_invalid_rules_skipped() -> None:
    watcher, _ = _watcher(_rule("ok"), _rule("bad", cron="not a cron"), _rule("off", enabled=False))

    assert watcher.interval_s == 5
    assert [r.name for r in watcher.rules] == ["ok"]


def test_disabled_section_has_no_rules() -> None:
    watcher, _ = _watcher(_rule(), enabled=False)

    assert watcher.enabled() is False


@pytest.mark.asyncio
async def test_fires_once_per_slot() -> None:
    watcher, fired = _watcher(_rule())

    assert await watcher.tick(_at(8, 49)) == []
    assert len(await watcher.tick(_at(8, 50, 10))) == 1
    assert await watcher.tick(_at(8, 51, 30)) == []
    assert len(await watcher.tick(_at(8, 52, 5))) == 1
    assert await watcher.tick(_at(9, 0, 5)) == []
    await watcher.wait_idle()

    assert fired == ["standup", "standup"]
    assert watcher.fired_count == 2


@pytest.mark.asyncio
async def test_weekend_has_no_window() -> None:
    watcher, fired = _watcher(_rule())

    saturday = datetime(2024, 5, 11, 8, 55)

    assert await watcher.tick(saturday) == []


@pytest.mark.asyncio
async def test_prune_drops_old_entries() -> None:
    watcher, _ = _watcher(_rule())
    old = _at(8, 0) - timedelta(days=3)
    for i in range(301):
        watcher._fired[("old", old.isoformat(), i)] = old

    await watcher.tick(_at(8, 50, 10))
    await watcher.wait_idle()

    assert watcher.fired_count == 1

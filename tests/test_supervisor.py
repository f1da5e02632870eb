import asyncio
import json

import pytest

from conftest import DummyNotifier, dummy_relay_factory
from relay_supervisor import actions, config_store
from relay_supervisor.models.actions import Blink
from relay_supervisor.models.app_config import MeetingReminderRuleConfig
from relay_supervisor.supervisor import Supervisor


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):

    async def fast_sleep(ms):
        await asyncio.sleep(0)

    monkeypatch.setattr(actions, "_sleep_ms", fast_sleep)


def _supervisor(tmp_path, fail=False, watchers=None) -> Supervisor:
    return Supervisor(
        tmp_path / "config.json",
        tmp_path / "state.json",
        port_override="/dev/ttyTEST",
        notifier=DummyNotifier(),
        relay_factory=dummy_relay_factory(fail=fail),
        watcher_factory=lambda sup, cfg: list(watchers or []),
    )


@pytest.mark.asyncio
async def test_start_fires_logon_and_stop_closes(tmp_path) -> None:
    sup = _supervisor(tmp_path)

    await sup.start()

    assert sup.relay.writes == [False]
    snap = sup.state_store.snapshot
    assert snap.last_trigger == "session:logon"
    assert snap.last_series == "session"
    assert sup.relay.settings.port_name == "/dev/ttyTEST"

    await sup.stop()
    assert sup.notifier.closed is True


@pytest.mark.asyncio
async def test_lock_then_unlock_restores_lamp(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()
    await sup.set_relay(True)

    await sup.fire_safe("session:lock")
    await sup.fire_safe("session:unlock")

    assert sup.relay.writes == [True, False, True]
    snap = sup.state_store.snapshot
    assert snap.last_state is True
    assert snap.last_trigger == "session:unlock"
    assert snap.last_series == "session"


@pytest.mark.asyncio
async def test_manual_off_while_locked_keeps_lamp_off(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()
    await sup.set_relay(True)

    await sup.fire_safe("session:lock")
    await sup.set_relay(False)
    outcomes = await sup.fire_safe("session:unlock")

    assert outcomes[0].skipped is True
    assert sup.relay.writes == [True, False, False]
    assert sup.state_store.snapshot.last_series == "manual"


@pytest.mark.asyncio
async def test_unlock_ignored_when_lamp_was_off_before_lock(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()
    await sup.set_relay(False)

    await sup.fire_safe("session:lock")
    outcomes = await sup.fire_safe("session:unlock")

    assert outcomes == []
    assert sup.relay.writes == [False, False]


@pytest.mark.asyncio
async def test_unknown_last_series_allows_unlock(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()

    outcomes = await sup.fire_safe("session:unlock")

    assert outcomes[0].ok
    assert sup.relay.writes == [True]


@pytest.mark.asyncio
async def test_toggle_records_manual_series(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()

    assert await sup.toggle_relay() is True
    assert await sup.toggle_relay() is True

    assert sup.relay.writes == [True, False]
    snap = sup.state_store.snapshot
    assert snap.last_trigger == "cli:toggle"
    assert snap.last_series == "manual"
    saved = json.loads((tmp_path / "state.json").read_text())
    assert saved["last_state"] is False


@pytest.mark.asyncio
async def test_relay_failure_is_reported(tmp_path) -> None:
    sup = _supervisor(tmp_path, fail=True)
    sup.load()

    outcomes = await sup.fire_safe("session:lock")
    ok = await sup.set_relay(True)

    assert outcomes[0].ok is False
    assert ok is False
    errors = [text for text, error in sup.notifier.messages if error]
    assert any(t.startswith("session:lock failed") for t in errors)
    assert any(t.startswith("Relay error") for t in errors)
    assert sup.state_store.snapshot.last_state is None


@pytest.mark.asyncio
async def test_notify_on_actions(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    cfg = sup.load()
    cfg.ui.notify_on_actions = True

    await sup.fire_safe("session:lock")
    await sup.fire_safe("no:rules")

    assert sup.notifier.messages == [("session:lock done", False)]


@pytest.mark.asyncio
async def test_meeting_reminder_blinks_without_recording(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()
    rule = MeetingReminderRuleConfig(name="standup", blink=Blink(count=2, on_ms=20, off_ms=20))

    assert await sup.fire_meeting_reminder(rule) is True

    assert sup.relay.writes == [True, False, True, False, False]
    assert sup.state_store.snapshot.last_state is None


@pytest.mark.asyncio
async def test_reload_swaps_rules_and_keeps_relay_state(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    cfg = sup.load()
    await sup.set_relay(True)
    first_relay = sup.relay

    cfg.rules = [r for r in cfg.rules if r.trigger != "session:lock"]
    cfg.rules[0].trigger = "custom:trigger"
    config_store.save(cfg, tmp_path / "config.json")
    await sup.reload()

    assert sup.relay is not first_relay
    assert sup.relay.last_known_state is True
    assert "custom:trigger" in sup.engine.triggers
    assert sup.engine.relay is sup.relay
    assert ("Configuration reloaded", False) in sup.notifier.messages


@pytest.mark.asyncio
async def test_reload_restarts_watchers(tmp_path) -> None:
    class FakeWatcher:
        name = "FakeWatcher"

        def __init__(self) -> None:
            self.started = 0
            self.stopped = 0

        async def start(self) -> None:
            self.started += 1

        async def stop(self) -> None:
            self.stopped += 1

    watcher = FakeWatcher()
    sup = _supervisor(tmp_path, watchers=[watcher])

    await sup.start()
    await sup.reload()
    await sup.stop()

    assert watcher.started == 2
    assert watcher.stopped == 2


@pytest.mark.asyncio
async def test_reload_mid_lock_cycle_keeps_unlock_suppressed(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    sup.load()
    await sup.set_relay(False)
    guard = sup.lock_guard

    await sup.fire_safe("session:lock")
    await sup.reload()
    outcomes = await sup.fire_safe("session:unlock")

    assert sup.lock_guard is guard
    assert outcomes == []
    assert sup.relay.writes == [False, False]
    assert sup.relay.last_known_state is False


@pytest.mark.asyncio
async def test_reload_applies_keep_off_setting_to_guard(tmp_path) -> None:
    sup = _supervisor(tmp_path)
    cfg = sup.load()
    assert sup.lock_guard.enabled is True

    cfg.session.keep_off_on_unlock_if_was_off = False
    config_store.save(cfg, tmp_path / "config.json")
    await sup.reload()

    assert sup.lock_guard.enabled is False

import pytest

from relay_supervisor.models.app_config import SessionConfig
from relay_supervisor.watchers import session
from relay_supervisor.watchers.session import (
    LockCycleGuard,
    SessionStatus,
    SessionWatcher,
    parse_show_session,
    session_transitions,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class Recorder:
    def __init__(self) -> None:
        self.fired: list[str] = []

    async def __call__(self, trigger, data=None) -> None:
        self.fired.append(trigger)


def test_parse_show_session() -> None:
    out = "LockedHint=yes\nRemote=no\nActive=yes\nState=active\n"

    status = parse_show_session(out)

    assert status == SessionStatus(locked=True, remote=False, active=True, state="active")


def test_parse_show_session_defaults_on_missing_keys() -> None:
    status = parse_show_session("garbage\n")

    assert status.locked is False
    assert status.remote is False
    assert status.state == "active"


def test_first_sample_yields_no_transitions() -> None:
    assert session_transitions(None, SessionStatus(locked=True)) == []


def test_session_transitions() -> None:
    unlocked = SessionStatus()
    locked = SessionStatus(locked=True)
    remote = SessionStatus(remote=True)
    closing = SessionStatus(state="closing")

    assert session_transitions(unlocked, locked) == [session.LOCK]
    assert session_transitions(locked, unlocked) == [session.UNLOCK]
    assert session_transitions(unlocked, remote) == [session.REMOTE_CONNECT]
    assert session_transitions(remote, unlocked) == [session.REMOTE_DISCONNECT]
    assert session_transitions(unlocked, closing) == [session.LOGOFF]
    assert session_transitions(locked, locked) == []


def test_lock_cycle_guard_keeps_lamp_off() -> None:
    guard = LockCycleGuard()

    assert guard.allow("session:lock", False) is True
    assert guard.was_off_before_lock is True
    assert guard.allow("session:unlock", False) is False
    assert guard.was_off_before_lock is None
    assert guard.allow("session:unlock", False) is True


def test_lock_cycle_guard_allows_when_lamp_was_on() -> None:
    guard = LockCycleGuard()

    guard.allow("session:lock", True)

    assert guard.allow("session:unlock", False) is True


def test_lock_cycle_guard_unknown_state_allows() -> None:
    guard = LockCycleGuard()

    guard.allow("session:lock", None)

    assert guard.allow("session:unlock", None) is True


def test_lock_cycle_guard_disabled() -> None:
    guard = LockCycleGuard(keep_off_on_unlock_if_was_off=False)

    guard.allow("session:lock", False)

    assert guard.allow("session:unlock", False) is True


@pytest.mark.asyncio
async def test_remote_session_suppresses_unlock_and_lock() -> None:
    rec = Recorder()
    watcher = SessionWatcher(SessionConfig(), rec, clock=FakeClock())

    assert watcher.handle_event("session:unlock", remote=True) is False
    assert watcher.handle_event("session:logon", remote=True) is False
    assert watcher.handle_event("session:lock", remote=True) is False
    assert watcher.handle_event("session:logoff", remote=True) is True
    await watcher.wait_idle()

    assert rec.fired == ["session:logoff"]


@pytest.mark.asyncio
async def test_remote_suppression_can_be_turned_off() -> None:
    rec = Recorder()
    cfg = SessionConfig(suppress_logon_unlock_when_rdp=False, suppress_lock_when_rdp=False)
    watcher = SessionWatcher(cfg, rec, clock=FakeClock())

    assert watcher.handle_event("session:lock", remote=True) is True
    await watcher.wait_idle()

    assert rec.fired == ["session:lock"]


@pytest.mark.asyncio
async def test_duplicate_events_within_window_are_dropped() -> None:
    rec = Recorder()
    clock = FakeClock()
    watcher = SessionWatcher(SessionConfig(), rec, clock=clock)

    assert watcher.handle_event("session:lock", remote=False) is True
    clock.now += 0.5
    assert watcher.handle_event("session:lock", remote=False) is False
    clock.now += 0.1
    assert watcher.handle_event("session:unlock", remote=False) is True
    clock.now += 0.1
    assert watcher.handle_event("session:lock", remote=False) is True
    clock.now += 0.8
    assert watcher.handle_event("session:lock", remote=False) is True
    await watcher.wait_idle()

    assert rec.fired == ["session:lock", "session:unlock", "session:lock", "session:lock"]


@pytest.mark.asyncio
async def test_tick_emits_transitions_from_query() -> None:
    samples = [
        SessionStatus(),
        SessionStatus(locked=True),
        None,
        SessionStatus(),
    ]

    async def query():
        return samples.pop(0)

    rec = Recorder()
    clock = FakeClock()
    watcher = SessionWatcher(SessionConfig(), rec, query=query, clock=clock)

    await watcher._before_first_tick()
    await watcher.tick()
    clock.now += 5
    await watcher.tick()
    await watcher.tick()
    await watcher.wait_idle()

    assert rec.fired == ["session:lock", "session:unlock"]


@pytest.mark.asyncio
async def test_query_session_without_loginctl(monkeypatch) -> None:
    monkeypatch.setattr(session.cli, "get_loginctl_cmd", lambda: None)

    assert await session.query_session() is None
    assert await session.is_remote_session() is False


@pytest.mark.asyncio
async def test_query_session_parses_loginctl_output(monkeypatch) -> None:
    calls = []

    async def fake_run_cmd(cmd, timeout=None):
        calls.append(cmd)
        return 0, "LockedHint=no\nRemote=yes\nActive=yes\nState=online\n", ""

    monkeypatch.setattr(session.cli, "get_loginctl_cmd", lambda: "/usr/bin/loginctl")
    monkeypatch.setattr(session.cli, "run_cmd", fake_run_cmd)

    status = await session.query_session("c2")

    assert status.remote is True
    assert status.state == "online"
    assert calls[0][:3] == ["/usr/bin/loginctl", "show-session", "c2"]
    assert "LockedHint" in calls[0]

import pytest

from relay_supervisor.models.app_config import (
    MeetingSignalConfig,
    SoftwareSignalDefinition,
    SoftwareSignalsConfig,
)
from relay_supervisor.watchers import signals
from relay_supervisor.watchers.signals import (
    MeetingSignalWatcher,
    SoftwareSignalsWatcher,
    any_process_running,
    process_name_candidates,
)


class Recorder:
    def __init__(self) -> None:
        self.fired: list[str] = []

    async def __call__(self, trigger, data=None) -> None:
        self.fired.append(trigger)


class Snapshots:
    def __init__(self, *frames: set[str]) -> None:
        self.frames = list(frames)

    def __call__(self) -> set[str]:
        return self.frames.pop(0) if len(self.frames) > 1 else self.frames[0]


def test_process_name_candidates() -> None:
    assert process_name_candidates("Microsoft Teams.exe") == ["microsoft teams", "microsoftteams"]
    assert process_name_candidates("zoom") == ["zoom"]
    assert process_name_candidates("  ") == []


def test_any_process_running() -> None:
    running = {"microsoftteams", "bash"}

    assert any_process_running(["Microsoft Teams"], running) is True
    assert any_process_running(["Zoom", "Slack"], running) is False


def test_running_process_names_uses_psutil(monkeypatch) -> None:
    class Proc:
        def __init__(self, name):
            self.info = {"name": name}

    monkeypatch.setattr(
        signals.psutil, "process_iter", lambda attrs: [Proc("Zoom.exe"), Proc(None), Proc("bash")]
    )

    assert signals.running_process_names() == {"zoom", "bash"}


@pytest.mark.asyncio
async def test_meeting_signal_edges() -> None:
    rec = Recorder()
    snaps = Snapshots(set(), {"zoom"}, {"zoom"}, set())
    watcher = MeetingSignalWatcher(
        MeetingSignalConfig(enabled=True, process_names=["Zoom"]), rec, snapshot=snaps
    )

    for _ in range(4):
        await watcher.tick()
    await watcher.wait_idle()

    assert rec.fired == ["signal:meeting:on", "signal:meeting:off"]
    assert watcher.is_on is False


def test_meeting_signal_disabled() -> None:
    watcher = MeetingSignalWatcher(MeetingSignalConfig(enabled=False), Recorder())

    assert watcher.enabled() is False


@pytest.mark.asyncio
async def test_rdp_and_software_signals() -> None:
    rdp_values = [False, True, True, False]

    async def remote():
        return rdp_values.pop(0)

    cfg = SoftwareSignalsConfig(
        enabled=True,
        emit_rdp_signal=True,
        poll_seconds=2,
        signals=[
            SoftwareSignalDefinition(name="ninja", enabled=True, process_names=["NinjaRMMAgent"]),
            SoftwareSignalDefinition(
                name="remote-tool", enabled=True, require_rdp=True, process_names=["anydesk"]
            ),
        ],
    )
    rec = Recorder()
    snaps = Snapshots({"anydesk"}, {"anydesk", "ninjarmmagent"}, {"anydesk"})
    watcher = SoftwareSignalsWatcher(cfg, rec, snapshot=snaps, remote_query=remote)

    await watcher._before_first_tick()
    await watcher.tick()
    await watcher.tick()
    await watcher.tick()
    await watcher.wait_idle()

    assert rec.fired == [
        "signal:rdp:on",
        "signal:remote-tool:on",
        "signal:ninja:on",
        "signal:rdp:off",
        "signal:ninja:off",
        "signal:remote-tool:off",
    ]

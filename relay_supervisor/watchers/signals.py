"""Process-presence signals.

`MeetingSignalWatcher` emits ``signal:meeting:on|off`` when any of the
configured meeting apps starts or stops. `SoftwareSignalsWatcher` emits
``signal:rdp:on|off`` on remote-session changes and ``signal:<name>:on|off``
for each configured process signal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

import psutil

from ..models.app_config import MeetingSignalConfig, SoftwareSignalsConfig
from .base import PollingWatcher, TriggerCallback
from .session import is_remote_session

logger = logging.getLogger(__name__)

ProcessSnapshot = Callable[[], set[str]]
RemoteQuery = Callable[[], Awaitable[bool]]


def _strip_exe(name: str) -> str:
    return name[:-4] if name.lower().endswith(".exe") else name


def running_process_names() -> set[str]:
    """Lower-cased names of the running processes (``.exe`` stripped)."""
    names: set[str] = set()
    for proc in psutil.process_iter(["name"]):
        name = proc.info.get("name") or ""
        if name:
            names.add(_strip_exe(name).lower())
    return names


def process_name_candidates(name: str) -> list[str]:
    """``"Microsoft Teams.exe"`` -> ``["microsoft teams", "microsoftteams"]``."""
    cleaned = _strip_exe((name or "").strip()).strip()
    if not cleaned:
        return []
    out = [cleaned.lower()]
    no_spaces = cleaned.replace(" ", "").lower()
    if no_spaces and no_spaces != out[0]:
        out.append(no_spaces)
    return out


def any_process_running(names: Iterable[str], running: set[str]) -> bool:
    for name in names:
        for candidate in process_name_candidates(name):
            if candidate in running:
                return True
    return False


def _clamp_poll(seconds: int) -> float:
    return float(max(1, min(60, seconds)))


class MeetingSignalWatcher(PollingWatcher):
    name = "MeetingSignalWatcher"
    initial_delay_s = 1.0

    def __init__(
        self,
        cfg: MeetingSignalConfig,
        on_trigger: TriggerCallback,
        snapshot: Optional[ProcessSnapshot] = None,
    ) -> None:
        super().__init__(on_trigger)
        self.cfg = cfg
        self.interval_s = _clamp_poll(cfg.poll_seconds)
        self._snapshot = snapshot or running_process_names
        self.is_on = False

    def enabled(self) -> bool:
        return self.cfg.enabled

    async def tick(self) -> None:
        running = await asyncio.to_thread(self._snapshot)
        active = any_process_running(self.cfg.process_names, running)
        if active == self.is_on:
            return
        self.is_on = active
        logger.info("Meeting signal -> %s", "ON" if active else "OFF")
        self._emit("signal:meeting:on" if active else "signal:meeting:off")


class SoftwareSignalsWatcher(PollingWatcher):
    name = "SoftwareSignalsWatcher"

    def __init__(
        self,
        cfg: SoftwareSignalsConfig,
        on_trigger: TriggerCallback,
        snapshot: Optional[ProcessSnapshot] = None,
        remote_query: Optional[RemoteQuery] = None,
    ) -> None:
        super().__init__(on_trigger)
        self.cfg = cfg
        self.interval_s = _clamp_poll(cfg.poll_seconds)
        self._snapshot = snapshot or running_process_names
        self._remote_query = remote_query or is_remote_session
        self.last_rdp = False
        self.states: dict[str, bool] = {}

    def enabled(self) -> bool:
        return self.cfg.enabled

    async def _before_first_tick(self) -> None:
        self.last_rdp = await self._remote_query()

    async def tick(self) -> None:
        rdp = await self._remote_query()
        if self.cfg.emit_rdp_signal and rdp != self.last_rdp:
            self.last_rdp = rdp
            logger.info("RDP -> %s", "ON" if rdp else "OFF")
            self._emit("signal:rdp:on" if rdp else "signal:rdp:off")

        signals = [s for s in self.cfg.signals if s.enabled and s.name.strip()]
        if not signals:
            return
        running = await asyncio.to_thread(self._snapshot)
        for sig in signals:
            name = sig.name.strip()
            active = any_process_running(sig.process_names, running)
            if sig.require_rdp and not rdp:
                active = False
            key = name.lower()
            if active == self.states.get(key, False):
                continue
            self.states[key] = active
            logger.info("Signal %s -> %s", name, "ON" if active else "OFF")
            self._emit(f"signal:{name}:{'on' if active else 'off'}")

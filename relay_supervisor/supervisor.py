"""Application wiring: config, relay, rule engine, watchers and notifications."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Mapping, Optional

import httpx

from . import config, config_store
from .actions import BlinkGate, run_blink_gated
from .engine import RuleEngine, RuleOutcome
from .models.actions import Blink
from .models.app_config import AppConfig, MeetingReminderRuleConfig
from .notify import Notifier
from .relay import RelayController, SerialRelaySettings, detect_ch340_port
from .runtime import STARTUP_TIME, format_uptime, uptime
from .state import RelayStateStore
from .watchers.base import BaseWatcher
from .watchers.hotkeys import HotkeyWatcher
from .watchers.reminders import ReminderWatcher
from .watchers.schedule import ScheduleWatcher
from .watchers.session import LockCycleGuard, SessionWatcher
from .watchers.signals import MeetingSignalWatcher, SoftwareSignalsWatcher

logger = logging.getLogger(__name__)

MANUAL_SERIES = config_store.MANUAL_SERIES

WatcherFactory = Callable[["Supervisor", AppConfig], list[BaseWatcher]]


def default_watchers(sup: "Supervisor", cfg: AppConfig) -> list[BaseWatcher]:
    return [
        SessionWatcher(cfg.session, sup.fire_safe),
        HotkeyWatcher(cfg.hotkeys, sup.fire_safe),
        ScheduleWatcher(cfg.schedules, sup.fire_safe),
        MeetingSignalWatcher(cfg.meeting_signal, sup.fire_safe),
        SoftwareSignalsWatcher(cfg.software_signals, sup.fire_safe),
        ReminderWatcher(cfg.meeting_reminders, sup.fire_meeting_reminder),
    ]


class Supervisor:
    """Owns every long-lived component of the running application.

    `load` reads the configuration and state; `start` also starts the
    watchers and fires ``session:logon`` and ``system:startup``. One-shot
    command line operations only call `load`.
    """

    def __init__(
        self,
        config_path: str | Path | None = None,
        state_path: str | Path | None = None,
        *,
        port_override: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        relay_factory: Callable[..., RelayController] = RelayController,
        watcher_factory: WatcherFactory = default_watchers,
    ) -> None:
        self.config_path = Path(config_path or config.RELAY_CONFIG_PATH)
        self.state_store = RelayStateStore(state_path or config.RELAY_STATE_PATH)
        self.port_override = port_override
        self.notifier = notifier or Notifier(config.BOT_TOKEN, config.ALLOWED)
        self.blink_gate = BlinkGate()
        self._relay_factory = relay_factory
        self._watcher_factory = watcher_factory
        self.cfg: Optional[AppConfig] = None
        self.relay: Optional[RelayController] = None
        self.engine: Optional[RuleEngine] = None
        self.lock_guard = LockCycleGuard()
        self.watchers: list[BaseWatcher] = []
        self._http: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def load(self) -> AppConfig:
        self.state_store.load_state()
        cfg = config_store.load_or_create_default(self.config_path)
        self._apply_config(cfg)
        return cfg

    def _resolve_port(self, cfg: AppConfig) -> str:
        if self.port_override:
            return self.port_override
        port = (cfg.serial.port or "").strip()
        if not port and cfg.serial.auto_detect_ch340:
            detected = detect_ch340_port()
            if detected:
                cfg.serial.port = detected
                config_store.save(cfg, self.config_path)
                port = detected
        if not port:
            logger.warning("No serial port configured or detected; relay commands will fail")
        return port

    def _create_relay(self, cfg: AppConfig) -> RelayController:
        settings = SerialRelaySettings(
            port_name=self._resolve_port(cfg),
            address=cfg.serial.address,
            baud_rate=cfg.serial.baud_rate,
            timeout_ms=cfg.serial.timeout_ms,
        )
        previous = self.relay
        last = None
        if previous is not None and previous.settings == settings:
            last = previous.last_known_state
        return self._relay_factory(settings, last)

    def _apply_config(self, cfg: AppConfig) -> None:
        self.cfg = cfg
        self.relay = self._create_relay(cfg)
        if self.engine is None:
            self.engine = RuleEngine(self.relay, self.state_store, self.blink_gate, self._http)
        else:
            self.engine.relay = self.relay
        self.engine.load_rules(config_store.build_rules(cfg))
        self.lock_guard.enabled = cfg.session.keep_off_on_unlock_if_was_off

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.cfg is None:
            self.load()
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=10.0)
            self.engine.http = self._http
        await self._start_watchers()
        logger.info("relay-supervisor started at %s", STARTUP_TIME.strftime("%Y-%m-%d %H:%M:%S"))
        await self.fire_safe("session:logon")
        await self.fire_safe("system:startup")

    async def stop(self) -> None:
        await self._stop_watchers()
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            if self.engine is not None:
                self.engine.http = None
        await self.notifier.close()
        logger.info("relay-supervisor stopped after %s", format_uptime(uptime()))

    async def reload(self) -> None:
        """Re-read the configuration file and restart the watchers."""
        logger.info("Reloading configuration from %s", self.config_path)
        try:
            await self._stop_watchers()
            cfg = config_store.load_or_create_default(self.config_path)
            self._apply_config(cfg)
            await self._start_watchers()
        except Exception as e:
            logger.exception("Reload failed")
            await self.notifier.notify(f"Reload failed: {e}", error=True)
            return
        await self.notifier.notify("Configuration reloaded")

    async def _start_watchers(self) -> None:
        self.watchers = self._watcher_factory(self, self.cfg)
        for watcher in self.watchers:
            await watcher.start()

    async def _stop_watchers(self) -> None:
        for watcher in self.watchers:
            try:
                await watcher.stop()
            except Exception:
                logger.exception("Failed to stop %s", watcher.name)
        self.watchers = []

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _notify_on_actions(self) -> bool:
        return config.NOTIFY_ON_ACTIONS or bool(self.cfg and self.cfg.ui.notify_on_actions)

    async def fire_safe(
        self, trigger: str, data: Optional[Mapping[str, str]] = None
    ) -> list[RuleOutcome]:
        """Fire a trigger; nothing raised here reaches the caller."""
        try:
            logger.info("Trigger: %s", trigger)
            if not self.lock_guard.allow(trigger, self.relay.last_known_state):
                return []
            outcomes = await self.engine.fire(trigger, data)
        except Exception as e:
            logger.exception("Error running trigger %s", trigger)
            await self.notifier.notify(f"Error: {e}", error=True)
            return []

        for outcome in outcomes:
            if outcome.error is not None:
                await self.notifier.notify(
                    f"{outcome.trigger} failed: {outcome.error}", error=True
                )
        if self._notify_on_actions() and any(o.ok and o.actions_run for o in outcomes):
            await self.notifier.notify(f"{trigger} done")
        return outcomes

    async def fire_meeting_reminder(self, rule: MeetingReminderRuleConfig) -> bool:
        return await self.blink(rule.blink, source=f"meeting-reminder:{rule.name}")

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def set_relay(self, on: bool) -> bool:
        try:
            await self.relay.set(on)
            self.state_store.record_relay_change(on, "cli:on" if on else "cli:off", MANUAL_SERIES)
        except Exception as e:
            logger.exception("Manual relay set failed")
            await self.notifier.notify(f"Relay error: {e}", error=True)
            return False
        logger.info("Manual relay set: %s", "On" if on else "Off")
        if self._notify_on_actions():
            await self.notifier.notify("ON" if on else "OFF")
        return True

    async def toggle_relay(self) -> bool:
        current = bool(self.relay.last_known_state)
        target = not current
        try:
            await self.relay.set(target)
            self.state_store.record_relay_change(target, "cli:toggle", MANUAL_SERIES)
        except Exception as e:
            logger.exception("Manual relay toggle failed")
            await self.notifier.notify(f"Relay error: {e}", error=True)
            return False
        logger.info(
            "Manual relay toggle: %s -> %s", "On" if current else "Off", "On" if target else "Off"
        )
        if self._notify_on_actions():
            await self.notifier.notify("ON" if target else "OFF")
        return True

    async def blink(self, cfg: Optional[Blink] = None, source: str = "blink") -> bool:
        """Run a blink through the shared gate; False if skipped or failed."""
        try:
            ran = await run_blink_gated(cfg or Blink(), self.relay, self.blink_gate, source)
        except Exception as e:
            logger.exception("Blink failed (%s)", source)
            await self.notifier.notify(f"Blink error: {e}", error=True)
            return False
        if ran and self._notify_on_actions():
            await self.notifier.notify(f"Blink done ({source})")
        return ran

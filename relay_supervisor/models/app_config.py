"""Configuration file model.

Everything the JSON configuration file holds, as dataclasses with
``from_dict``/``to_dict``. Entries that cannot be parsed (bad action, empty
trigger, wrong types) are logged and skipped; the rest of the file loads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, TypeVar

from .actions import (
    Action,
    Blink,
    ConfigError,
    action_to_dict,
    blink_to_dict,
    parse_action,
    parse_blink,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _str(raw: Mapping[str, Any], key: str, default: str = "") -> str:
    value = raw.get(key, default)
    return default if value is None else str(value)


def _opt_str(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool) or value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s: %r; using %s", key, value, default)
        return default


def _bool(raw: Mapping[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return default if value is None else bool(value)


def _str_list(raw: Mapping[str, Any], key: str) -> Optional[List[str]]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{key} must be a list of strings")
    return [str(v) for v in value if v is not None]


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, Mapping) else {}


def _parse_actions(raw: Mapping[str, Any]) -> List[Action]:
    items = raw.get("actions") or []
    if not isinstance(items, list):
        raise ConfigError("actions must be a list")
    return [parse_action(item) for item in items]


def _parse_entries(
    raw: Any, parse: Callable[[Mapping[str, Any]], T], what: str
) -> List[T]:
    out: List[T] = []
    if not isinstance(raw, list):
        return out
    for i, item in enumerate(raw):
        try:
            if not isinstance(item, Mapping):
                raise ConfigError(f"expected an object, got {type(item).__name__}")
            out.append(parse(item))
        except ConfigError as e:
            logger.warning("Skipping %s #%d: %s", what, i + 1, e)
    return out


@dataclass
class SerialConfig:
    port: Optional[str] = None
    auto_detect_ch340: bool = True
    address: int = 1
    baud_rate: int = 9600
    timeout_ms: int = 500

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SerialConfig":
        return cls(
            port=_opt_str(raw, "port"),
            auto_detect_ch340=_bool(raw, "auto_detect_ch340", True),
            address=_int(raw, "address", 1),
            baud_rate=_int(raw, "baud_rate", 9600),
            timeout_ms=_int(raw, "timeout_ms", 500),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "auto_detect_ch340": self.auto_detect_ch340,
            "address": self.address,
            "baud_rate": self.baud_rate,
            "timeout_ms": self.timeout_ms,
        }


@dataclass
class RuleConfig:
    trigger: str = ""
    series: Optional[str] = None
    allow_when_last_series: Optional[List[str]] = None
    enabled: bool = True
    actions: List[Action] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "RuleConfig":
        trigger = _str(raw, "trigger").strip()
        if not trigger:
            raise ConfigError("rule has no trigger")
        return cls(
            trigger=trigger,
            series=_opt_str(raw, "series"),
            allow_when_last_series=_str_list(raw, "allow_when_last_series"),
            enabled=_bool(raw, "enabled", True),
            actions=_parse_actions(raw),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "trigger": self.trigger,
            "series": self.series,
            "allow_when_last_series": self.allow_when_last_series,
            "enabled": self.enabled,
            "actions": [action_to_dict(a) for a in self.actions],
        }


@dataclass
class ScheduleConfig:
    name: str = "schedule"
    enabled: bool = True
    cron: str = "0 23 * * 1-5"
    use_utc: bool = False
    series: Optional[str] = None
    allow_when_last_series: Optional[List[str]] = None
    actions: List[Action] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ScheduleConfig":
        name = _str(raw, "name", "schedule").strip()
        if not name:
            raise ConfigError("schedule has no name")
        return cls(
            name=name,
            enabled=_bool(raw, "enabled", True),
            cron=_str(raw, "cron").strip(),
            use_utc=_bool(raw, "use_utc", False),
            series=_opt_str(raw, "series"),
            allow_when_last_series=_str_list(raw, "allow_when_last_series"),
            actions=_parse_actions(raw),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "cron": self.cron,
            "use_utc": self.use_utc,
            "series": self.series,
            "allow_when_last_series": self.allow_when_last_series,
            "actions": [action_to_dict(a) for a in self.actions],
        }


@dataclass
class HotkeyConfig:
    name: str = "toggle"
    modifiers: List[str] = field(default_factory=lambda: ["Control", "Alt"])
    key: str = "L"
    series: Optional[str] = None
    allow_when_last_series: Optional[List[str]] = None
    actions: List[Action] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "HotkeyConfig":
        name = _str(raw, "name", "toggle").strip()
        if not name:
            raise ConfigError("hotkey has no name")
        modifiers = _str_list(raw, "modifiers")
        return cls(
            name=name,
            modifiers=modifiers if modifiers is not None else ["Control", "Alt"],
            key=_str(raw, "key").strip(),
            series=_opt_str(raw, "series"),
            allow_when_last_series=_str_list(raw, "allow_when_last_series"),
            actions=_parse_actions(raw),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "modifiers": list(self.modifiers),
            "key": self.key,
            "series": self.series,
            "allow_when_last_series": self.allow_when_last_series,
            "actions": [action_to_dict(a) for a in self.actions],
        }


DEFAULT_MEETING_PROCESSES = [
    "Teams",
    "ms-teams",
    "MSTeams",
    "MicrosoftTeams",
    "Microsoft Teams",
    "Zoom",
]


@dataclass
class MeetingSignalConfig:
    enabled: bool = False
    process_names: List[str] = field(default_factory=lambda: list(DEFAULT_MEETING_PROCESSES))
    poll_seconds: int = 2

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MeetingSignalConfig":
        names = _str_list(raw, "process_names")
        return cls(
            enabled=_bool(raw, "enabled", False),
            process_names=names if names is not None else list(DEFAULT_MEETING_PROCESSES),
            poll_seconds=_int(raw, "poll_seconds", 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "process_names": list(self.process_names),
            "poll_seconds": self.poll_seconds,
        }


@dataclass
class SoftwareSignalDefinition:
    name: str = "signal"
    enabled: bool = False
    require_rdp: bool = False
    process_names: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SoftwareSignalDefinition":
        name = _str(raw, "name", "signal").strip()
        if not name:
            raise ConfigError("signal has no name")
        return cls(
            name=name,
            enabled=_bool(raw, "enabled", False),
            require_rdp=_bool(raw, "require_rdp", False),
            process_names=_str_list(raw, "process_names") or [],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "require_rdp": self.require_rdp,
            "process_names": list(self.process_names),
        }


@dataclass
class SoftwareSignalsConfig:
    enabled: bool = False
    emit_rdp_signal: bool = True
    poll_seconds: int = 2
    signals: List[SoftwareSignalDefinition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SoftwareSignalsConfig":
        return cls(
            enabled=_bool(raw, "enabled", False),
            emit_rdp_signal=_bool(raw, "emit_rdp_signal", True),
            poll_seconds=_int(raw, "poll_seconds", 2),
            signals=_parse_entries(
                raw.get("signals"), SoftwareSignalDefinition.from_dict, "software signal"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "emit_rdp_signal": self.emit_rdp_signal,
            "poll_seconds": self.poll_seconds,
            "signals": [s.to_dict() for s in self.signals],
        }


def _default_reminder_blink() -> Blink:
    return Blink(count=3, on_ms=250, off_ms=250, restore_initial_state=True)


@dataclass
class MeetingReminderRuleConfig:
    name: str = "default"
    enabled: bool = True
    meeting_cron: str = "0 9 * * 1-5"
    lead_minutes: int = 10
    repeat_every_minutes: int = 2
    blink: Blink = field(default_factory=_default_reminder_blink)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MeetingReminderRuleConfig":
        blink_raw = raw.get("blink")
        return cls(
            name=_str(raw, "name", "default").strip() or "default",
            enabled=_bool(raw, "enabled", True),
            meeting_cron=_str(raw, "meeting_cron", "0 9 * * 1-5").strip(),
            lead_minutes=_int(raw, "lead_minutes", 10),
            repeat_every_minutes=_int(raw, "repeat_every_minutes", 2),
            blink=(
                parse_blink(blink_raw)
                if isinstance(blink_raw, Mapping)
                else _default_reminder_blink()
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "meeting_cron": self.meeting_cron,
            "lead_minutes": self.lead_minutes,
            "repeat_every_minutes": self.repeat_every_minutes,
            "blink": blink_to_dict(self.blink),
        }


@dataclass
class MeetingRemindersConfig:
    enabled: bool = False
    poll_seconds: int = 15
    rules: List[MeetingReminderRuleConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MeetingRemindersConfig":
        return cls(
            enabled=_bool(raw, "enabled", False),
            poll_seconds=_int(raw, "poll_seconds", 15),
            rules=_parse_entries(
                raw.get("rules"), MeetingReminderRuleConfig.from_dict, "meeting reminder"
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "poll_seconds": self.poll_seconds,
            "rules": [r.to_dict() for r in self.rules],
        }


@dataclass
class SessionConfig:
    suppress_logon_unlock_when_rdp: bool = True
    suppress_lock_when_rdp: bool = True
    keep_off_on_unlock_if_was_off: bool = True
    poll_seconds: int = 2

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SessionConfig":
        return cls(
            suppress_logon_unlock_when_rdp=_bool(raw, "suppress_logon_unlock_when_rdp", True),
            suppress_lock_when_rdp=_bool(raw, "suppress_lock_when_rdp", True),
            keep_off_on_unlock_if_was_off=_bool(raw, "keep_off_on_unlock_if_was_off", True),
            poll_seconds=_int(raw, "poll_seconds", 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "suppress_logon_unlock_when_rdp": self.suppress_logon_unlock_when_rdp,
            "suppress_lock_when_rdp": self.suppress_lock_when_rdp,
            "keep_off_on_unlock_if_was_off": self.keep_off_on_unlock_if_was_off,
            "poll_seconds": self.poll_seconds,
        }


@dataclass
class UiConfig:
    notify_on_actions: bool = False

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "UiConfig":
        return cls(notify_on_actions=_bool(raw, "notify_on_actions", False))

    def to_dict(self) -> dict[str, Any]:
        return {"notify_on_actions": self.notify_on_actions}


@dataclass
class AppConfig:
    serial: SerialConfig = field(default_factory=SerialConfig)
    rules: List[RuleConfig] = field(default_factory=list)
    schedules: List[ScheduleConfig] = field(default_factory=list)
    hotkeys: List[HotkeyConfig] = field(default_factory=list)
    meeting_signal: MeetingSignalConfig = field(default_factory=MeetingSignalConfig)
    software_signals: SoftwareSignalsConfig = field(default_factory=SoftwareSignalsConfig)
    meeting_reminders: MeetingRemindersConfig = field(default_factory=MeetingRemindersConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    ui: UiConfig = field(default_factory=UiConfig)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AppConfig":
        if not isinstance(raw, Mapping):
            raise ConfigError("configuration root must be an object")
        return cls(
            serial=SerialConfig.from_dict(_section(raw, "serial")),
            rules=_parse_entries(raw.get("rules"), RuleConfig.from_dict, "rule"),
            schedules=_parse_entries(raw.get("schedules"), ScheduleConfig.from_dict, "schedule"),
            hotkeys=_parse_entries(raw.get("hotkeys"), HotkeyConfig.from_dict, "hotkey"),
            meeting_signal=MeetingSignalConfig.from_dict(_section(raw, "meeting_signal")),
            software_signals=SoftwareSignalsConfig.from_dict(_section(raw, "software_signals")),
            meeting_reminders=MeetingRemindersConfig.from_dict(
                _section(raw, "meeting_reminders")
            ),
            session=SessionConfig.from_dict(_section(raw, "session")),
            ui=UiConfig.from_dict(_section(raw, "ui")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial": self.serial.to_dict(),
            "rules": [r.to_dict() for r in self.rules],
            "schedules": [s.to_dict() for s in self.schedules],
            "hotkeys": [h.to_dict() for h in self.hotkeys],
            "meeting_signal": self.meeting_signal.to_dict(),
            "software_signals": self.software_signals.to_dict(),
            "meeting_reminders": self.meeting_reminders.to_dict(),
            "session": self.session.to_dict(),
            "ui": self.ui.to_dict(),
        }

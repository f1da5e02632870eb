"""Load, migrate and save the JSON configuration file."""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List

from . import config
from .models.actions import Blink, RelaySet
from .models.app_config import (
    AppConfig,
    HotkeyConfig,
    MeetingReminderRuleConfig,
    MeetingRemindersConfig,
    MeetingSignalConfig,
    RuleConfig,
    ScheduleConfig,
    SerialConfig,
    SoftwareSignalDefinition,
    SoftwareSignalsConfig,
)

logger = logging.getLogger(__name__)

SESSION_SERIES = "session"
MANUAL_SERIES = "manual"
SCHEDULE_SERIES = "schedule"

_REQUIRED_MEETING_PROCESSES = (
    "Teams",
    "ms-teams",
    "MSTeams",
    "MicrosoftTeams",
    "Microsoft Teams",
)


def config_path() -> Path:
    return Path(config.RELAY_CONFIG_PATH)


def _quick_blink() -> Blink:
    return Blink(count=3, on_ms=250, off_ms=250, restore_initial_state=True)


def create_default() -> AppConfig:
    """Default configuration written on first run."""
    cfg = AppConfig(serial=SerialConfig())
    cfg.software_signals = SoftwareSignalsConfig(
        enabled=True,
        emit_rdp_signal=True,
        poll_seconds=2,
        signals=[
            SoftwareSignalDefinition(
                name="ninja-desktop",
                enabled=False,
                require_rdp=True,
                process_names=[
                    "NinjaRMMAgentPatcher",
                    "NinjaRMMAgent",
                    "NinjaRemote",
                    "NinjaRMM",
                ],
            )
        ],
    )
    cfg.meeting_reminders = MeetingRemindersConfig(
        enabled=False,
        poll_seconds=15,
        rules=[MeetingReminderRuleConfig(name="default", enabled=False, blink=_quick_blink())],
    )

    def relay_rule(trigger: str, state: str, **kwargs) -> RuleConfig:
        return RuleConfig(trigger=trigger, actions=[RelaySet(state)], **kwargs)

    cfg.rules = [
        relay_rule("session:logon", "off", series=SESSION_SERIES),
        relay_rule("session:logoff", "off", series=SESSION_SERIES),
        relay_rule("session:lock", "off", series=SESSION_SERIES),
        relay_rule(
            "session:unlock",
            "on",
            series=SESSION_SERIES,
            allow_when_last_series=[SESSION_SERIES],
        ),
        relay_rule("signal:meeting:on", "off", enabled=False),
        relay_rule("signal:meeting:off", "on", enabled=False),
        relay_rule("signal:rdp:on", "off", enabled=False),
        relay_rule("signal:rdp:off", "on", enabled=False),
        RuleConfig(trigger="signal:ninja-desktop:on", actions=[_quick_blink()]),
        relay_rule("signal:ninja-desktop:off", "on", enabled=False),
    ]
    cfg.hotkeys = [
        HotkeyConfig(
            name="toggle",
            modifiers=["Control", "Alt"],
            key="L",
            series=MANUAL_SERIES,
            actions=[RelaySet("toggle")],
        )
    ]
    cfg.schedules = [
        ScheduleConfig(
            name="weekdays-off-23",
            enabled=False,
            cron="0 23 * * 1-5",
            series=SCHEDULE_SERIES,
            actions=[RelaySet("off")],
        ),
        ScheduleConfig(
            name="weekdays-on-0730",
            enabled=False,
            cron="30 7 * * 1-5",
            series=SCHEDULE_SERIES,
            actions=[RelaySet("on")],
        ),
    ]
    return cfg


def _find_rule(cfg: AppConfig, trigger: str) -> RuleConfig | None:
    wanted = trigger.strip().lower()
    for rule in cfg.rules:
        if (rule.trigger or "").strip().lower() == wanted:
            return rule
    return None


def _ensure_relay_rule(cfg: AppConfig, trigger: str, state: str) -> bool:
    if _find_rule(cfg, trigger) is not None:
        return False
    cfg.rules.append(RuleConfig(trigger=trigger, actions=[RelaySet(state)]))
    return True


def _ensure_blink_rule(cfg: AppConfig, trigger: str) -> bool:
    if _find_rule(cfg, trigger) is not None:
        return False
    cfg.rules.append(RuleConfig(trigger=trigger, actions=[_quick_blink()]))
    return True


def _ensure_series(cfg: AppConfig, trigger: str, series: str) -> bool:
    rule = _find_rule(cfg, trigger)
    if rule is None or (rule.series or "").strip():
        return False
    rule.series = series
    return True


def _ensure_allow_list_on_unlock(cfg: AppConfig, allow: Iterable[str]) -> bool:
    rule = _find_rule(cfg, "session:unlock")
    if rule is None or rule.allow_when_last_series:
        return False
    turns_on = any(isinstance(a, RelaySet) and a.state == "on" for a in rule.actions)
    if not turns_on:
        return False
    rule.allow_when_last_series = list(allow)
    return True


def _ensure_process_names(cfg: MeetingSignalConfig, required: Iterable[str]) -> bool:
    known = {n.strip().lower() for n in cfg.process_names}
    changed = False
    for name in required:
        if name.lower() not in known:
            cfg.process_names.append(name)
            known.add(name.lower())
            changed = True
    return changed


def apply_migrations(cfg: AppConfig) -> bool:
    """Bring an older configuration up to date; returns True if it changed."""
    changed = False
    changed |= _ensure_relay_rule(cfg, "session:lock", "off")
    changed |= _ensure_relay_rule(cfg, "session:unlock", "on")
    changed |= _ensure_blink_rule(cfg, "signal:ninja-desktop:on")
    for trigger in ("session:logon", "session:logoff", "session:lock", "session:unlock"):
        changed |= _ensure_series(cfg, trigger, SESSION_SERIES)
    changed |= _ensure_allow_list_on_unlock(cfg, [SESSION_SERIES])
    changed |= _ensure_process_names(cfg.meeting_signal, _REQUIRED_MEETING_PROCESSES)
    return changed


def save(cfg: AppConfig, path: str | Path | None = None) -> Path:
    target = Path(path) if path is not None else config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(cfg.to_dict(), indent=2, ensure_ascii=False))
    logger.info("Config saved: %s", target)
    return target


def load_or_create_default(path: str | Path | None = None) -> AppConfig:
    """Read the configuration file, creating or repairing it when needed.

    A missing file is replaced by `create_default()`. A file that is not
    valid JSON (or not an object) is copied to ``<name>.broken.<timestamp>``
    and replaced by the default as well.
    """
    target = Path(path) if path is not None else config_path()
    if not target.exists():
        cfg = create_default()
        save(cfg, target)
        return cfg

    try:
        raw = json.loads(target.read_text())
        cfg = AppConfig.from_dict(raw)
    except (ValueError, OSError) as e:
        logger.error("Failed to parse %s; writing defaults (broken file kept): %s", target, e)
        backup = target.with_name(
            f"{target.name}.broken.{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        )
        try:
            shutil.copyfile(target, backup)
        except OSError:
            logger.warning("Unable to back up %s", target, exc_info=True)
        cfg = create_default()
        save(cfg, target)
        return cfg

    if apply_migrations(cfg):
        save(cfg, target)
    return cfg


def build_rules(cfg: AppConfig) -> List[RuleConfig]:
    """Merge plain rules, hotkeys and schedules into one rule list."""
    rules: List[RuleConfig] = list(cfg.rules)
    for hk in cfg.hotkeys:
        if not hk.actions:
            continue
        rules.append(
            RuleConfig(
                trigger=f"hotkey:{hk.name}",
                series=(hk.series or "").strip() or MANUAL_SERIES,
                allow_when_last_series=hk.allow_when_last_series,
                actions=list(hk.actions),
            )
        )
    for sch in cfg.schedules:
        if not sch.actions:
            continue
        rules.append(
            RuleConfig(
                trigger=f"schedule:{sch.name}",
                series=(sch.series or "").strip() or SCHEDULE_SERIES,
                allow_when_last_series=sch.allow_when_last_series,
                actions=list(sch.actions),
            )
        )
    return rules

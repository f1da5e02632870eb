"""Action dataclasses and their JSON (de)serialization.

Actions are plain configuration; `relay_supervisor.actions` executes them.
The JSON form is an object with a ``type`` discriminator::

    {"type": "relay", "state": "toggle"}
    {"type": "blink", "count": 3, "on_ms": 250, "off_ms": 250}
    {"type": "delay", "milliseconds": 500}
    {"type": "run", "file_name": "notify-send", "arguments": "'lamp on'"}
    {"type": "webhook", "url": "http://hub.local/hook", "method": "POST"}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union


class ConfigError(ValueError):
    """Configuration entry that cannot be used (skipped by callers)."""


RELAY_STATES = ("on", "off", "toggle")


@dataclass(frozen=True)
class RelaySet:
    state: str = "toggle"


@dataclass(frozen=True)
class Blink:
    count: int = 3
    on_ms: int = 1000
    off_ms: int = 1000
    on_ms_sequence: tuple[int, ...] | None = None
    off_ms_sequence: tuple[int, ...] | None = None
    restore_initial_state: bool = True


@dataclass(frozen=True)
class Delay:
    milliseconds: int = 1000


@dataclass(frozen=True)
class RunProcess:
    file_name: str
    arguments: str = ""
    hidden: bool = True


@dataclass(frozen=True)
class Webhook:
    url: str
    method: str = "POST"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | None = None


Action = Union[RelaySet, Blink, Delay, RunProcess, Webhook]


def _as_int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc


def _as_bool(raw: Mapping[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_sequence(raw: Mapping[str, Any], key: str) -> tuple[int, ...] | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{key} must be a list of milliseconds")
    try:
        seq = tuple(int(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must contain integers") from exc
    return seq or None


def parse_blink(raw: Mapping[str, Any]) -> Blink:
    return Blink(
        count=_as_int(raw, "count", 3),
        on_ms=_as_int(raw, "on_ms", 1000),
        off_ms=_as_int(raw, "off_ms", 1000),
        on_ms_sequence=_as_sequence(raw, "on_ms_sequence"),
        off_ms_sequence=_as_sequence(raw, "off_ms_sequence"),
        restore_initial_state=_as_bool(raw, "restore_initial_state", True),
    )


def parse_action(raw: Mapping[str, Any]) -> Action:
    """Build an action from its JSON object; raises `ConfigError`."""
    if not isinstance(raw, Mapping):
        raise ConfigError(f"action must be an object, got {type(raw).__name__}")
    kind = str(raw.get("type") or "").strip().lower()

    if kind == "relay":
        state = str(raw.get("state") or "toggle").strip().lower()
        if state not in RELAY_STATES:
            raise ConfigError(f"unsupported relay state {raw.get('state')!r}; use on/off/toggle")
        return RelaySet(state=state)
    if kind == "blink":
        return parse_blink(raw)
    if kind == "delay":
        return Delay(milliseconds=_as_int(raw, "milliseconds", 1000))
    if kind == "run":
        file_name = str(raw.get("file_name") or "").strip()
        if not file_name:
            raise ConfigError("run action requires file_name")
        return RunProcess(
            file_name=file_name,
            arguments=str(raw.get("arguments") or ""),
            hidden=_as_bool(raw, "hidden", True),
        )
    if kind == "webhook":
        headers = raw.get("headers") or {}
        if not isinstance(headers, Mapping):
            raise ConfigError("webhook headers must be an object")
        body = raw.get("body")
        return Webhook(
            url=str(raw.get("url") or "").strip(),
            method=str(raw.get("method") or "POST").strip().upper(),
            headers={str(k): str(v) for k, v in headers.items()},
            body=None if body is None else str(body),
        )
    raise ConfigError(f"unsupported action type {raw.get('type')!r}")


def blink_to_dict(action: Blink) -> dict[str, Any]:
    data: dict[str, Any] = {
        "count": action.count,
        "on_ms": action.on_ms,
        "off_ms": action.off_ms,
        "restore_initial_state": action.restore_initial_state,
    }
    if action.on_ms_sequence:
        data["on_ms_sequence"] = list(action.on_ms_sequence)
    if action.off_ms_sequence:
        data["off_ms_sequence"] = list(action.off_ms_sequence)
    return data


def action_to_dict(action: Action) -> dict[str, Any]:
    if isinstance(action, RelaySet):
        return {"type": "relay", "state": action.state}
    if isinstance(action, Blink):
        return {"type": "blink", **blink_to_dict(action)}
    if isinstance(action, Delay):
        return {"type": "delay", "milliseconds": action.milliseconds}
    if isinstance(action, RunProcess):
        return {
            "type": "run",
            "file_name": action.file_name,
            "arguments": action.arguments,
            "hidden": action.hidden,
        }
    if isinstance(action, Webhook):
        data: dict[str, Any] = {
            "type": "webhook",
            "url": action.url,
            "method": action.method,
            "headers": dict(action.headers),
        }
        if action.body is not None:
            data["body"] = action.body
        return data
    raise TypeError(f"unknown action {action!r}")

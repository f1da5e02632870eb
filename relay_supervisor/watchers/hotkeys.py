"""Global hotkeys through pynput.

pynput runs its listener on its own thread; presses are handed back to the
event loop with ``call_soon_threadsafe``. pynput is imported only when the
watcher starts because it needs a display (X11/Wayland) to load.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from ..models.actions import ConfigError
from ..models.app_config import HotkeyConfig
from .base import BaseWatcher, TriggerCallback

logger = logging.getLogger(__name__)

_MODIFIERS = {
    "alt": "<alt>",
    "control": "<ctrl>",
    "ctrl": "<ctrl>",
    "shift": "<shift>",
    "win": "<cmd>",
    "windows": "<cmd>",
    "super": "<cmd>",
    "cmd": "<cmd>",
}

_NAMED_KEYS = {
    "space": "space",
    "enter": "enter",
    "return": "enter",
    "tab": "tab",
    "esc": "esc",
    "escape": "esc",
    "home": "home",
    "end": "end",
    "insert": "insert",
    "delete": "delete",
    "backspace": "backspace",
    "pageup": "page_up",
    "pagedown": "page_down",
    "up": "up",
    "down": "down",
    "left": "left",
    "right": "right",
    "pause": "pause",
    "printscreen": "print_screen",
}

ListenerFactory = Callable[[dict[str, Callable[[], None]]], Any]


def _parse_key(key: str) -> str:
    k = (key or "").strip()
    if not k:
        raise ConfigError("hotkey key is empty")
    if len(k) == 1:
        if not k.isprintable() or k.isspace():
            raise ConfigError(f"invalid hotkey key {key!r}")
        return k.lower()
    low = k.lower().replace(" ", "").replace("_", "")
    if low[0] == "f" and low[1:].isdigit() and 1 <= int(low[1:]) <= 24:
        return f"<{low}>"
    # Digit keys written as "D1".."D9"/"D0".
    if len(low) == 2 and low[0] == "d" and low[1].isdigit():
        return low[1]
    if low in _NAMED_KEYS:
        return f"<{_NAMED_KEYS[low]}>"
    raise ConfigError(f"invalid hotkey key {key!r}")


def to_pynput_hotkey(modifiers: Iterable[str], key: str) -> str:
    """Build a pynput hotkey string, e.g. ``["Control", "Alt"], "L" -> "<ctrl>+<alt>+l"``."""
    parts: list[str] = []
    for mod in modifiers:
        name = (mod or "").strip().lower()
        if not name:
            continue
        token = _MODIFIERS.get(name)
        if token is None:
            raise ConfigError(f"unknown hotkey modifier {mod!r}")
        if token not in parts:
            parts.append(token)
    parts.append(_parse_key(key))
    return "+".join(parts)


def build_hotkey_map(hotkeys: Iterable[HotkeyConfig]) -> dict[str, str]:
    """Map pynput hotkey strings to hotkey names; invalid entries are skipped."""
    out: dict[str, str] = {}
    for hk in hotkeys:
        if not hk.actions:
            continue
        try:
            combo = to_pynput_hotkey(hk.modifiers, hk.key)
        except ConfigError as e:
            logger.warning("Invalid hotkey %s: %s", hk.name, e)
            continue
        if combo in out:
            logger.warning("Hotkey %s reuses %s (already bound to %s)", hk.name, combo, out[combo])
            continue
        out[combo] = hk.name
        logger.info("Hotkey registered: %s -> %s", hk.name, combo)
    return out


def _pynput_listener(mapping: dict[str, Callable[[], None]]) -> Any:
    from pynput import keyboard

    return keyboard.GlobalHotKeys(mapping)


class HotkeyWatcher(BaseWatcher):
    name = "HotkeyWatcher"

    def __init__(
        self,
        hotkeys: Iterable[HotkeyConfig],
        on_trigger: TriggerCallback,
        listener_factory: Optional[ListenerFactory] = None,
    ) -> None:
        super().__init__(on_trigger)
        self._bindings = build_hotkey_map(hotkeys)
        self._listener_factory = listener_factory or _pynput_listener
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def bindings(self) -> dict[str, str]:
        return dict(self._bindings)

    def enabled(self) -> bool:
        return bool(self._bindings)

    def _on_press(self, name: str) -> None:
        """Called on the listener thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._emit, f"hotkey:{name}")

    async def _run(self) -> None:
        self._loop = asyncio.get_running_loop()
        callbacks = {
            combo: (lambda name=name: self._on_press(name))
            for combo, name in self._bindings.items()
        }
        listener = self._listener_factory(callbacks)
        listener.start()
        try:
            await self._stop_event.wait()
        finally:
            listener.stop()
            self._loop = None

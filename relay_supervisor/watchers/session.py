"""Session lock/unlock/remote watcher backed by systemd-logind.

`loginctl show-session` is polled and changes of ``LockedHint``,
``Remote`` and ``State`` are turned into ``session:*`` triggers.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .. import cli
from ..models.app_config import SessionConfig
from .base import PollingWatcher, TriggerCallback

logger = logging.getLogger(__name__)

DEDUPE_WINDOW_S = 0.7

LOGON = "session:logon"
LOGOFF = "session:logoff"
LOCK = "session:lock"
UNLOCK = "session:unlock"
REMOTE_CONNECT = "session:remoteconnect"
REMOTE_DISCONNECT = "session:remotedisconnect"

_PROPERTIES = ("LockedHint", "Remote", "Active", "State")


@dataclass(frozen=True)
class SessionStatus:
    locked: bool = False
    remote: bool = False
    active: bool = True
    state: str = "active"


def _yes(value: str | None) -> bool:
    return (value or "").strip().lower() in {"yes", "true", "1"}


def parse_show_session(output: str) -> SessionStatus:
    """Parse ``Key=Value`` lines printed by ``loginctl show-session -p ...``."""
    props: dict[str, str] = {}
    for line in (output or "").splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return SessionStatus(
        locked=_yes(props.get("LockedHint")),
        remote=_yes(props.get("Remote")),
        active=_yes(props.get("Active", "yes")),
        state=(props.get("State") or "active").lower(),
    )


def current_session_id() -> str:
    return os.environ.get("XDG_SESSION_ID") or "auto"


async def query_session(session_id: str | None = None) -> Optional[SessionStatus]:
    """Return the session status, or None when logind cannot be asked."""
    loginctl = cli.get_loginctl_cmd()
    if loginctl is None:
        return None
    cmd = [loginctl, "show-session", session_id or current_session_id()]
    for prop in _PROPERTIES:
        cmd += ["-p", prop]
    rc, out, err = await cli.run_cmd(cmd, timeout=5)
    if rc != 0:
        logger.debug("loginctl show-session failed (rc=%s): %s", rc, err)
        return None
    return parse_show_session(out)


async def is_remote_session(session_id: str | None = None) -> bool:
    status = await query_session(session_id)
    return bool(status and status.remote)


def session_transitions(prev: SessionStatus | None, cur: SessionStatus) -> list[str]:
    """Triggers implied by going from ``prev`` to ``cur`` (none for the first sample)."""
    if prev is None:
        return []
    out: list[str] = []
    if cur.remote and not prev.remote:
        out.append(REMOTE_CONNECT)
    elif prev.remote and not cur.remote:
        out.append(REMOTE_DISCONNECT)
    if cur.locked and not prev.locked:
        out.append(LOCK)
    elif prev.locked and not cur.locked:
        out.append(UNLOCK)
    if cur.state == "closing" and prev.state != "closing":
        out.append(LOGOFF)
    return out


class LockCycleGuard:
    """Keeps the lamp off across a lock/unlock cycle if it was off before.

    On ``session:lock`` it remembers whether the relay was off; the next
    ``session:unlock`` is dropped when that was the case. The memory is
    cleared by every unlock.
    """

    def __init__(self, keep_off_on_unlock_if_was_off: bool = True) -> None:
        self.enabled = keep_off_on_unlock_if_was_off
        self.was_off_before_lock: Optional[bool] = None

    def allow(self, trigger: str, relay_state: Optional[bool]) -> bool:
        key = (trigger or "").strip().lower()
        if key == LOCK:
            self.was_off_before_lock = relay_state is False
            logger.info(
                "Session lock: lamp was %s",
                "OFF" if self.was_off_before_lock else "ON/unknown",
            )
            return True
        if key == UNLOCK:
            was_off = self.was_off_before_lock
            self.was_off_before_lock = None
            if self.enabled and was_off:
                logger.info("Session unlock ignored: lamp was OFF before the lock.")
                return False
        return True


class SessionWatcher(PollingWatcher):
    name = "SessionWatcher"

    def __init__(
        self,
        cfg: SessionConfig,
        on_trigger: TriggerCallback,
        query: Callable[[], Awaitable[Optional[SessionStatus]]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(on_trigger)
        self.cfg = cfg
        self.interval_s = float(max(1, min(60, cfg.poll_seconds)))
        self._query = query or query_session
        self._clock = clock
        self._status: Optional[SessionStatus] = None
        self._last_trigger: Optional[str] = None
        self._last_trigger_at = 0.0

    async def _before_first_tick(self) -> None:
        self._status = await self._query()
        if self._status is None:
            logger.warning("loginctl is not available; session events will not fire")

    async def tick(self) -> None:
        status = await self._query()
        if status is None:
            return
        for trigger in session_transitions(self._status, status):
            logger.info("Session event -> %s", trigger)
            self.handle_event(trigger, remote=status.remote)
        self._status = status

    def handle_event(self, trigger: str, remote: bool) -> bool:
        """Apply RDP suppression and dedupe, then emit; True if emitted."""
        key = trigger.strip().lower()
        if remote:
            if self.cfg.suppress_logon_unlock_when_rdp and key in (LOGON, UNLOCK):
                logger.info("Session event %s ignored (remote session).", key)
                return False
            if self.cfg.suppress_lock_when_rdp and key == LOCK:
                logger.info("Session event %s ignored (remote session).", key)
                return False

        now = self._clock()
        if key == self._last_trigger and (now - self._last_trigger_at) <= DEDUPE_WINDOW_S:
            logger.debug("Duplicate session event ignored: %s", key)
            return False
        self._last_trigger = key
        self._last_trigger_at = now
        self._emit(key)
        return True

"""Action execution against the relay and the state store."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import httpx

from .models.actions import (
    Action,
    Blink,
    Delay,
    RelaySet,
    RunProcess,
    Webhook,
)
from .state import RelayStateStore

logger = logging.getLogger(__name__)

BLINK_MIN_COUNT = 1
BLINK_MAX_COUNT = 100
BLINK_MIN_MS = 20
BLINK_MAX_MS = 10_000

_WEBHOOK_TIMEOUT_S = 10.0


class Relay(Protocol):
    @property
    def last_known_state(self) -> bool | None: ...

    async def set(self, on: bool) -> None: ...


class BlinkGate:
    """Single-slot exclusivity for blink sequences.

    `try_acquire` never waits: a blink that finds the slot taken is skipped.
    """

    def __init__(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


@dataclass
class ExecutionContext:
    """Everything an action needs for one rule run."""

    trigger: str
    data: Mapping[str, str]
    relay: Relay
    state_store: RelayStateStore
    blink_gate: BlinkGate
    http: httpx.AsyncClient | None = None

    @property
    def series(self) -> str | None:
        text = (self.data.get("series") or "").strip()
        return text or None


async def _sleep_ms(ms: int) -> None:
    await asyncio.sleep(ms / 1000)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _pick_ms(sequence: tuple[int, ...] | None, fallback: int, index: int) -> int:
    value = sequence[index % len(sequence)] if sequence else fallback
    return _clamp(value, BLINK_MIN_MS, BLINK_MAX_MS)


def blink_on_ms(cfg: Blink, index: int) -> int:
    return _pick_ms(cfg.on_ms_sequence, cfg.on_ms, index)


def blink_off_ms(cfg: Blink, index: int) -> int:
    return _pick_ms(cfg.off_ms_sequence, cfg.off_ms, index)


def blink_count(cfg: Blink) -> int:
    return _clamp(cfg.count, BLINK_MIN_COUNT, BLINK_MAX_COUNT)


async def run_blink_sequence(cfg: Blink, relay: Relay) -> None:
    """Blink away from the cached state and come back to it.

    The relay is set back to its initial state when the sequence finishes and
    `restore_initial_state` is on, and always when the loop stops early
    (relay error or cancellation).
    """
    initial = bool(relay.last_known_state)
    count = blink_count(cfg)
    completed = False
    try:
        for i in range(count):
            await relay.set(not initial)
            await _sleep_ms(blink_on_ms(cfg, i))
            await relay.set(initial)
            if i < count - 1:
                await _sleep_ms(blink_off_ms(cfg, i))
        completed = True
    finally:
        if cfg.restore_initial_state or not completed:
            try:
                await relay.set(initial)
            except Exception:
                if completed:
                    raise
                logger.exception(
                    "Failed to restore relay to %s after interrupted blink",
                    "On" if initial else "Off",
                )


async def run_blink_gated(cfg: Blink, relay: Relay, gate: BlinkGate, source: str) -> bool:
    """Run a blink through ``gate``; return False when it was skipped."""
    if not gate.try_acquire():
        logger.info("Blink from %s skipped: another blink is running", source)
        return False
    try:
        await run_blink_sequence(cfg, relay)
    finally:
        gate.release()
    return True


async def _run_relay_set(action: RelaySet, ctx: ExecutionContext) -> None:
    if action.state == "toggle":
        target = not bool(ctx.relay.last_known_state)
    elif action.state in ("on", "off"):
        target = action.state == "on"
    else:
        raise ValueError(f"Unsupported relay state {action.state!r}")
    await ctx.relay.set(target)
    ctx.state_store.record_relay_change(target, ctx.trigger, ctx.series)


async def _run_delay(action: Delay, ctx: ExecutionContext) -> None:
    await _sleep_ms(max(0, action.milliseconds))


def _popen_kwargs(hidden: bool) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW if hidden else 0
    else:
        kwargs["start_new_session"] = True
    return kwargs


async def _run_process(action: RunProcess, ctx: ExecutionContext) -> None:
    args = [action.file_name, *shlex.split(action.arguments or "")]
    proc = await asyncio.to_thread(subprocess.Popen, args, **_popen_kwargs(action.hidden))
    logger.info("Started %s (pid %s) for %s", action.file_name, proc.pid, ctx.trigger)


async def _send_webhook(action: Webhook, client: httpx.AsyncClient) -> httpx.Response:
    headers = dict(action.headers)
    content = None
    if action.body is not None:
        content = action.body.encode("utf-8")
        if not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"
    resp = await client.request(
        action.method or "POST", action.url, headers=headers, content=content
    )
    resp.raise_for_status()
    return resp


async def _run_webhook(action: Webhook, ctx: ExecutionContext) -> None:
    if not action.url:
        logger.debug("Webhook for %s has no URL; skipping", ctx.trigger)
        return
    if ctx.http is not None:
        resp = await _send_webhook(action, ctx.http)
    else:
        async with httpx.AsyncClient(timeout=_WEBHOOK_TIMEOUT_S) as client:
            resp = await _send_webhook(action, client)
    logger.info("Webhook %s %s -> %s", action.method, action.url, resp.status_code)


async def execute_action(action: Action, ctx: ExecutionContext) -> None:
    """Run one action. Errors propagate to the caller (the rule engine)."""
    if isinstance(action, RelaySet):
        await _run_relay_set(action, ctx)
    elif isinstance(action, Blink):
        await run_blink_gated(action, ctx.relay, ctx.blink_gate, ctx.trigger)
    elif isinstance(action, Delay):
        await _run_delay(action, ctx)
    elif isinstance(action, RunProcess):
        await _run_process(action, ctx)
    elif isinstance(action, Webhook):
        await _run_webhook(action, ctx)
    else:
        raise TypeError(f"Unsupported action {action!r}")

"""Entrypoint for the ``relay-supervisor`` command.

``run`` starts the long-running supervisor (watchers, rules, notifications);
the other subcommands are one-shot operations against the same
configuration and state files.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional, Sequence

from . import config
from .logger import setup_logging
from .models.actions import Blink
from .state import RelayStateStore
from .supervisor import Supervisor

logger = logging.getLogger(__name__)


def _parse_data(items: Sequence[str]) -> dict[str, str]:
    data: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {item!r}")
        data[key.strip()] = value
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay-supervisor",
        description="Drive a USB relay (LCUS-1) from session, hotkey, schedule and process triggers.",
    )
    parser.add_argument("--config", help="configuration file (default: %(default)s)",
                        default=config.RELAY_CONFIG_PATH)
    parser.add_argument("--state", help="state file (default: %(default)s)",
                        default=config.RELAY_STATE_PATH)
    parser.add_argument("--port", help="serial port, overrides the configuration",
                        default=config.RELAY_PORT)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="run until interrupted (SIGHUP reloads the configuration)")
    sub.add_parser("on", help="turn the relay on")
    sub.add_parser("off", help="turn the relay off")
    sub.add_parser("toggle", help="invert the last known relay state")

    blink = sub.add_parser("blink", help="run a blink sequence")
    blink.add_argument("--count", type=int, default=3)
    blink.add_argument("--on-ms", type=int, default=1000)
    blink.add_argument("--off-ms", type=int, default=1000)
    blink.add_argument("--no-restore", action="store_true",
                       help="do not force the initial state back at the end")

    fire = sub.add_parser("fire", help="fire a trigger through the rule engine")
    fire.add_argument("trigger")
    fire.add_argument("--data", nargs="*", default=[], metavar="KEY=VALUE")

    sub.add_parser("status", help="print the last recorded relay change")
    sub.add_parser("config-path", help="print the configuration file path")
    return parser


def format_status(store: RelayStateStore) -> str:
    snap = store.snapshot
    if snap.last_state is None:
        state = "unknown"
    else:
        state = "ON" if snap.last_state else "OFF"
    updated = snap.last_updated_utc.strftime("%Y-%m-%d %H:%M:%S UTC") if snap.last_updated_utc else "-"
    return "\n".join(
        [
            f"state:   {state}",
            f"trigger: {snap.last_trigger or '-'}",
            f"series:  {snap.last_series or '-'}",
            f"updated: {updated}",
        ]
    )


async def serve(sup: Supervisor) -> None:
    """Run the supervisor until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    reloads: set[asyncio.Task] = set()

    def _reload() -> None:
        task = loop.create_task(sup.reload())
        reloads.add(task)
        task.add_done_callback(reloads.discard)

    for sig, handler in ((signal.SIGINT, stop.set), (signal.SIGTERM, stop.set)):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, handler)
    if hasattr(signal, "SIGHUP"):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGHUP, _reload)

    await sup.start()
    try:
        await stop.wait()
    finally:
        for task in list(reloads):
            task.cancel()
        await sup.stop()


async def dispatch(args: argparse.Namespace, sup: Optional[Supervisor] = None) -> int:
    if args.command == "config-path":
        print(args.config)
        return 0
    if args.command == "status":
        store = RelayStateStore(args.state)
        store.load_state()
        print(format_status(store))
        return 0

    sup = sup or Supervisor(args.config, args.state, port_override=args.port)
    if args.command == "run":
        await serve(sup)
        return 0

    sup.load()
    try:
        if args.command in ("on", "off"):
            ok = await sup.set_relay(args.command == "on")
        elif args.command == "toggle":
            ok = await sup.toggle_relay()
        elif args.command == "blink":
            ok = await sup.blink(
                Blink(
                    count=args.count,
                    on_ms=args.on_ms,
                    off_ms=args.off_ms,
                    restore_initial_state=not args.no_restore,
                ),
                source="cli:blink",
            )
        elif args.command == "fire":
            outcomes = await sup.fire_safe(args.trigger, _parse_data(args.data))
            if not outcomes:
                print(f"{args.trigger}: no matching rules")
            for o in outcomes:
                status = "skipped" if o.skipped else ("ok" if o.ok else f"failed: {o.error}")
                print(f"{o.trigger} [{o.series or '-'}]: {status}")
            ok = all(o.ok for o in outcomes)
        else:
            raise ValueError(f"unknown command {args.command!r}")
    finally:
        await sup.notifier.close()
    return 0 if ok else 1


def run(argv: Optional[Sequence[str]] = None) -> None:
    setup_logging(config.LOG_FILE)
    config.validate_settings()
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        code = asyncio.run(dispatch(args))
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    run()

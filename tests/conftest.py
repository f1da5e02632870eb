"""Shared test fixtures and dummy classes."""

from __future__ import annotations

from typing import Any

import pytest
import serial

from relay_supervisor.relay import RelayController, RelayError


class DummyRelay:
    """In-memory relay recording every commanded state."""

    def __init__(self, state: bool | None = None, fail: bool = False) -> None:
        self._state = state
        self.fail = fail
        self.writes: list[bool] = []
        self.settings = None

    @property
    def last_known_state(self) -> bool | None:
        return self._state

    async def set(self, on: bool) -> None:
        if self.fail:
            raise RelayError("Unable to communicate with port TEST")
        self.writes.append(on)
        self._state = on


def dummy_relay_factory(fail: bool = False):
    """Build a ``relay_factory`` for Supervisor that returns DummyRelays."""
    created: list[DummyRelay] = []

    def factory(settings, last_known_state=None) -> DummyRelay:
        relay = DummyRelay(state=last_known_state, fail=fail)
        relay.settings = settings
        created.append(relay)
        return relay

    factory.created = created
    return factory


class DummySerial:
    """Stands in for serial.Serial; records opened ports and written bytes."""

    opened: list[dict[str, Any]] = []
    written: list[bytes] = []
    fail_open: int = 0

    def __init__(self, **kwargs: Any) -> None:
        if DummySerial.fail_open > 0:
            DummySerial.fail_open -= 1
            raise serial.SerialException(f"could not open port {kwargs.get('port')}")
        DummySerial.opened.append(kwargs)
        self.closed = False

    def write(self, data: bytes) -> int:
        DummySerial.written.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True


class DummyNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, bool]] = []
        self.closed = False

    @property
    def enabled(self) -> bool:
        return True

    async def notify(self, text: str, *, error: bool = False) -> None:
        self.messages.append((text, error))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def dummy_serial(monkeypatch):
    DummySerial.opened = []
    DummySerial.written = []
    DummySerial.fail_open = 0
    monkeypatch.setattr("relay_supervisor.relay.serial.Serial", DummySerial)
    monkeypatch.setattr(RelayController, "SETTLE_S", 0)
    monkeypatch.setattr(RelayController, "RETRY_BACKOFF_S", 0)
    return DummySerial

"""LCUS-1 USB relay driver.

Protocol: 4 bytes ``[0xA0, address, cmd, checksum]`` with ``cmd`` 0x01 (on)
or 0x00 (off) and ``checksum = (0xA0 + address + cmd) & 0xFF``. The module
never answers, so every command is write-only.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import serial
from serial.tools import list_ports

logger = logging.getLogger(__name__)

START_BYTE = 0xA0
CMD_ON = 0x01
CMD_OFF = 0x00

# QinHeng CH340 USB-serial bridge used by LCUS-1 boards.
CH340_VID = 0x1A86
CH340_PID = 0x7523
_CH340_HINTS = ("ch340", "usb-serial", "usb serial")


class RelayError(RuntimeError):
    """Relay could not be commanded (port missing, open/write failure)."""


@dataclass(frozen=True)
class SerialRelaySettings:
    port_name: str
    address: int = 1
    baud_rate: int = 9600
    timeout_ms: int = 500


def build_packet(address: int, on: bool) -> bytes:
    """Encode an on/off command for the module at ``address`` (1..255)."""
    if not 1 <= address <= 255:
        raise ValueError(f"relay address must be in 1..255, got {address}")
    cmd = CMD_ON if on else CMD_OFF
    checksum = (START_BYTE + address + cmd) & 0xFF
    return bytes([START_BYTE, address, cmd, checksum])


def detect_ch340_port() -> str | None:
    """Return the device path of the first CH340 adapter, or None."""
    try:
        ports = list_ports.comports()
    except Exception:
        logger.warning("Serial port enumeration failed", exc_info=True)
        return None
    for info in ports:
        if info.vid == CH340_VID and info.pid == CH340_PID:
            logger.info("Auto-detected CH340 relay on %s (%s)", info.device, info.description)
            return info.device
        text = f"{info.description or ''} {info.hwid or ''}".lower()
        if any(hint in text for hint in _CH340_HINTS):
            logger.info("Auto-detected USB-serial relay on %s (%s)", info.device, info.description)
            return info.device
    return None


class RelayController:
    """Drives one relay module over a serial line.

    ``last_known_state`` is what this controller last wrote successfully,
    not what the hardware reports. The port is opened only for the duration
    of a single `set` call.
    """

    MAX_ATTEMPTS = 2
    SETTLE_S = 0.05
    RETRY_BACKOFF_S = 0.4

    def __init__(
        self, settings: SerialRelaySettings, last_known_state: bool | None = None
    ) -> None:
        self._settings = settings
        self._last = last_known_state

    @property
    def settings(self) -> SerialRelaySettings:
        return self._settings

    @property
    def last_known_state(self) -> bool | None:
        return self._last

    async def set(self, on: bool) -> None:
        port_name = (self._settings.port_name or "").strip()
        if not port_name:
            raise RelayError("Serial port is not configured")

        packet = build_packet(self._settings.address, on)
        logger.info(
            "Sending relay command on %s: address=%s state=%s bytes=%s",
            port_name,
            self._settings.address,
            "On" if on else "Off",
            packet.hex("-").upper(),
        )

        last_error: Exception | None = None
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            if attempt > 1:
                await asyncio.sleep(self.RETRY_BACKOFF_S)
            try:
                await self._transmit(port_name, packet)
                break
            except (serial.SerialException, OSError, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "Attempt %d/%d failed on port %s: %s",
                    attempt,
                    self.MAX_ATTEMPTS,
                    port_name,
                    exc,
                )
        else:
            raise RelayError(
                f"Unable to communicate with port {port_name}: {last_error}. "
                "Check the USB relay and try again."
            ) from last_error

        self._last = on
        logger.info("Relay command sent. last_known_state=%s", "On" if on else "Off")

    async def _transmit(self, port_name: str, packet: bytes) -> None:
        timeout_s = max(0, self._settings.timeout_ms) / 1000
        port = await asyncio.to_thread(
            serial.Serial,
            port=port_name,
            baudrate=self._settings.baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout_s,
            write_timeout=timeout_s,
        )
        try:
            await asyncio.sleep(self.SETTLE_S)
            await asyncio.to_thread(port.write, packet)
            await asyncio.sleep(self.SETTLE_S)
        finally:
            port.close()

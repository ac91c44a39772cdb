"""One serial BLE observer module: AT bring-up, scanning, and sighting dedup."""

from __future__ import annotations

import asyncio
import logging
import re
import string
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque

from config.defaults import BRING_UP_SETTLE_SEC, DEFAULT_REPORT_INTERVAL_MS, DETECTION_RETENTION_SEC
from protocol import at_commands
from scanner.channel import LineChannel
from scanner.errors import BringUpError, DeviceBusyError, DeviceNotConnectedError
from scanner.manufacturers import lookup_manufacturer

MANUFACTURER_DATA_MARKER = "FF"
_HEX_DIGITS = frozenset(string.hexdigits)

BRING_UP_STEPS: tuple[tuple[str, Callable[[], str]], ...] = (
    ("restart", at_commands.restart),
    ("enter_command_mode", at_commands.enter_command_mode),
    ("set_role", at_commands.set_role),
    ("restart", at_commands.restart),
    ("enter_command_mode", at_commands.enter_command_mode),
)


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"


@dataclass(frozen=True)
class ScanTiming:
    settle_delays: tuple[float, ...] = BRING_UP_SETTLE_SEC
    clear_interval: float = DEFAULT_REPORT_INTERVAL_MS / 1000
    retention: float = DETECTION_RETENTION_SEC

    def __post_init__(self) -> None:
        if len(self.settle_delays) != len(BRING_UP_STEPS):
            raise ValueError(f"settle_delays needs {len(BRING_UP_STEPS)} entries, got {len(self.settle_delays)}")


@dataclass(frozen=True)
class Detection:
    manufacturer: str
    code: str
    observed_at: float


@dataclass(frozen=True)
class DeviceEvent:
    manufacturer: str
    device_id: str
    channel_path: str
    timestamp_ms: int


@dataclass(frozen=True)
class DeviceError:
    device_id: str
    channel_path: str
    operation: str
    error: BaseException


@dataclass(frozen=True)
class DeviceStatus:
    device_id: str
    channel_path: str
    connected: bool
    init_state: InitState
    scanning: bool
    report_enabled: bool


@dataclass
class DeviceCallbacks:
    on_device: Callable[[DeviceEvent], None] | None = None
    on_error: Callable[[DeviceError], None] | None = None
    on_disconnected: Callable[["ScanDevice"], None] | None = None


def derive_device_id(channel_path: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", channel_path)


def parse_manufacturer_code(line: str) -> str | None:
    """Extract the 4-hex-digit company id from an observer report line.

    Expected shape: ``<a>,<b>,<key>:<hex payload>[,...]``. The two octets after
    the first ``FF`` marker are little-endian, so they are swapped.
    """
    fields = line.split(",")
    if len(fields) < 3:
        return None
    parts = fields[2].split(":")
    if len(parts) < 2 or not parts[1]:
        return None
    payload = parts[1]
    index = payload.find(MANUFACTURER_DATA_MARKER)
    if index < 0:
        return None
    octets = payload[index + 2 : index + 6]
    if len(octets) != 4 or not set(octets) <= _HEX_DIGITS:
        return None
    return (octets[2:4] + octets[0:2]).upper()


class ScanDevice:
    def __init__(
        self,
        channel: LineChannel,
        *,
        device_id: str | None = None,
        timing: ScanTiming | None = None,
        callbacks: DeviceCallbacks | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.channel = channel
        self.channel_path = channel.path
        self.device_id = device_id or derive_device_id(channel.path)
        self.timing = timing or ScanTiming()
        self.callbacks = callbacks or DeviceCallbacks()
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._connected = False
        self._init_state = InitState.UNINITIALIZED
        self._scanning = False
        self._report_enabled = False
        self._seen_codes: set[str] = set()
        self._recent: Deque[Detection] = deque()
        self._clear_task: asyncio.Task[None] | None = None
        self._disconnected_fired = False

    @property
    def init_state(self) -> InitState:
        return self._init_state

    @property
    def scanning(self) -> bool:
        return self._scanning

    @property
    def report_enabled(self) -> bool:
        return self._report_enabled

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def seen_codes(self) -> frozenset[str]:
        return frozenset(self._seen_codes)

    @property
    def recent_detections(self) -> tuple[Detection, ...]:
        return tuple(self._recent)

    def status(self) -> DeviceStatus:
        return DeviceStatus(
            device_id=self.device_id,
            channel_path=self.channel_path,
            connected=self._connected,
            init_state=self._init_state,
            scanning=self._scanning,
            report_enabled=self._report_enabled,
        )

    async def connect(self) -> None:
        await self.channel.open(self.handle_line, self._on_channel_closed)
        self._connected = True
        self._disconnected_fired = False
        self.logger.info("[DEVICE] connected id=%s path=%s", self.device_id, self.channel_path)

    async def disconnect(self) -> None:
        try:
            await self.stop_scan()
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("[DEVICE] stop before disconnect failed id=%s error=%s", self.device_id, exc)
        self._report_enabled = False
        await self.channel.close()

    async def initialize(self) -> None:
        if self._init_state is InitState.INITIALIZED:
            return
        if self._init_state is InitState.INITIALIZING:
            raise DeviceBusyError(f"device {self.device_id} is initializing")

        self._init_state = InitState.INITIALIZING
        self.logger.info("[DEVICE] bring-up start id=%s", self.device_id)
        started = self._clock()
        step = "-"
        try:
            for (step, build), settle in zip(BRING_UP_STEPS, self.timing.settle_delays):
                await self._send(build())
                if settle > 0:
                    await asyncio.sleep(settle)
            if not self._connected:
                raise DeviceNotConnectedError(f"device {self.device_id} closed during bring-up")
        except asyncio.CancelledError:
            self._init_state = InitState.UNINITIALIZED
            raise
        except Exception as exc:  # noqa: BLE001
            self._init_state = InitState.UNINITIALIZED
            self._emit_error("initialize", exc)
            raise BringUpError(f"bring-up of {self.device_id} failed at {step}: {exc}") from exc

        self._init_state = InitState.INITIALIZED
        self.logger.info(
            "[DEVICE] bring-up done id=%s elapsed=%.1fs",
            self.device_id,
            self._clock() - started,
        )

    async def start_scan(self, rssi: str) -> None:
        if self._init_state is InitState.UNINITIALIZED:
            await self.initialize()
        if self._init_state is InitState.INITIALIZING:
            raise DeviceBusyError(f"device {self.device_id} is initializing, try again later")
        if self._scanning:
            self.logger.debug("[DEVICE] already scanning id=%s", self.device_id)
            return

        self._seen_codes.clear()
        self._scanning = True
        self._start_clear_task()
        try:
            await self._send(at_commands.start_observer(rssi))
        except Exception as exc:
            self._scanning = False
            self._cancel_clear_task()
            self._emit_error("start_scan", exc)
            raise
        self.logger.info("[DEVICE] scan started id=%s rssi=%s", self.device_id, rssi)

    async def stop_scan(self) -> None:
        if not self._scanning:
            return
        # State reflects the attempted stop even if the write fails.
        self._scanning = False
        self._cancel_clear_task()
        try:
            await self._send(at_commands.stop_observer())
        except Exception as exc:
            self._emit_error("stop_scan", exc)
            raise
        self.logger.info("[DEVICE] scan stopped id=%s", self.device_id)

    def start_report(self) -> None:
        self._report_enabled = True
        self._purge_recent(self._clock())
        self.logger.info("[DEVICE] report enabled id=%s buffered=%d", self.device_id, len(self._recent))
        if not self._recent:
            return
        names = list(dict.fromkeys(item.manufacturer for item in self._recent))
        self._seen_codes.update(item.code for item in self._recent)
        self._emit_device(",".join(names))

    def stop_report(self) -> None:
        self._report_enabled = False
        self.logger.info("[DEVICE] report disabled id=%s", self.device_id)

    def handle_line(self, line: str) -> None:
        code = parse_manufacturer_code(line)
        if code is None:
            return
        manufacturer = lookup_manufacturer(code)
        if manufacturer is None:
            self.logger.debug("[DEVICE] unknown manufacturer id=%s code=%s", self.device_id, code)
            return

        now = self._clock()
        self._purge_recent(now)
        self._recent.append(Detection(manufacturer=manufacturer, code=code, observed_at=now))

        if code in self._seen_codes:
            return
        if not self._report_enabled:
            return
        self._seen_codes.add(code)
        self._emit_device(manufacturer)

    async def _send(self, data: str) -> None:
        if not self._connected:
            raise DeviceNotConnectedError(f"device {self.device_id} is not connected")
        await self.channel.write(data)

    def _purge_recent(self, now: float) -> None:
        cutoff = now - self.timing.retention
        while self._recent and self._recent[0].observed_at < cutoff:
            self._recent.popleft()

    def _start_clear_task(self) -> None:
        self._cancel_clear_task()
        self._clear_task = asyncio.create_task(self._clear_seen_periodically())

    def _cancel_clear_task(self) -> None:
        task = self._clear_task
        self._clear_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _clear_seen_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.timing.clear_interval)
            self.clear_seen()

    def clear_seen(self) -> None:
        if self._seen_codes:
            self.logger.debug("[DEVICE] dedup window reset id=%s codes=%s", self.device_id, sorted(self._seen_codes))
        self._seen_codes.clear()

    def _emit_device(self, manufacturer: str) -> None:
        self.logger.info("[DEVICE] detected id=%s mf=%s", self.device_id, manufacturer)
        if self.callbacks.on_device is None:
            return
        self.callbacks.on_device(
            DeviceEvent(
                manufacturer=manufacturer,
                device_id=self.device_id,
                channel_path=self.channel_path,
                timestamp_ms=int(time.time() * 1000),
            )
        )

    def _emit_error(self, operation: str, error: BaseException) -> None:
        self.logger.error("[DEVICE] %s failed id=%s error=%s", operation, self.device_id, error)
        if self.callbacks.on_error is None:
            return
        self.callbacks.on_error(
            DeviceError(
                device_id=self.device_id,
                channel_path=self.channel_path,
                operation=operation,
                error=error,
            )
        )

    def _on_channel_closed(self) -> None:
        self._connected = False
        self._scanning = False
        self._report_enabled = False
        self._init_state = InitState.UNINITIALIZED
        self._cancel_clear_task()
        if self._disconnected_fired:
            return
        self._disconnected_fired = True
        self.logger.warning("[DEVICE] disconnected id=%s path=%s", self.device_id, self.channel_path)
        if self.callbacks.on_disconnected is not None:
            self.callbacks.on_disconnected(self)

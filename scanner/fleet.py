"""Fleet supervisor: concurrent bring-up, reconnect backoff, and command fan-out."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Sequence

from config.defaults import DEFAULT_RSSI, RECONNECT_BASE_DELAY_SEC, RECONNECT_MAX_ATTEMPTS
from config.settings import DeviceSettings
from scanner.channel import LineChannel, SerialLineChannel
from scanner.errors import DeviceNotConnectedError, DeviceNotFoundError
from scanner.scan_device import DeviceCallbacks, DeviceError, DeviceEvent, DeviceStatus, ScanDevice, ScanTiming

ChannelFactory = Callable[[DeviceSettings], LineChannel]
DeviceOperation = Callable[[ScanDevice], Awaitable[None]]


def serial_channel_factory(logger: logging.Logger | None = None) -> ChannelFactory:
    def _factory(settings: DeviceSettings) -> LineChannel:
        return SerialLineChannel(settings.serial_path, settings.baud_rate, logger=logger)

    return _factory


@dataclass(frozen=True)
class ConnectionStats:
    total: int
    connected: int
    failed: int
    reconnecting: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class FleetCallbacks:
    on_device: Callable[[DeviceEvent], None] | None = None
    on_device_error: Callable[[DeviceError], None] | None = None
    on_connected: Callable[[DeviceStatus], None] | None = None
    on_disconnected: Callable[[DeviceStatus], None] | None = None


class FleetSupervisor:
    """Owns every configured scanner and the per-device reconnect bookkeeping.

    A device id maps to at most one live ScanDevice and at most one pending
    reconnect task. A fresh ScanDevice is built for every connection attempt.
    """

    def __init__(
        self,
        devices: Sequence[DeviceSettings],
        *,
        logger: logging.Logger,
        default_rssi: str = DEFAULT_RSSI,
        timing: ScanTiming | None = None,
        channel_factory: ChannelFactory | None = None,
        callbacks: FleetCallbacks | None = None,
        max_attempts: int = RECONNECT_MAX_ATTEMPTS,
        base_delay: float = RECONNECT_BASE_DELAY_SEC,
        scan_on_connect: bool = False,
        device_log_prefix: bool = True,
    ) -> None:
        self.logger = logger
        self.default_rssi = default_rssi
        self.timing = timing or ScanTiming()
        self.channel_factory = channel_factory or serial_channel_factory(logger)
        self.callbacks = callbacks or FleetCallbacks()
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.scan_on_connect = scan_on_connect
        self.device_log_prefix = device_log_prefix
        self._configs: dict[str, DeviceSettings] = {}
        for settings in devices:
            if settings.enabled:
                self._configs[settings.resolved_device_id] = settings
        self._devices: dict[str, ScanDevice] = {}
        self._reconnect_tasks: dict[str, asyncio.Task[None]] = {}
        self._reconnect_attempts: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._closing = False

    @property
    def device_ids(self) -> list[str]:
        return list(self._configs)

    def get_device(self, device_id: str) -> ScanDevice | None:
        return self._devices.get(device_id)

    def devices_info(self) -> list[DeviceStatus]:
        return [device.status() for device in self._devices.values()]

    def reconnect_attempts(self, device_id: str) -> int:
        return self._reconnect_attempts.get(device_id, 0)

    def has_pending_reconnect(self, device_id: str) -> bool:
        task = self._reconnect_tasks.get(device_id)
        return task is not None and not task.done()

    def get_connection_stats(self) -> ConnectionStats:
        connected = reconnecting = failed = 0
        for device_id in self._configs:
            if device_id in self._devices:
                connected += 1
            elif self.has_pending_reconnect(device_id):
                reconnecting += 1
            else:
                failed += 1
        return ConnectionStats(total=len(self._configs), connected=connected, failed=failed, reconnecting=reconnecting)

    async def initialize_all(self) -> None:
        self._closing = False
        configs = list(self._configs.items())
        results = await asyncio.gather(
            *(self.initialize_device(settings) for _, settings in configs),
            return_exceptions=True,
        )
        for (device_id, settings), result in zip(configs, results):
            if isinstance(result, BaseException):
                self.logger.error(
                    "[FLEET] initialize failed id=%s path=%s error=%s",
                    device_id,
                    settings.serial_path,
                    result,
                )
        stats = self.get_connection_stats()
        self.logger.info("[FLEET] initialize done connected=%d/%d", stats.connected, stats.total)

    async def initialize_device(self, settings: DeviceSettings) -> None:
        device_id = settings.resolved_device_id
        async with self._lock_for(device_id):
            if device_id in self._devices:
                self.logger.debug("[FLEET] already connected id=%s", device_id)
                return
            device = ScanDevice(
                self.channel_factory(settings),
                device_id=device_id,
                timing=self.timing,
                callbacks=DeviceCallbacks(
                    on_device=self._handle_device_event,
                    on_error=self._handle_device_error,
                    on_disconnected=self._handle_disconnected,
                ),
                logger=self.logger.getChild(device_id) if self.device_log_prefix else self.logger,
            )
            try:
                await device.connect()
                await device.initialize()
                if self.scan_on_connect:
                    await device.start_scan(self.default_rssi)
                if not device.connected:
                    raise DeviceNotConnectedError(f"device {device_id} closed before it became live")
            except BaseException:
                with suppress(Exception):
                    await device.channel.close()
                raise

            self._devices[device_id] = device
            self._reconnect_attempts.pop(device_id, None)
            self.logger.info("[FLEET] device ready id=%s path=%s", device_id, settings.serial_path)
            if self.callbacks.on_connected is not None:
                self.callbacks.on_connected(device.status())

    async def reconnect_failed(self) -> None:
        pending = [
            settings
            for device_id, settings in self._configs.items()
            if device_id not in self._devices and not self.has_pending_reconnect(device_id)
        ]
        if not pending:
            self.logger.info("[FLEET] reconnect_failed nothing to do")
            return
        self.logger.info("[FLEET] reconnect_failed count=%d", len(pending))
        results = await asyncio.gather(*(self.initialize_device(item) for item in pending), return_exceptions=True)
        for settings, result in zip(pending, results):
            if isinstance(result, BaseException):
                self.logger.error("[FLEET] manual reconnect failed id=%s error=%s", settings.resolved_device_id, result)

    async def start_scan(self, rssi: str | None = None, device_id: str | None = None) -> dict[str, str]:
        threshold = rssi or self.default_rssi
        return await self._fan_out("start_scan", device_id, lambda device: device.start_scan(threshold))

    async def stop_scan(self, device_id: str | None = None) -> dict[str, str]:
        return await self._fan_out("stop_scan", device_id, lambda device: device.stop_scan())

    async def start_report(self, device_id: str | None = None) -> dict[str, str]:
        return await self._fan_out("start_report", device_id, _sync(ScanDevice.start_report))

    async def stop_report(self, device_id: str | None = None) -> dict[str, str]:
        return await self._fan_out("stop_report", device_id, _sync(ScanDevice.stop_report))

    async def shutdown(self) -> None:
        self._closing = True
        tasks = list(self._reconnect_tasks.items())
        self._reconnect_tasks.clear()
        for device_id, task in tasks:
            self.logger.info("[FLEET] cancel reconnect id=%s", device_id)
            task.cancel()
        for _, task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._reconnect_attempts.clear()

        devices = list(self._devices.items())
        results = await asyncio.gather(*(device.disconnect() for _, device in devices), return_exceptions=True)
        for (device_id, _), result in zip(devices, results):
            if isinstance(result, BaseException):
                self.logger.error("[FLEET] disconnect failed id=%s error=%s", device_id, result)
            else:
                self.logger.info("[FLEET] disconnected id=%s", device_id)
        self._devices.clear()

    def schedule_reconnect(self, device_id: str) -> bool:
        """Arm one backoff timer for ``device_id``; False when none was armed."""
        if self._closing or device_id not in self._configs:
            return False
        if self.has_pending_reconnect(device_id):
            self.logger.debug("[FLEET] reconnect already pending id=%s", device_id)
            return False

        attempts = self._reconnect_attempts.get(device_id, 0)
        if attempts >= self.max_attempts:
            self.logger.error(
                "[FLEET] reconnect gave up id=%s attempts=%d; restart the gateway or send SIGHUP to retry",
                device_id,
                attempts,
            )
            self._reconnect_attempts.pop(device_id, None)
            return False

        delay = self.base_delay * 2**attempts
        self.logger.info("[FLEET] reconnect scheduled id=%s delay=%.1fs attempt=%d", device_id, delay, attempts + 1)
        self._reconnect_tasks[device_id] = asyncio.create_task(self._reconnect_after(device_id, delay))
        return True

    async def _reconnect_after(self, device_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        settings = self._configs[device_id]
        self.logger.info("[FLEET] reconnect start id=%s", device_id)
        try:
            await self.initialize_device(settings)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._release_reconnect_task(device_id)
            attempts = self._reconnect_attempts.get(device_id, 0) + 1
            self._reconnect_attempts[device_id] = attempts
            self.logger.error("[FLEET] reconnect failed id=%s attempt=%d error=%s", device_id, attempts, exc)
            self.schedule_reconnect(device_id)
            return
        self._release_reconnect_task(device_id)
        self._reconnect_attempts.pop(device_id, None)
        self.logger.info("[FLEET] reconnect success id=%s", device_id)

    def _release_reconnect_task(self, device_id: str) -> None:
        task = self._reconnect_tasks.get(device_id)
        if task is asyncio.current_task():
            del self._reconnect_tasks[device_id]

    async def _fan_out(self, operation: str, device_id: str | None, call: DeviceOperation) -> dict[str, str]:
        if device_id:
            device = self._devices.get(device_id)
            if device is None:
                raise DeviceNotFoundError(f"device {device_id} not found")
            await call(device)
            self.logger.info("[FLEET] %s id=%s", operation, device_id)
            return {}

        devices = list(self._devices.items())
        results = await asyncio.gather(*(call(device) for _, device in devices), return_exceptions=True)
        failures: dict[str, str] = {}
        for (target_id, _), result in zip(devices, results):
            if isinstance(result, BaseException):
                failures[target_id] = str(result) or type(result).__name__
                self.logger.error("[FLEET] %s failed id=%s error=%s", operation, target_id, result)
        self.logger.info("[FLEET] %s devices=%d failed=%d", operation, len(devices), len(failures))
        return failures

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    def _handle_device_event(self, event: DeviceEvent) -> None:
        if self.callbacks.on_device is not None:
            self.callbacks.on_device(event)

    def _handle_device_error(self, error: DeviceError) -> None:
        if self.callbacks.on_device_error is not None:
            self.callbacks.on_device_error(error)

    def _handle_disconnected(self, device: ScanDevice) -> None:
        # Devices that never became live (failed bring-up) are not tracked.
        if self._devices.get(device.device_id) is not device:
            return
        del self._devices[device.device_id]
        self.logger.warning("[FLEET] device lost id=%s path=%s", device.device_id, device.channel_path)
        if self.callbacks.on_disconnected is not None:
            self.callbacks.on_disconnected(device.status())
        self.schedule_reconnect(device.device_id)


def _sync(method: Callable[[ScanDevice], Any]) -> DeviceOperation:
    async def _call(device: ScanDevice) -> None:
        method(device)

    return _call

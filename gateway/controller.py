"""Application lifecycle: wires fleet, router, transport, and heartbeat."""

from __future__ import annotations

import asyncio
import logging
from typing import Coroutine

from commands.loader import load_builtin_commands
from commands.registry import CommandDispatcher, DispatchContext
from commands.router import CommandRouter
from config.defaults import DETECTION_RETENTION_SEC, HEARTBEAT_INTERVAL_SEC, RECONNECT_BASE_DELAY_SEC
from config.settings import GatewaySettings, validate_settings
from gateway.heartbeat import HeartbeatEmitter
from scanner.errors import ConfigError, GatewayError, StartupError
from scanner.fleet import ChannelFactory, FleetCallbacks, FleetSupervisor
from scanner.scan_device import DeviceError, DeviceEvent, DeviceStatus, ScanTiming
from transport.base import MessageTransport
from transport.factory import create_transport


class GatewayController:
    def __init__(
        self,
        settings: GatewaySettings,
        *,
        logger: logging.Logger | None = None,
        transport: MessageTransport | None = None,
        channel_factory: ChannelFactory | None = None,
        timing: ScanTiming | None = None,
        reconnect_base_delay: float = RECONNECT_BASE_DELAY_SEC,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SEC,
    ) -> None:
        self.settings = settings
        self.logger = logger or logging.getLogger("gateway")
        self._transport_override = transport
        self._channel_factory = channel_factory
        self._timing = timing or ScanTiming(
            clear_interval=settings.report_interval / 1000,
            retention=DETECTION_RETENTION_SEC,
        )
        self._reconnect_base_delay = reconnect_base_delay
        self._heartbeat_interval = heartbeat_interval
        self.fleet: FleetSupervisor | None = None
        self.transport: MessageTransport | None = None
        self.router: CommandRouter | None = None
        self.heartbeat: HeartbeatEmitter | None = None
        self._shutdown = asyncio.Event()
        self._send_tasks: set[asyncio.Task[None]] = set()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            self.logger.warning("[APP] already started")
            return

        problems = validate_settings(self.settings)
        if problems:
            for problem in problems:
                self.logger.error("[APP] config problem: %s", problem)
            raise ConfigError("configuration validation failed: " + "; ".join(problems))

        for item in self.settings.devices:
            self.logger.info(
                "[APP] device id=%s path=%s enabled=%s",
                item.resolved_device_id,
                item.serial_path,
                item.enabled,
            )

        self._build()
        assert self.fleet is not None and self.transport is not None and self.heartbeat is not None

        try:
            await self.transport.start()
        except (GatewayError, OSError) as exc:
            raise StartupError(f"transport failed to start: {exc}") from exc
        try:
            await self.fleet.initialize_all()
            stats = self.fleet.get_connection_stats()
            if stats.reconnecting:
                self.logger.info("[APP] devices reconnecting=%d", stats.reconnecting)
            if stats.connected == 0 and stats.reconnecting == 0:
                raise StartupError("no scanner device connected")
        except BaseException:
            await self.fleet.shutdown()
            await self.transport.stop()
            raise

        self.heartbeat.start()
        self._started = True
        self.logger.info("[APP] started connected=%d/%d", stats.connected, stats.total)

    async def serve(self) -> None:
        await self._shutdown.wait()

    def request_shutdown(self) -> None:
        self.logger.info("[APP] shutdown requested")
        self._shutdown.set()

    async def reconnect_failed(self) -> None:
        if self.fleet is not None:
            await self.fleet.reconnect_failed()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.logger.info("[APP] stopping")
        if self.heartbeat is not None:
            await self.heartbeat.stop()
        if self.fleet is not None:
            await self.fleet.shutdown()
        for task in list(self._send_tasks):
            task.cancel()
        if self.transport is not None:
            await self.transport.stop()
        self.logger.info("[APP] stopped")

    def _build(self) -> None:
        settings = self.settings
        fleet = FleetSupervisor(
            settings.enabled_devices,
            logger=self.logger.getChild("fleet"),
            default_rssi=settings.rssi,
            timing=self._timing,
            channel_factory=self._channel_factory,
            callbacks=FleetCallbacks(
                on_device=self._on_device,
                on_device_error=self._on_device_error,
                on_connected=self._on_connected,
                on_disconnected=self._on_disconnected,
            ),
            base_delay=self._reconnect_base_delay,
            scan_on_connect=settings.scan_on_connect,
            device_log_prefix=settings.logging.enable_device_prefix,
        )
        dispatcher = CommandDispatcher(
            DispatchContext(
                start_scan=fleet.start_scan,
                stop_scan=fleet.stop_scan,
                start_report=fleet.start_report,
                stop_report=fleet.stop_report,
                read_stats=fleet.get_connection_stats,
                default_rssi=settings.rssi,
                use_config_rssi=settings.use_config_rssi,
            ),
            logger=self.logger.getChild("commands"),
        )
        load_builtin_commands(dispatcher)
        router = CommandRouter(dispatcher, self.logger.getChild("router"), report_source=settings.report_source)
        transport = self._transport_override or create_transport(settings, self.logger.getChild("transport"))
        transport.set_handlers(router.handle_message, router.handle_error)

        self.fleet = fleet
        self.router = router
        self.transport = transport
        self.heartbeat = HeartbeatEmitter(
            fleet.get_connection_stats,
            router.format_heartbeat,
            transport.send,
            logger=self.logger.getChild("heartbeat"),
            interval=self._heartbeat_interval,
        )

    def _on_device(self, event: DeviceEvent) -> None:
        if self.router is None or self.transport is None:
            return
        self._spawn_send(self.transport.send(self.router.format_device_event(event)))

    def _on_device_error(self, error: DeviceError) -> None:
        self.logger.error(
            "[APP] device error id=%s path=%s op=%s error=%s",
            error.device_id,
            error.channel_path,
            error.operation,
            error.error,
        )

    def _on_connected(self, status: DeviceStatus) -> None:
        self.logger.info("[APP] device connected id=%s path=%s", status.device_id, status.channel_path)

    def _on_disconnected(self, status: DeviceStatus) -> None:
        self.logger.warning("[APP] device disconnected id=%s path=%s", status.device_id, status.channel_path)

    def _spawn_send(self, coro: Coroutine[None, None, None]) -> None:
        task = asyncio.create_task(coro)
        self._send_tasks.add(task)
        task.add_done_callback(self._finish_send)

    def _finish_send(self, task: asyncio.Task[None]) -> None:
        self._send_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("[APP] event send failed error=%s", exc)

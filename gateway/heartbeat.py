"""Periodic heartbeat pushed to the host."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable

from config.defaults import HEARTBEAT_INTERVAL_SEC
from scanner.fleet import ConnectionStats

StatsSource = Callable[[], ConnectionStats]
StatsFormatter = Callable[[ConnectionStats], str]
Sender = Callable[[str], Awaitable[None]]


class HeartbeatEmitter:
    def __init__(
        self,
        stats_source: StatsSource,
        formatter: StatsFormatter,
        send: Sender,
        *,
        logger: logging.Logger,
        interval: float = HEARTBEAT_INTERVAL_SEC,
    ) -> None:
        self._stats_source = stats_source
        self._formatter = formatter
        self._send = send
        self.logger = logger
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            self.logger.warning("[HEARTBEAT] already running")
            return
        self._task = asyncio.create_task(self._run())
        self.logger.info("[HEARTBEAT] started interval=%.1fs", self.interval)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        self.logger.info("[HEARTBEAT] stopped")

    async def tick(self) -> None:
        try:
            stats = self._stats_source()
            await self._send(self._formatter(stats))
        except Exception as exc:  # noqa: BLE001
            self.logger.error("[HEARTBEAT] tick failed error=%s", exc)
            return
        self.logger.debug(
            "[HEARTBEAT] sent connected=%d/%d reconnecting=%d",
            stats.connected,
            stats.total,
            stats.reconnecting,
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

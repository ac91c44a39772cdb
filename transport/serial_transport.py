"""Serial transport: newline-delimited JSON envelopes over a second serial link."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Callable

from config.defaults import SERIAL_TRANSPORT_MAX_RECONNECTS, SERIAL_TRANSPORT_RECONNECT_SEC
from protocol.envelope import CommandParseError, parse_request
from scanner.channel import LineChannel
from scanner.errors import ChannelError
from transport.base import MessageTransport

ChannelBuilder = Callable[[], LineChannel]
LINE_END = "\r\n"


class SerialTransport(MessageTransport):
    def __init__(
        self,
        channel_builder: ChannelBuilder,
        logger: logging.Logger,
        *,
        reconnect_interval: float = SERIAL_TRANSPORT_RECONNECT_SEC,
        max_reconnects: int = SERIAL_TRANSPORT_MAX_RECONNECTS,
    ) -> None:
        super().__init__(logger)
        self._channel_builder = channel_builder
        self.reconnect_interval = reconnect_interval
        self.max_reconnects = max_reconnects
        self._channel: LineChannel | None = None
        self._connected = False
        self._stopping = False
        self._reconnect_task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def connected(self) -> bool:
        return self._connected

    async def start(self) -> None:
        self._stopping = False
        await self._connect()

    async def stop(self) -> None:
        self._stopping = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        for pending in list(self._pending):
            pending.cancel()
        channel = self._channel
        self._channel = None
        self._connected = False
        if channel is not None:
            await channel.close()
        self.logger.info("[SERIAL TRANSPORT] stopped")

    async def send(self, text: str) -> None:
        channel = self._channel
        if channel is None or not self._connected:
            self.logger.warning("[SERIAL TRANSPORT] not connected, drop data=%s", text)
            return
        if not text.endswith(LINE_END):
            text += LINE_END
        await channel.write(text)

    async def _connect(self) -> None:
        channel = self._channel_builder()
        await channel.open(self._handle_line, self._handle_closed)
        self._channel = channel
        self._connected = True
        self.logger.info("[SERIAL TRANSPORT] connected path=%s", channel.path)

    def _handle_line(self, line: str) -> None:
        task = asyncio.create_task(self._process_line(line))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _process_line(self, line: str) -> None:
        self.logger.info("[SERIAL TRANSPORT RX] line=%s", line)
        try:
            request = parse_request(line)
        except CommandParseError as exc:
            request, parse_error = None, exc
        try:
            if request is not None:
                await self._emit_data(request, self.send)
            else:
                await self._emit_error(parse_error.message, self.send, parse_error.code)
        except Exception:  # noqa: BLE001
            self.logger.exception("[SERIAL TRANSPORT] handling line failed")

    def _handle_closed(self) -> None:
        self._connected = False
        self._channel = None
        if self._stopping:
            return
        self.logger.warning("[SERIAL TRANSPORT] connection lost")
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        for attempt in range(1, self.max_reconnects + 1):
            await asyncio.sleep(self.reconnect_interval)
            if self._stopping:
                return
            try:
                await self._connect()
            except ChannelError as exc:
                self.logger.warning(
                    "[SERIAL TRANSPORT] reconnect failed attempt=%d/%d error=%s",
                    attempt,
                    self.max_reconnects,
                    exc,
                )
                continue
            self.logger.info("[SERIAL TRANSPORT] reconnected attempt=%d", attempt)
            return
        self.logger.error("[SERIAL TRANSPORT] reconnect gave up after %d attempts", self.max_reconnects)

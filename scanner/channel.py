"""Line-oriented duplex channel over a serial port."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Protocol

import serial

from config.defaults import DEFAULT_BAUD_RATE, SERIAL_READ_TIMEOUT_SEC
from scanner.errors import ChannelError, DeviceNotConnectedError

LineCallback = Callable[[str], None]
CloseCallback = Callable[[], None]


class LineChannel(Protocol):
    path: str

    async def open(self, on_line: LineCallback, on_close: CloseCallback) -> None: ...

    async def write(self, data: str) -> None: ...

    async def close(self) -> None: ...


class SerialLineChannel:
    """pyserial port read by a daemon thread; lines are delivered on the event loop.

    ``on_close`` fires exactly once, whether the port was closed locally or
    the read loop hit an error.
    """

    def __init__(
        self,
        path: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        *,
        bytesize: int = serial.EIGHTBITS,
        stopbits: float = serial.STOPBITS_ONE,
        parity: str = serial.PARITY_NONE,
        read_timeout: float = SERIAL_READ_TIMEOUT_SEC,
        logger: logging.Logger | None = None,
    ) -> None:
        self.path = path
        self.baud_rate = baud_rate
        self.bytesize = bytesize
        self.stopbits = stopbits
        self.parity = parity
        self.read_timeout = read_timeout
        self.logger = logger or logging.getLogger(__name__)
        self._port: serial.Serial | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_line: LineCallback | None = None
        self._on_close: CloseCallback | None = None
        self._closed_notified = False
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._port is not None and self._port.is_open

    async def open(self, on_line: LineCallback, on_close: CloseCallback) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            self._port = await asyncio.to_thread(self._open_port)
        except (serial.SerialException, OSError) as exc:
            raise ChannelError(f"failed to open serial port {self.path}: {exc}") from exc
        self._on_line = on_line
        self._on_close = on_close
        self._stop.clear()
        self._closed_notified = False
        self._thread = threading.Thread(target=self._read_loop, daemon=True, name=f"serial:{self.path}")
        self._thread.start()
        self.logger.info("[SERIAL] open path=%s baud=%d", self.path, self.baud_rate)

    async def write(self, data: str) -> None:
        port = self._port
        if port is None or not port.is_open:
            raise DeviceNotConnectedError(f"serial port {self.path} is not open")
        self.logger.debug("[SERIAL TX] path=%s data=%r", self.path, data)
        async with self._write_lock:
            try:
                await asyncio.to_thread(self._write_all, port, data.encode("utf-8"))
            except (serial.SerialException, OSError) as exc:
                raise ChannelError(f"write to {self.path} failed: {exc}") from exc

    async def close(self) -> None:
        self._stop.set()
        port = self._port
        if port is not None:
            await asyncio.to_thread(port.close)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            await asyncio.to_thread(thread.join, self.read_timeout * 4)
        self._thread = None
        self._port = None
        self._notify_closed()

    def _open_port(self) -> serial.Serial:
        return serial.Serial(
            port=self.path,
            baudrate=self.baud_rate,
            bytesize=self.bytesize,
            stopbits=self.stopbits,
            parity=self.parity,
            timeout=self.read_timeout,
        )

    @staticmethod
    def _write_all(port: serial.Serial, payload: bytes) -> None:
        port.write(payload)
        port.flush()

    def _read_loop(self) -> None:
        port = self._port
        while port is not None and not self._stop.is_set():
            try:
                raw = port.readline()
            except (serial.SerialException, OSError, TypeError) as exc:
                # TypeError: pyserial reading from a port closed under it.
                if not self._stop.is_set():
                    self.logger.warning("[SERIAL] read failed path=%s error=%s", self.path, exc)
                    self._call_soon(self._handle_read_failure)
                return
            if not raw:
                continue
            line = raw.decode("utf-8", errors="replace").strip("\r\n")
            if line:
                self._call_soon(self._deliver_line, line)

    def _call_soon(self, callback: Callable[..., None], *args: object) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _deliver_line(self, line: str) -> None:
        self.logger.debug("[SERIAL RX] path=%s line=%s", self.path, line)
        if self._on_line is not None:
            self._on_line(line)

    def _handle_read_failure(self) -> None:
        port = self._port
        self._port = None
        if port is not None:
            try:
                port.close()
            except (serial.SerialException, OSError):
                self.logger.debug("[SERIAL] close after read failure failed path=%s", self.path, exc_info=True)
        self._notify_closed()

    def _notify_closed(self) -> None:
        if self._closed_notified:
            return
        self._closed_notified = True
        self.logger.info("[SERIAL] closed path=%s", self.path)
        if self._on_close is not None:
            self._on_close()

"""Capability interface shared by the host-facing transports."""

from __future__ import annotations

import abc
import logging
from typing import Awaitable, Callable

from protocol.envelope import CODE_BAD_REQUEST, CommandRequest

Responder = Callable[[str], Awaitable[None]]
DataHandler = Callable[[CommandRequest, Responder], Awaitable[None]]
ErrorHandler = Callable[[str, Responder, str], Awaitable[None]]


class TransportNotReadyError(RuntimeError):
    pass


class MessageTransport(abc.ABC):
    """Carries command requests in and responses/events out.

    Inbound payloads are decoded by the transport; a decodable request goes to
    ``on_data`` and a malformed one to ``on_error``. Both receive a ``respond``
    coroutine that answers the sender only. ``send`` broadcasts to the host.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger
        self._on_data: DataHandler | None = None
        self._on_error: ErrorHandler | None = None

    def set_handlers(self, on_data: DataHandler, on_error: ErrorHandler) -> None:
        self._on_data = on_data
        self._on_error = on_error

    async def _emit_data(self, request: CommandRequest, respond: Responder) -> None:
        if self._on_data is None:
            raise TransportNotReadyError("no data handler registered")
        await self._on_data(request, respond)

    async def _emit_error(self, message: str, respond: Responder, code: str = CODE_BAD_REQUEST) -> None:
        if self._on_error is None:
            raise TransportNotReadyError("no error handler registered")
        await self._on_error(message, respond, code)

    @abc.abstractmethod
    async def start(self) -> None: ...

    @abc.abstractmethod
    async def stop(self) -> None: ...

    @abc.abstractmethod
    async def send(self, text: str) -> None: ...

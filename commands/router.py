"""Binds transport payloads to the dispatcher and formats outbound events."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from commands.registry import CommandDispatcher
from protocol.envelope import (
    CODE_BAD_REQUEST,
    CODE_INTERNAL_ERROR,
    CommandRequest,
    CommandResponse,
    device_event,
    encode_response,
    heartbeat_event,
    response_error,
)
from scanner.fleet import ConnectionStats
from scanner.scan_device import DeviceEvent

Responder = Callable[[str], Awaitable[None]]


class CommandRouter:
    def __init__(self, dispatcher: CommandDispatcher, logger: logging.Logger, *, report_source: bool = False) -> None:
        self._dispatcher = dispatcher
        self.logger = logger
        self.report_source = report_source

    async def handle_message(self, request: CommandRequest, respond: Responder) -> None:
        try:
            response = await self._dispatcher.dispatch(request)
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("[ROUTER] dispatcher failure code=%s", request.code)
            response = response_error(CODE_INTERNAL_ERROR, f"{type(exc).__name__}: {exc}")
        await self._respond(response, respond)

    async def handle_error(self, message: str, respond: Responder, code: str = CODE_BAD_REQUEST) -> None:
        self.logger.warning("[ROUTER] rejected payload code=%s message=%s", code, message)
        await self._respond(response_error(code, message), respond)

    def format_device_event(self, event: DeviceEvent) -> str:
        if self.report_source:
            response = device_event(event.manufacturer, event.device_id, event.channel_path)
        else:
            response = device_event(event.manufacturer)
        return encode_response(response)

    @staticmethod
    def format_heartbeat(stats: ConnectionStats) -> str:
        return encode_response(heartbeat_event(stats.connected > 0))

    async def _respond(self, response: CommandResponse, respond: Responder) -> None:
        payload = encode_response(response)
        self.logger.info("[ROUTER TX] type=%s payload=%s", response.type_code, payload)
        await respond(payload)

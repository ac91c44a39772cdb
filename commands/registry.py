"""Declarative command registry and dispatcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from commands.runtime import CommandRuntime, RuntimeConfig
from commands.schemas import CommandSpec
from protocol.envelope import CODE_BAD_REQUEST, CODE_UNKNOWN_COMMAND, CommandRequest, CommandResponse, response_error
from scanner.fleet import ConnectionStats

CommandHandler = Callable[["DispatchContext", CommandRequest], Awaitable[CommandResponse]]
Failures = dict[str, str]


@dataclass(frozen=True)
class DispatchContext:
    start_scan: Callable[[str | None, str | None], Awaitable[Failures]]
    stop_scan: Callable[[str | None], Awaitable[Failures]]
    start_report: Callable[[str | None], Awaitable[Failures]]
    stop_report: Callable[[str | None], Awaitable[Failures]]
    read_stats: Callable[[], ConnectionStats]
    default_rssi: str
    use_config_rssi: bool = False


@dataclass(frozen=True)
class RegisteredCommand:
    spec: CommandSpec
    handler: CommandHandler


class CommandDispatcher:
    def __init__(self, context: DispatchContext, logger: logging.Logger) -> None:
        self._context = context
        self._logger = logger
        self._registry: dict[int, RegisteredCommand] = {}
        self._runtime = CommandRuntime(RuntimeConfig(logger=logger))

    def register(self, spec: CommandSpec, handler: CommandHandler) -> None:
        if spec.code in self._registry:
            raise ValueError(f"duplicate command code: {spec.code}")
        self._registry[spec.code] = RegisteredCommand(spec=spec, handler=handler)

    async def dispatch(self, request: CommandRequest) -> CommandResponse:
        registered = self._registry.get(request.code)
        if registered is None:
            self._logger.warning("[COMMAND] unknown code=%s", request.code)
            return response_error(CODE_UNKNOWN_COMMAND, f"Unknown command: {request.code}")

        validation_error = registered.spec.validate_args(request.data)
        if validation_error is not None:
            return response_error(CODE_BAD_REQUEST, validation_error)

        self._logger.info("[COMMAND] dispatch name=%s data=%s", registered.spec.name, request.data)
        return await self._runtime.run(
            registered.spec.name,
            registered.spec.timeout_sec,
            lambda: registered.handler(self._context, request),
        )

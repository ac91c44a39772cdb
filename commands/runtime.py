"""Unified execution runtime for registered commands."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from protocol.envelope import CODE_INTERNAL_ERROR, CODE_TIMEOUT, CommandResponse, response_error
from scanner.errors import GatewayError

CommandCall = Callable[[], Awaitable[CommandResponse]]


@dataclass(frozen=True)
class RuntimeConfig:
    logger: logging.Logger


class CommandRuntime:
    def __init__(self, config: RuntimeConfig) -> None:
        self._config = config

    async def run(self, command_name: str, timeout_sec: float | None, call: CommandCall) -> CommandResponse:
        try:
            if timeout_sec is None:
                return await call()
            return await asyncio.wait_for(call(), timeout=timeout_sec)
        except asyncio.TimeoutError:
            return response_error(CODE_TIMEOUT, f"Command timeout after {timeout_sec:.1f}s")
        except GatewayError as exc:
            self._config.logger.warning("[COMMAND] %s failed code=%s error=%s", command_name, exc.code, exc)
            return response_error(exc.code, str(exc), suggestion=exc.suggestion)
        except Exception as exc:  # noqa: BLE001
            self._config.logger.exception("[COMMAND] %s execution error", command_name)
            return response_error(CODE_INTERNAL_ERROR, f"{type(exc).__name__}: {exc}")

from __future__ import annotations

from typing import Any

from commands.registry import CommandDispatcher, DispatchContext
from commands.schemas import CommandArgSpec, CommandSpec
from config.defaults import DEVICE_ID_KEY, MESSAGE_KEY
from protocol.command_ids import CMD_STOP
from protocol.envelope import CommandRequest, CommandResponse, response_status

SPEC = CommandSpec(
    code=CMD_STOP,
    name="stop",
    summary="Stop reporting and observing",
    usage='{"c":2,"d":{"did":"<device id>"}}',
    args=(CommandArgSpec(DEVICE_ID_KEY, "str", description="Target a single device"),),
)


def register(dispatcher: CommandDispatcher) -> None:
    async def _handler(context: DispatchContext, request: CommandRequest) -> CommandResponse:
        device_id = request.data.get(DEVICE_ID_KEY) or None
        failed = await context.stop_report(device_id)
        failed.update(await context.stop_scan(device_id))

        body: dict[str, Any] = {MESSAGE_KEY: "Scan stopped"}
        if failed:
            body["failed"] = failed
        return response_status(body)

    dispatcher.register(SPEC, _handler)

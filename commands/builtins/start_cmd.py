from __future__ import annotations

from typing import Any

from commands.registry import CommandDispatcher, DispatchContext
from commands.schemas import CommandArgSpec, CommandSpec
from config.defaults import DEVICE_ID_KEY, MESSAGE_KEY, RSSI_KEY
from protocol.command_ids import CMD_START
from protocol.envelope import CommandRequest, CommandResponse, response_status

SPEC = CommandSpec(
    code=CMD_START,
    name="start",
    summary="Start observing and report detections",
    usage='{"c":1,"d":{"rssi":"-60","did":"<device id>"}}',
    args=(
        CommandArgSpec(RSSI_KEY, "str", description="Observer RSSI threshold, e.g. -60"),
        CommandArgSpec(DEVICE_ID_KEY, "str", description="Target a single device"),
    ),
)


def resolve_rssi(context: DispatchContext, requested: str | None) -> str:
    if context.use_config_rssi or not requested:
        return context.default_rssi
    return requested


def register(dispatcher: CommandDispatcher) -> None:
    async def _handler(context: DispatchContext, request: CommandRequest) -> CommandResponse:
        device_id = request.data.get(DEVICE_ID_KEY) or None
        rssi = resolve_rssi(context, request.data.get(RSSI_KEY))

        failed = await context.start_scan(rssi, device_id)
        failed.update(await context.start_report(device_id))

        body: dict[str, Any] = {MESSAGE_KEY: "Scan started", RSSI_KEY: rssi}
        if failed:
            body["failed"] = failed
        return response_status(body)

    dispatcher.register(SPEC, _handler)

from __future__ import annotations

from commands.registry import CommandDispatcher, DispatchContext
from commands.schemas import CommandSpec
from protocol.command_ids import CMD_HEARTBEAT
from protocol.envelope import CommandRequest, CommandResponse, response_status

SPEC = CommandSpec(
    code=CMD_HEARTBEAT,
    name="heartbeat",
    summary="Read-only fleet status probe",
    usage='{"c":3}',
    timeout_sec=2.0,
)


def register(dispatcher: CommandDispatcher) -> None:
    async def _handler(context: DispatchContext, _request: CommandRequest) -> CommandResponse:
        stats = context.read_stats()
        return response_status({"run": stats.connected > 0, "stats": stats.as_dict()})

    dispatcher.register(SPEC, _handler)

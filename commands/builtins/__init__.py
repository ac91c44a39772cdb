"""Built-in command modules."""

from commands.builtins import heartbeat_cmd, start_cmd, stop_cmd

BUILTIN_MODULES = (
    start_cmd,
    stop_cmd,
    heartbeat_cmd,
)

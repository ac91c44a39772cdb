"""Gateway error taxonomy; each error carries the wire error code."""

from __future__ import annotations

from protocol.envelope import (
    CODE_BAD_REQUEST,
    CODE_BRING_UP_FAILED,
    CODE_BUSY,
    CODE_CHANNEL_ERROR,
    CODE_INTERNAL_ERROR,
    CODE_NOT_CONNECTED,
    CODE_NOT_FOUND,
)


class GatewayError(Exception):
    code = CODE_INTERNAL_ERROR
    suggestion: str | None = None

    def __init__(self, message: str, *, suggestion: str | None = None) -> None:
        super().__init__(message)
        if suggestion is not None:
            self.suggestion = suggestion


class ChannelError(GatewayError):
    code = CODE_CHANNEL_ERROR
    suggestion = "Check the serial cable and that no other process holds the port."


class DeviceNotConnectedError(ChannelError):
    code = CODE_NOT_CONNECTED


class BringUpError(GatewayError):
    code = CODE_BRING_UP_FAILED
    suggestion = "The supervisor retries automatically after a disconnect."


class DeviceBusyError(GatewayError):
    code = CODE_BUSY
    suggestion = "Bring-up is in progress; retry in a few seconds."


class DeviceNotFoundError(GatewayError):
    code = CODE_NOT_FOUND
    suggestion = "Check `did` against the deviceId values in the gateway config; a lost device is absent until it reconnects."


class ConfigError(GatewayError):
    code = CODE_BAD_REQUEST


class StartupError(GatewayError):
    pass

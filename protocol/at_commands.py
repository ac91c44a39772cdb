"""AT command builders for the serial BLE observer module."""

from __future__ import annotations

AT_SUFFIX = "\r\n"
AT_PREFIX = "AT"
# Switches the module into AT command mode; must be sent without a terminator.
COMMAND_MODE_SENTINEL = "+++"

AT_RESTART = "RESTART"
AT_SET_ROLE = "ROLE=1"
AT_START_OBSERVER = "OBSERVER=1,4,,,"
AT_STOP_OBSERVER = "OBSERVER=0"


def _at(body: str) -> str:
    return f"{AT_PREFIX}+{body}{AT_SUFFIX}"


def enter_command_mode() -> str:
    return COMMAND_MODE_SENTINEL


def restart() -> str:
    return _at(AT_RESTART)


def set_role() -> str:
    return _at(AT_SET_ROLE)


def start_observer(rssi_threshold: str) -> str:
    """Build the observer-mode command.

    The threshold is passed through untouched (e.g. ``"-60"``); the module
    rejects values it does not understand.
    """
    return _at(f"{AT_START_OBSERVER}{rssi_threshold}")


def stop_observer() -> str:
    return _at(AT_STOP_OBSERVER)

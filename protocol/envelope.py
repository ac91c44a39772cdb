"""Host command protocol models and codec helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from config.defaults import DEVICE_ID_KEY, MANUFACTURER_KEY, MESSAGE_KEY, SERIAL_PATH_KEY
from protocol.command_ids import TYPE_DEVICE, TYPE_ERROR, TYPE_HEARTBEAT, TYPE_STATUS

CODE_BAD_JSON = "BAD_JSON"
CODE_BAD_REQUEST = "BAD_REQUEST"
CODE_UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
CODE_BUSY = "BUSY"
CODE_NOT_FOUND = "NOT_FOUND"
CODE_NOT_CONNECTED = "NOT_CONNECTED"
CODE_CHANNEL_ERROR = "CHANNEL_ERROR"
CODE_BRING_UP_FAILED = "BRING_UP_FAILED"
CODE_INTERNAL_ERROR = "INTERNAL_ERROR"
CODE_TIMEOUT = "TIMEOUT"

RESPONSE_TYPES = frozenset({TYPE_STATUS, TYPE_ERROR, TYPE_DEVICE, TYPE_HEARTBEAT})


@dataclass(frozen=True)
class CommandRequest:
    code: int
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CommandResponse:
    type_code: int
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.type_code != TYPE_ERROR


class CommandParseError(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def command_request(code: int, data: dict[str, Any] | None = None) -> CommandRequest:
    return CommandRequest(code=code, data=dict(data or {}))


def parse_request(raw: bytes | bytearray | memoryview | str) -> CommandRequest:
    text = _decode_raw_text(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CommandParseError(CODE_BAD_JSON, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise CommandParseError(CODE_BAD_REQUEST, "payload must be an object")

    code = payload.get("c")
    # bool is an int subclass; `true` is not a command code.
    if not isinstance(code, int) or isinstance(code, bool):
        raise CommandParseError(CODE_BAD_REQUEST, "field `c` is required and must be an integer")

    data = payload.get("d")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise CommandParseError(CODE_BAD_REQUEST, "field `d` must be object")

    return CommandRequest(code=code, data=data)


def encode_request(request: CommandRequest) -> str:
    body: dict[str, Any] = {"c": request.code}
    if request.data:
        body["d"] = request.data
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"))


def response_status(data: dict[str, Any]) -> CommandResponse:
    return CommandResponse(type_code=TYPE_STATUS, data=dict(data))


def response_error(
    code: str,
    message: str,
    *,
    suggestion: str | None = None,
    context: dict[str, Any] | None = None,
) -> CommandResponse:
    body: dict[str, Any] = {MESSAGE_KEY: message, "code": code}
    if suggestion:
        body["suggestion"] = suggestion
    if context:
        body["context"] = context
    return CommandResponse(type_code=TYPE_ERROR, data=body)


def device_event(manufacturer: str, device_id: str | None = None, serial_path: str | None = None) -> CommandResponse:
    body: dict[str, Any] = {MANUFACTURER_KEY: manufacturer}
    if device_id is not None:
        body[DEVICE_ID_KEY] = device_id
    if serial_path is not None:
        body[SERIAL_PATH_KEY] = serial_path
    return CommandResponse(type_code=TYPE_DEVICE, data=body)


def heartbeat_event(run: bool) -> CommandResponse:
    return CommandResponse(type_code=TYPE_HEARTBEAT, data={"run": run})


def encode_response(response: CommandResponse) -> str:
    return json.dumps({"t": response.type_code, "d": response.data}, ensure_ascii=False, separators=(",", ":"))


def parse_response(raw: bytes | bytearray | memoryview | str) -> CommandResponse:
    text = _decode_raw_text(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CommandParseError(CODE_BAD_JSON, f"invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise CommandParseError(CODE_BAD_REQUEST, "response payload must be an object")

    type_code = payload.get("t")
    data = payload.get("d")
    if not isinstance(type_code, int) or isinstance(type_code, bool) or type_code not in RESPONSE_TYPES:
        raise CommandParseError(CODE_BAD_REQUEST, "field `t` is required in response")
    if not isinstance(data, dict):
        raise CommandParseError(CODE_BAD_REQUEST, "field `d` is required in response")

    return CommandResponse(type_code=type_code, data=data)


def _decode_raw_text(raw: bytes | bytearray | memoryview | str) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, memoryview):
        raw = raw.tobytes()
    return bytes(raw).decode("utf-8", errors="replace")

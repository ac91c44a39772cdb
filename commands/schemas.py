"""Schema for declarative command registration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_TYPE_CHECKS: dict[str, tuple[type, ...]] = {
    "str": (str,),
    "bool": (bool,),
}


@dataclass(frozen=True)
class CommandArgSpec:
    name: str
    type_name: str = "str"
    required: bool = False
    description: str = ""


@dataclass(frozen=True)
class CommandSpec:
    code: int
    name: str
    summary: str
    usage: str
    timeout_sec: float | None = None
    args: tuple[CommandArgSpec, ...] = field(default_factory=tuple)

    def validate_args(self, payload: dict[str, Any]) -> str | None:
        # Unknown fields are ignored.
        for arg in self.args:
            value = payload.get(arg.name)
            if arg.required and (value is None or (isinstance(value, str) and value.strip() == "")):
                return f"field `d.{arg.name}` is required"
            if value is None:
                continue
            expected = _TYPE_CHECKS.get(arg.type_name)
            if expected is not None and not isinstance(value, expected):
                return f"field `d.{arg.name}` must be {arg.type_name}"
        return None

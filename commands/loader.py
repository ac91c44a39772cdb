"""Load command modules into dispatcher."""

from __future__ import annotations

from types import ModuleType
from typing import Iterable

from commands.builtins import BUILTIN_MODULES
from commands.registry import CommandDispatcher


def load_builtin_commands(dispatcher: CommandDispatcher, modules: Iterable[ModuleType] = BUILTIN_MODULES) -> list[str]:
    """Register every module's SPEC/handler pair; returns the registered names."""
    names: list[str] = []
    for module in modules:
        module.register(dispatcher)
        names.append(module.SPEC.name)
    return names

"""Bluetooth SIG company identifiers recognised in manufacturer data."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

MANUFACTURERS: Mapping[str, str] = MappingProxyType(
    {
        "0001": "Nokia Mobile Phones",
        "0008": "Motorola",
        "004C": "Apple, Inc.",
        "0056": "Sony Ericsson Mobile Communications",
        "0075": "Samsung Electronics Co. Ltd.",
        "00C4": "LG Electronics",
        "00E0": "Google",
    }
)


def lookup_manufacturer(code: str) -> str | None:
    return MANUFACTURERS.get(code.upper())

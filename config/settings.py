"""Gateway configuration file: pydantic models, load/save, and validation."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from config.defaults import (
    CONFIG_PATH_ENV,
    DEFAULT_BAUD_RATE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_REPORT_INTERVAL_MS,
    DEFAULT_RSSI,
)
from scanner.errors import ConfigError
from scanner.scan_device import derive_device_id

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)


class DeviceSettings(_Model):
    serial_path: str = Field(min_length=1)
    device_id: str | None = None
    baud_rate: int = Field(default=DEFAULT_BAUD_RATE, gt=0)
    enabled: bool = True

    @property
    def resolved_device_id(self) -> str:
        return self.device_id or derive_device_id(self.serial_path)


class HttpTransportSettings(_Model):
    type: Literal["http"] = "http"
    host: str = DEFAULT_HTTP_HOST
    port: int = Field(default=DEFAULT_HTTP_PORT, ge=1, le=65535)


class SerialTransportSettings(_Model):
    type: Literal["serial"]
    serial_path: str = Field(min_length=1)
    baud_rate: int = Field(default=DEFAULT_BAUD_RATE, gt=0)
    data_bits: Literal[5, 6, 7, 8] = 8
    stop_bits: Literal[1, 2] = 1
    parity: Literal["none", "even", "odd", "mark", "space"] = "none"
    # Read timeout in milliseconds.
    timeout: int = Field(default=5000, ge=0)


class LoggingSettings(_Model):
    level: str = "info"
    enable_device_prefix: bool = True

    @property
    def numeric_level(self) -> int:
        return LOG_LEVELS.get(self.level.lower(), logging.INFO)


class GatewaySettings(_Model):
    devices: list[DeviceSettings] = Field(default_factory=list)
    rssi: str = DEFAULT_RSSI
    use_config_rssi: bool = False
    report_interval: int = Field(default=DEFAULT_REPORT_INTERVAL_MS, gt=0)
    report_source: bool = False
    scan_on_connect: bool = False
    transport: Union[HttpTransportSettings, SerialTransportSettings] = Field(
        default_factory=HttpTransportSettings,
        discriminator="type",
    )
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def enabled_devices(self) -> list[DeviceSettings]:
        return [item for item in self.devices if item.enabled]


def default_settings() -> GatewaySettings:
    return GatewaySettings(devices=[DeviceSettings(serial_path="/dev/ttyUSB0")])


def resolve_config_path(cli_path: str | None = None) -> Path:
    if cli_path:
        return Path(cli_path)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILE


def load_settings(path: Path, logger: logging.Logger | None = None) -> GatewaySettings:
    """Read ``path``; a missing file is created with the defaults."""
    log = logger or logging.getLogger(__name__)
    if not path.exists():
        settings = default_settings()
        save_settings(path, settings)
        log.warning("[CONFIG] %s not found, wrote defaults", path)
        return settings

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {path}: {exc.msg} (line {exc.lineno})") from exc
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    try:
        settings = GatewaySettings.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigError(f"invalid configuration in {path}: {problems}") from exc
    log.info("[CONFIG] loaded path=%s devices=%d", path, len(settings.devices))
    return settings


def save_settings(path: Path, settings: GatewaySettings) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = settings.model_dump(by_alias=True, exclude_none=True)
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot write {path}: {exc}") from exc


def validate_settings(settings: GatewaySettings) -> list[str]:
    problems: list[str] = []
    enabled = settings.enabled_devices
    if not enabled:
        problems.append("no enabled devices configured")

    seen_paths: set[str] = set()
    seen_ids: set[str] = set()
    for item in enabled:
        if item.serial_path in seen_paths:
            problems.append(f"duplicate serialPath: {item.serial_path}")
        seen_paths.add(item.serial_path)
        device_id = item.resolved_device_id
        if device_id in seen_ids:
            problems.append(f"duplicate deviceId: {device_id}")
        seen_ids.add(device_id)

    transport = settings.transport
    if isinstance(transport, SerialTransportSettings) and transport.serial_path in seen_paths:
        problems.append(f"transport serialPath {transport.serial_path} is also a scanner device")
    return problems

"""Build the configured host transport."""

from __future__ import annotations

import logging

import serial

from config.settings import GatewaySettings, HttpTransportSettings, SerialTransportSettings
from scanner.channel import SerialLineChannel
from transport.base import MessageTransport
from transport.http_transport import HttpTransport
from transport.serial_transport import SerialTransport

PARITY_MAP = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}
STOP_BITS_MAP = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}


def create_transport(settings: GatewaySettings, logger: logging.Logger) -> MessageTransport:
    config = settings.transport
    if isinstance(config, HttpTransportSettings):
        return HttpTransport(logger, host=config.host, port=config.port)
    if isinstance(config, SerialTransportSettings):
        return SerialTransport(lambda: _serial_channel(config, logger), logger)
    raise ValueError(f"unsupported transport: {config!r}")


def _serial_channel(config: SerialTransportSettings, logger: logging.Logger) -> SerialLineChannel:
    return SerialLineChannel(
        config.serial_path,
        config.baud_rate,
        bytesize=config.data_bits,
        stopbits=STOP_BITS_MAP[config.stop_bits],
        parity=PARITY_MAP[config.parity],
        read_timeout=config.timeout / 1000,
        logger=logger,
    )

"""Gateway application entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from config.settings import LOG_LEVELS, load_settings, resolve_config_path
from gateway.controller import GatewayController
from scanner.errors import ConfigError, GatewayError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serial BLE observer gateway")
    parser.add_argument("--config", default=None, help="Config file path (default: $CONFIG_PATH or ./config.json)")
    parser.add_argument("--log-level", default=None, choices=sorted(LOG_LEVELS), help="Override logging.level")
    return parser.parse_args()


def install_signal_handlers(controller: GatewayController) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, controller.request_shutdown)
    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, lambda: asyncio.ensure_future(controller.reconnect_failed()))


async def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s | %(message)s")
    logger = logging.getLogger("gateway")

    config_path = resolve_config_path(args.config)
    try:
        settings = load_settings(config_path, logger)
    except ConfigError as exc:
        logger.error("[APP] %s", exc)
        return 1

    level_name = args.log_level or settings.logging.level
    logging.getLogger().setLevel(LOG_LEVELS.get(level_name.lower(), logging.INFO))

    controller = GatewayController(settings, logger=logger)
    install_signal_handlers(controller)
    try:
        await controller.start()
    except (GatewayError, OSError) as exc:
        logger.error("[APP] startup failed: %s", exc)
        return 1

    try:
        await controller.serve()
    finally:
        await controller.stop()
    return 0


def run() -> int:
    try:
        return asyncio.run(main())
    except KeyboardInterrupt:
        print("\n[gateway] interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())

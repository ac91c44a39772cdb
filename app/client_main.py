"""Host client entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from client.host_client import GatewayClient, GatewayClientError
from client.render import ResponseRenderer
from common.reporting import make_reporter
from config.defaults import DEFAULT_CLIENT_URL


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive and observe a BLE observer gateway")
    parser.add_argument("--url", default=DEFAULT_CLIENT_URL, help="Gateway base URL")
    parser.add_argument("--plain", action="store_true", help="Disable rich output")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start scanning and reporting")
    start.add_argument("--rssi", default=None, help="RSSI threshold, e.g. -60")
    start.add_argument("--did", default=None, help="Target device id")

    stop = sub.add_parser("stop", help="Stop reporting and scanning")
    stop.add_argument("--did", default=None, help="Target device id")

    sub.add_parser("heartbeat", help="Show fleet connection stats")
    sub.add_parser("listen", help="Follow the gateway event stream")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    renderer = ResponseRenderer(*make_reporter(use_rich=not args.plain))

    async with GatewayClient(args.url) as client:
        try:
            if args.command == "listen":
                renderer.reporter(f"listening on {args.url}/events")
                async for event in client.events():
                    renderer.event(event)
                return 0
            if args.command == "start":
                response = await client.start(args.rssi, args.did)
            elif args.command == "stop":
                response = await client.stop(args.did)
            else:
                response = await client.heartbeat()
        except GatewayClientError as exc:
            renderer.error({"code": "CLIENT", "msg": str(exc)})
            return 1

    renderer.response(response)
    return 0 if response.ok else 1


def run() -> int:
    try:
        return asyncio.run(main())
    except KeyboardInterrupt:
        print("\n[client] interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())

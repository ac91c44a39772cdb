"""HTTP client for a running gateway: commands over POST, events over SSE."""

from __future__ import annotations

from typing import Any, AsyncIterator

import httpx

from config.defaults import DEFAULT_CLIENT_URL, DEVICE_ID_KEY, RSSI_KEY
from protocol.command_ids import CMD_HEARTBEAT, CMD_START, CMD_STOP
from protocol.envelope import CommandParseError, CommandResponse, command_request, encode_request, parse_response

SSE_DATA_PREFIX = "data:"


class GatewayClientError(RuntimeError):
    pass


class GatewayClient:
    def __init__(
        self,
        base_url: str = DEFAULT_CLIENT_URL,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def start(self, rssi: str | None = None, device_id: str | None = None) -> CommandResponse:
        data: dict[str, Any] = {}
        if rssi:
            data[RSSI_KEY] = rssi
        if device_id:
            data[DEVICE_ID_KEY] = device_id
        return await self.send_command(CMD_START, data)

    async def stop(self, device_id: str | None = None) -> CommandResponse:
        return await self.send_command(CMD_STOP, {DEVICE_ID_KEY: device_id} if device_id else None)

    async def heartbeat(self) -> CommandResponse:
        return await self.send_command(CMD_HEARTBEAT)

    async def health(self) -> dict[str, Any]:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GatewayClientError(f"health check failed: {exc}") from exc
        return response.json()

    async def send_command(self, code: int, data: dict[str, Any] | None = None) -> CommandResponse:
        body = encode_request(command_request(code, data))
        try:
            response = await self._client.post(
                "/command",
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise GatewayClientError(f"cannot reach gateway at {self.base_url}: {exc}") from exc
        # Error envelopes come back with 4xx/5xx and are still decoded.
        try:
            return parse_response(response.content)
        except CommandParseError as exc:
            raise GatewayClientError(f"unexpected reply status={response.status_code}: {exc.message}") from exc

    async def events(self) -> AsyncIterator[CommandResponse]:
        try:
            async with self._client.stream("GET", "/events", timeout=None) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    event = parse_sse_line(line)
                    if event is not None:
                        yield event
        except httpx.HTTPError as exc:
            raise GatewayClientError(f"event stream failed: {exc}") from exc


def parse_sse_line(line: str) -> CommandResponse | None:
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    payload = line[len(SSE_DATA_PREFIX) :].strip()
    if not payload:
        return None
    try:
        return parse_response(payload)
    except CommandParseError:
        return None

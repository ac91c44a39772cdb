from __future__ import annotations

import logging
import unittest
from unittest.mock import AsyncMock, patch

import httpx

from commands.router import CommandRouter
from protocol.command_ids import TYPE_ERROR, TYPE_STATUS
from protocol.envelope import CODE_BAD_JSON, CODE_BAD_REQUEST, CommandRequest, encode_response, parse_response, response_status
from transport.http_transport import HttpTransport, _EmbeddedServer

LOGGER = logging.getLogger("test.http")


class _EchoDispatcher:
    def __init__(self) -> None:
        self.requests: list[CommandRequest] = []

    async def dispatch(self, request: CommandRequest):
        self.requests.append(request)
        return response_status({"msg": "ok", "code": request.code})


class HttpTransportTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.transport = HttpTransport(LOGGER, port=0)
        self.dispatcher = _EchoDispatcher()
        router = CommandRouter(self.dispatcher, LOGGER)
        self.transport.set_handlers(router.handle_message, router.handle_error)
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=self.transport.app), base_url="http://gateway")

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        await self.transport.stop()

    async def test_command_ok(self) -> None:
        resp = await self.client.post("/command", content=b'{"c":1,"d":{"rssi":"-60"}}')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["content-type"], "application/json")
        body = parse_response(resp.content)
        self.assertEqual(body.type_code, TYPE_STATUS)
        self.assertEqual(self.dispatcher.requests[0].data, {"rssi": "-60"})

    async def test_malformed_body_is_400(self) -> None:
        resp = await self.client.post("/command", content=b"{not json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(parse_response(resp.content).data["code"], CODE_BAD_JSON)

        resp = await self.client.post("/command", content=b'{"d":{}}')
        self.assertEqual(resp.status_code, 400)
        body = parse_response(resp.content)
        self.assertEqual(body.type_code, TYPE_ERROR)
        self.assertEqual(body.data["code"], CODE_BAD_REQUEST)
        self.assertEqual(self.dispatcher.requests, [])

    async def test_handler_failure_is_500(self) -> None:
        async def _explode(_request: CommandRequest, _respond) -> None:
            raise RuntimeError("handler crashed")

        async def _error(_message: str, _respond, _code: str) -> None:
            return None

        self.transport.set_handlers(_explode, _error)
        resp = await self.client.post("/command", content=b'{"c":1}')
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(parse_response(resp.content).type_code, TYPE_ERROR)

    async def test_bind_failure_raises_os_error(self) -> None:
        with patch.object(_EmbeddedServer, "serve", new=AsyncMock(side_effect=SystemExit(1))):
            with self.assertRaises(OSError):
                await self.transport.start()
        self.assertIsNone(self.transport._serve_task)

    async def test_health_and_unknown_route(self) -> None:
        resp = await self.client.get("/health")
        self.assertEqual(resp.json(), {"status": "ok", "clients": 0})
        resp = await self.client.get("/nope")
        self.assertEqual(resp.status_code, 404)

    async def test_event_stream_broadcasts_until_stop(self) -> None:
        first = self.transport.subscribe()
        second = self.transport.subscribe()
        stream = self.transport.event_stream(first)
        other = self.transport.event_stream(second)
        self.assertEqual(await anext(stream), "\n")
        self.assertEqual(await anext(other), "\n")
        self.assertEqual(self.transport.client_count, 2)

        payload = encode_response(response_status({"msg": "hello"}))
        await self.transport.send(payload)
        self.assertEqual(await anext(stream), f"data: {payload}\n\n")
        self.assertEqual(await anext(other), f"data: {payload}\n\n")

        await other.aclose()
        self.assertEqual(self.transport.client_count, 1)

        await self.transport.stop()
        with self.assertRaises(StopAsyncIteration):
            await anext(stream)
        self.assertEqual(self.transport.client_count, 0)

    async def test_send_without_clients_is_noop(self) -> None:
        await self.transport.send('{"t":4,"d":{"run":false}}')
        self.assertEqual(self.transport.client_count, 0)


if __name__ == "__main__":
    unittest.main()

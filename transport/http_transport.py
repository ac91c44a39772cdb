"""HTTP transport: POST /command, Server-Sent Events on GET /events."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import AsyncIterator, Iterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from config.defaults import DEFAULT_HTTP_HOST, DEFAULT_HTTP_PORT
from protocol.envelope import CODE_INTERNAL_ERROR, CommandParseError, encode_response, parse_request, response_error
from transport.base import MessageTransport

JSON_MEDIA_TYPE = "application/json"


class _EmbeddedServer(uvicorn.Server):
    # The gateway entrypoint owns process signals.
    def install_signal_handlers(self) -> None:
        pass

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class HttpTransport(MessageTransport):
    def __init__(
        self,
        logger: logging.Logger,
        *,
        host: str = DEFAULT_HTTP_HOST,
        port: int = DEFAULT_HTTP_PORT,
        log_level: str = "warning",
    ) -> None:
        super().__init__(logger)
        self.host = host
        self.port = port
        self.log_level = log_level
        self._clients: set[asyncio.Queue[str | None]] = set()
        self._server: _EmbeddedServer | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self.app = self._build_app()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        if self._serve_task is not None:
            self.logger.warning("[HTTP] already started")
            return
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level=self.log_level, lifespan="off")
        server = _EmbeddedServer(config)
        self._server = server
        task = asyncio.create_task(self._serve(server))
        self._serve_task = task
        while not server.started:
            if task.done():
                self._serve_task = None
                self._server = None
                raise OSError(f"HTTP server failed to start on {self.host}:{self.port}") from task.exception()
            await asyncio.sleep(0.05)
        self.logger.info("[HTTP] listening on http://%s:%d", self.host, self.port)

    async def _serve(self, server: _EmbeddedServer) -> None:
        try:
            await server.serve()
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind.
            raise OSError(f"cannot bind {self.host}:{self.port}") from exc

    async def stop(self) -> None:
        for queue in list(self._clients):
            queue.put_nowait(None)
        self._clients.clear()
        server, task = self._server, self._serve_task
        self._server = None
        self._serve_task = None
        if server is None or task is None:
            return
        server.should_exit = True
        await task
        self.logger.info("[HTTP] stopped")

    async def send(self, text: str) -> None:
        self.logger.debug("[HTTP] broadcast clients=%d data=%s", len(self._clients), text)
        for queue in list(self._clients):
            queue.put_nowait(text)

    def subscribe(self) -> asyncio.Queue[str | None]:
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._clients.add(queue)
        self.logger.info("[HTTP] SSE client connected clients=%d", len(self._clients))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[str | None]) -> None:
        if queue in self._clients:
            self._clients.discard(queue)
            self.logger.info("[HTTP] SSE client disconnected clients=%d", len(self._clients))

    async def event_stream(self, queue: asyncio.Queue[str | None]) -> AsyncIterator[str]:
        try:
            yield "\n"
            while True:
                text = await queue.get()
                if text is None:
                    return
                yield f"data: {text}\n\n"
        finally:
            self.unsubscribe(queue)

    async def handle_command(self, body: bytes) -> Response:
        replies: list[str] = []

        async def _respond(text: str) -> None:
            replies.append(text)

        try:
            request = parse_request(body)
        except CommandParseError as exc:
            self.logger.warning("[HTTP RX] parse_error code=%s message=%s", exc.code, exc.message)
            status = 400
            try:
                await self._emit_error(exc.message, _respond, exc.code)
            except Exception:  # noqa: BLE001
                self.logger.exception("[HTTP] error handler failed")
                status = 500
        else:
            self.logger.info("[HTTP RX] code=%s data=%s", request.code, request.data)
            status = 200
            try:
                await self._emit_data(request, _respond)
            except Exception:  # noqa: BLE001
                self.logger.exception("[HTTP] command handler failed")
                status = 500

        if not replies:
            error = response_error(CODE_INTERNAL_ERROR, "Command produced no response")
            return Response(content=encode_response(error), status_code=500, media_type=JSON_MEDIA_TYPE)
        return Response(content=replies[0], status_code=status, media_type=JSON_MEDIA_TYPE)

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="BLE observer gateway", docs_url=None, redoc_url=None, openapi_url=None)

        @app.post("/command")
        async def command(request: Request) -> Response:
            return await self.handle_command(await request.body())

        @app.get("/events")
        async def events() -> StreamingResponse:
            queue = self.subscribe()
            return StreamingResponse(
                self.event_stream(queue),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        @app.get("/health")
        async def health() -> JSONResponse:
            return JSONResponse({"status": "ok", "clients": self.client_count})

        return app

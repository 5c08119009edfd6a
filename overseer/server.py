"""
Loopback HTTP boundary of the stop gate.

    OPTIONS *               200, CORS headers only
    POST /api/check-stop    stop decision (malformed body -> 400, allow=true)
    GET  /api/status        progress and pending counts
    POST /api/bypass        arm the one-shot bypass
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import socket
from collections.abc import Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import PortUnavailableError
from .events import EventType, SupervisorEvent
from .gate import StopGate

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

BYPASS_GRANTED = "Bypass granted. Next stop will be allowed."


def create_app(gate: StopGate) -> FastAPI:
    app = FastAPI(title="overseer stop gate", docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def cors(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.method == "OPTIONS":
            response: Response = Response(status_code=200)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def not_found(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse({"error": "Not found"}, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    @app.post("/api/check-stop")
    async def check_stop(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            context = json.loads(raw) if raw.strip() else {}
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Malformed check-stop body: %s", e)
            return JSONResponse({"error": "Invalid request", "allow": True}, status_code=400)
        if not isinstance(context, dict):
            logger.warning("check-stop body is not a JSON object")
            return JSONResponse({"error": "Invalid request", "allow": True}, status_code=400)

        decision = gate.check_stop(context)
        return JSONResponse(decision.to_dict())

    @app.get("/api/status")
    async def status() -> JSONResponse:
        return JSONResponse(gate.status())

    @app.post("/api/bypass")
    async def bypass() -> JSONResponse:
        gate.allow_next_stop()
        return JSONResponse({"success": True, "message": BYPASS_GRANTED})

    return app


def bind_loopback(host: str, port: int, attempts: int) -> socket.socket:
    """Bind the first free port in ``[port, port + attempts)``."""
    for candidate in range(port, port + max(attempts, 1)):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, candidate))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                logger.info("Port %d in use, trying next", candidate)
                continue
            raise
        return sock
    raise PortUnavailableError(
        f"No free port on {host} between {port} and {port + attempts - 1}"
    )


class StopGateServer:
    """Runs the gate app on uvicorn inside the current event loop."""

    def __init__(
        self,
        gate: StopGate,
        *,
        host: str | None = None,
        port: int | None = None,
        port_attempts: int | None = None,
    ) -> None:
        self.gate = gate
        self.host = host or settings.gate_host
        self.requested_port = port if port is not None else settings.gate_port
        self.port_attempts = port_attempts or settings.gate_port_attempts
        self.port: int | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def start(self) -> int:
        if self.running and self.port is not None:
            return self.port

        sock = bind_loopback(self.host, self.requested_port, self.port_attempts)
        self.port = sock.getsockname()[1]
        config = uvicorn.Config(
            create_app(self.gate), log_level="warning", lifespan="off", access_log=False
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.get_running_loop().create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                # Surfaces the startup error.
                await self._task
                raise PortUnavailableError(f"Stop gate failed to start on {self.url}")
            await asyncio.sleep(0.01)

        logger.info("Stop gate listening on %s", self.url)
        await self.gate.emitter.emit(
            SupervisorEvent(type=EventType.GATE_STARTED, message=self.url, data={"port": self.port})
        )
        return self.port

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        await self._task
        self._server = None
        self._task = None
        logger.info("Stop gate stopped")
        await self.gate.emitter.emit(SupervisorEvent(type=EventType.GATE_STOPPED))

    async def serve_forever(self) -> None:
        await self.start()
        task = self._task
        if task is None:
            raise PortUnavailableError(f"Stop gate is not running on {self.url}")
        await task

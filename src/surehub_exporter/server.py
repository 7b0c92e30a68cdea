"""HTTP surface: Prometheus metrics plus liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from threading import Thread
from typing import Literal

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from pydantic import BaseModel

from surehub_exporter.scheduler import PollStatus

logger = logging.getLogger(__name__)

_UNLOGGED_PATHS = frozenset({"/alive"})


class ReadinessStatus(BaseModel):
    """Readiness probe response body."""

    status: Literal["ready", "unready"]
    error: str | None = None
    last_success_at: str | None = None


def create_app(registry: CollectorRegistry, status: PollStatus) -> FastAPI:
    app = FastAPI(title="SureHub Exporter", docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path in _UNLOGGED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "Handled request",
            extra={
                "method": request.method,
                "uri": str(request.url.path),
                "status": response.status_code,
                "user_agent": request.headers.get("user-agent"),
                "latency_ms": round((time.perf_counter() - start_time) * 1000, 3),
            },
        )
        return response

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/alive")
    async def alive() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/ready", response_model=ReadinessStatus)
    async def ready() -> Response:
        error = status.error
        last_success = status.last_success_at
        body = ReadinessStatus(
            status="ready" if error is None else "unready",
            error=str(error) if error is not None else None,
            last_success_at=(
                datetime.fromtimestamp(last_success, UTC).isoformat()
                if last_success is not None
                else None
            ),
        )
        return JSONResponse(
            status_code=200 if error is None else 503,
            content=body.model_dump(),
        )

    return app


class ServerStartError(RuntimeError):
    """Raised when the metrics server does not come up."""


class MetricsServer:
    """Runs the FastAPI app under uvicorn in a background thread."""

    def __init__(self, app: FastAPI, *, host: str, port: int) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._server: uvicorn.Server | None = None
        self._thread: Thread | None = None

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    def start(self, startup_timeout_s: float = 5.0) -> None:
        """Start serving and block until uvicorn is listening.

        Raises ``ServerStartError`` if the server thread exits first (for
        example when the port is taken) or does not come up in time.
        """
        config = uvicorn.Config(
            self._app,
            host=self._host,
            port=self._port,
            log_level="warning",
            log_config=None,
        )
        self._server = uvicorn.Server(config)
        server = self._server

        def run_server() -> None:
            asyncio.run(server.serve())

        self._thread = Thread(target=run_server, name="surehub-metrics-server", daemon=True)
        logger.info("Starting webserver", extra={"address": self.address})
        self._thread.start()

        deadline = time.monotonic() + startup_timeout_s
        while not server.started:
            if not self._thread.is_alive():
                self._thread = None
                self._server = None
                raise ServerStartError(f"metrics server failed to listen on {self.address}")
            if time.monotonic() > deadline:
                self.stop()
                raise ServerStartError(
                    f"metrics server did not start on {self.address} within {startup_timeout_s}s"
                )
            time.sleep(0.05)

    def stop(self, timeout_s: float = 5.0) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None
        self._server = None

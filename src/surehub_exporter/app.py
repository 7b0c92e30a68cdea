"""Process runtime: wire collaborators, start polling, serve, shut down."""

from __future__ import annotations

import asyncio
import logging
import signal

from prometheus_client import CollectorRegistry

from surehub_exporter.client import SurehubClient
from surehub_exporter.config import ConfigError, ExporterConfig
from surehub_exporter.metrics import ExporterMetrics
from surehub_exporter.poller import Poller
from surehub_exporter.registry import MetricRegistry
from surehub_exporter.scheduler import MIN_POLL_INTERVAL_S, PollScheduler
from surehub_exporter.server import MetricsServer, ServerStartError, create_app
from surehub_exporter.session import AuthError, SessionManager

logger = logging.getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the exporter cannot reach a serving state."""


class ExporterRuntime:
    """Owns every long-lived object of one exporter process.

    Startup order: login, priming poll, HTTP server. Any failure before the
    server starts is fatal. After that, cycle errors only flip readiness;
    an unexpected crash of the poll loop stops the whole process.
    """

    def __init__(
        self,
        config: ExporterConfig,
        *,
        client: SurehubClient | None = None,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._config = config
        self._client = (
            client
            if client is not None
            else SurehubClient(config.api_url, timeout_s=config.request_timeout_s)
        )
        self.registry = registry if registry is not None else CollectorRegistry()
        self.metric_registry = MetricRegistry(self.registry)
        self.metrics = ExporterMetrics(self.registry)
        self.session = SessionManager(
            self._client,
            email=config.email,
            password=config.password,
        )
        self.poller = Poller(
            self._client,
            self.session,
            self.metric_registry,
            metrics=self.metrics,
        )
        self.scheduler = PollScheduler(
            self.poller,
            interval_s=config.poll_interval_s,
            on_fatal=self._on_fatal,
        )
        self._server: MetricsServer | None = None
        self._shutdown_event = asyncio.Event()
        self._fatal_error: BaseException | None = None

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal_error

    def _validate(self) -> None:
        if self._config.poll_interval_s <= MIN_POLL_INTERVAL_S:
            raise ConfigError("interval not configured")
        if not self._config.email or not self._config.password:
            raise ConfigError("hub credentials not configured")

    async def start(self, *, serve: bool = True) -> None:
        """Log in, run the priming poll, then start the HTTP server."""
        self._validate()

        try:
            await self.session.login()
        except AuthError as exc:
            raise StartupError(f"login failed: {exc}") from exc

        try:
            await self.scheduler.start()
        except Exception as exc:
            raise StartupError(f"first poll failed: {exc}") from exc

        if serve:
            app = create_app(self.registry, self.scheduler.status)
            self._server = MetricsServer(
                app,
                host=self._config.listen_host,
                port=self._config.listen_port,
            )
            try:
                self._server.start()
            except ServerStartError as exc:
                self._server = None
                raise StartupError(str(exc)) from exc

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _on_fatal(self, exc: BaseException) -> None:
        self._fatal_error = exc
        self._shutdown_event.set()

    async def wait(self) -> None:
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        logger.info("Shutting down")
        await self.scheduler.stop()
        if self._server is not None:
            self._server.stop()
            self._server = None
        await self._client.aclose()


async def run_exporter(config: ExporterConfig) -> int:
    """Run until SIGINT/SIGTERM. Returns the process exit status."""
    runtime = ExporterRuntime(config)

    try:
        await runtime.start()
    except (ConfigError, StartupError) as exc:
        logger.error("Startup failed", extra={"error": str(exc)})
        await runtime.stop()
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.request_shutdown)

    await runtime.wait()
    await runtime.stop()

    if runtime.fatal_error is not None:
        logger.error("Exiting after fatal poll loop error", extra={"error": str(runtime.fatal_error)})
        return 1
    return 0
